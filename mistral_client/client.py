"""Mistral API client built on the retrying transport and stream decoder."""

import os
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Mapping, Union

import httpx

from .errors import (
    AuthenticationError,
    MistralError,
    NonRetriableResponseError,
    TransientTransportError,
)
from .logging_config import get_logger
from .models import (
    MessageLike,
    RequestDescriptor,
    build_chat_request,
    build_embeddings_request,
)
from .retry import (
    RETRIABLE_STATUS_CODES,
    AsyncRetryingTransport,
    CancelToken,
    OnRetry,
    RetryingTransport,
    RetryPolicy,
)
from .streaming import AsyncEventStream, EventStream

logger = get_logger(__name__)

DEFAULT_ENDPOINT = "https://api.mistral.ai"


@dataclass
class ClientConfig:
    """Configuration for the Mistral client."""

    api_key: Optional[str] = None
    endpoint: str = DEFAULT_ENDPOINT
    timeout: float = 120.0
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    extra_headers: Dict[str, str] = field(default_factory=dict)

    # Called before each backoff wait with (attempt, status or exception, delay)
    on_retry: Optional[OnRetry] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "ClientConfig":
        """
        Build a config from environment variables.

        Reads MISTRAL_API_KEY, MISTRAL_ENDPOINT, MISTRAL_MAX_RETRIES and
        MISTRAL_RETRY_DELAY (seconds). Keyword overrides win over the
        environment.
        """
        env = os.environ if environ is None else environ
        defaults = RetryPolicy()

        values: Dict[str, Any] = {
            "api_key": env.get("MISTRAL_API_KEY"),
            "endpoint": env.get("MISTRAL_ENDPOINT") or DEFAULT_ENDPOINT,
            "retry_policy": RetryPolicy(
                max_retries=int(env.get("MISTRAL_MAX_RETRIES", defaults.max_retries)),
                initial_delay=float(env.get("MISTRAL_RETRY_DELAY", defaults.initial_delay)),
                backoff_multiplier=defaults.backoff_multiplier,
            ),
        }
        values.update(overrides)
        return cls(**values)


class MistralClient:
    """
    A small client for the Mistral API.

    Every call goes through a retrying transport: connection errors and
    429/5xx responses are retried with exponential backoff. Buffered calls
    return the decoded JSON body whatever the status, so API error bodies
    reach the caller as-is. Streaming calls return an iterator of decoded
    events.

    Use ``with`` for sync calls and ``async with`` for async ones; leaving
    a ``with`` block only closes the sync HTTP client.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        http_client: Optional[httpx.Client] = None,
        async_http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or ClientConfig()
        self._client = http_client
        self._async_client = async_http_client

    @property
    def client(self) -> httpx.Client:
        """Get or create synchronous client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.timeout)
        return self._client

    @property
    def async_client(self) -> httpx.AsyncClient:
        """Get or create asynchronous client."""
        if self._async_client is None:
            self._async_client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._async_client

    def _get_headers(self, stream: bool) -> Dict[str, str]:
        """Get request headers."""
        if not self.config.api_key:
            raise AuthenticationError(
                "Mistral API key not found. Set MISTRAL_API_KEY or provide api_key in config."
            )

        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
        }
        headers.update(self.config.extra_headers)
        return headers

    def _build_request(
        self,
        client: Union[httpx.Client, httpx.AsyncClient],
        descriptor: RequestDescriptor,
        stream: bool,
    ) -> httpx.Request:
        return client.build_request(
            descriptor.method,
            descriptor.url(self.config.endpoint),
            headers=self._get_headers(stream),
            content=descriptor.body(),
        )

    def _decode_body(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise MistralError(
                f"Response is not valid JSON (HTTP {response.status_code})",
                status_code=response.status_code,
                body=response.text,
            ) from e

    def _stream_error(self, response: httpx.Response, policy: RetryPolicy) -> MistralError:
        """Error for a streaming call whose final response has no event stream."""
        try:
            body = response.json()
        except ValueError:
            body = response.text

        status = response.status_code
        logger.error("Streaming request failed", status_code=status, url=str(response.request.url))
        if status in RETRIABLE_STATUS_CODES:
            return TransientTransportError(
                f"Retry exhausted after {policy.max_retries + 1} attempts: HTTP {status}",
                attempts=policy.max_retries + 1,
                status_code=status,
                body=body,
            )
        return NonRetriableResponseError(
            f"API error ({status}): {body}",
            status_code=status,
            body=body,
        )

    def request(
        self,
        method: str,
        path: str,
        payload: Optional[Any] = None,
        *,
        stream: bool = False,
        retry_policy: Optional[RetryPolicy] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> Union[Any, EventStream]:
        """
        Perform one logical API call.

        Args:
            method: HTTP method
            path: Path relative to the endpoint, e.g. "v1/models"
            payload: JSON-serializable body, or None for no body
            stream: Return an EventStream instead of the parsed body
            retry_policy: Override the configured retry policy
            cancel_token: Token that aborts the call and its backoff waits

        Returns:
            Parsed JSON body, or an EventStream when streaming
        """
        policy = retry_policy or self.config.retry_policy
        descriptor = RequestDescriptor(method, path, payload)
        request = self._build_request(self.client, descriptor, stream)
        transport = RetryingTransport(self.client, policy, self.config.on_retry)

        response = transport.send(request, stream=stream, cancel_token=cancel_token)

        if not stream:
            return self._decode_body(response)

        if not response.is_success:
            try:
                response.read()
            finally:
                response.close()
            raise self._stream_error(response, policy)

        logger.debug("Event stream opened", url=str(request.url))
        return EventStream(response.iter_bytes(), close=response.close)

    async def request_async(
        self,
        method: str,
        path: str,
        payload: Optional[Any] = None,
        *,
        stream: bool = False,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> Union[Any, AsyncEventStream]:
        """Async counterpart of ``request``; cancel the task to abort."""
        policy = retry_policy or self.config.retry_policy
        descriptor = RequestDescriptor(method, path, payload)
        request = self._build_request(self.async_client, descriptor, stream)
        transport = AsyncRetryingTransport(self.async_client, policy, self.config.on_retry)

        response = await transport.send(request, stream=stream)

        if not stream:
            return self._decode_body(response)

        if not response.is_success:
            try:
                await response.aread()
            finally:
                await response.aclose()
            raise self._stream_error(response, policy)

        logger.debug("Event stream opened", url=str(request.url))
        return AsyncEventStream(response.aiter_bytes(), aclose=response.aclose)

    def list_models(self) -> Any:
        """Return the list of available models."""
        return self.request("GET", "v1/models")

    async def list_models_async(self) -> Any:
        """Return the list of available models asynchronously."""
        return await self.request_async("GET", "v1/models")

    def chat(
        self,
        model: str,
        messages: List[MessageLike],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        random_seed: Optional[int] = None,
        safe_mode: Optional[bool] = None,
    ) -> Any:
        """
        Create a chat completion.

        Args:
            model: Model to chat with, e.g. "mistral-tiny"
            messages: Conversation so far
            temperature: Sampling temperature, e.g. 0.5
            max_tokens: Maximum number of tokens to generate
            top_p: Nucleus sampling probability mass, e.g. 0.9
            random_seed: Seed for sampling
            safe_mode: Ask the API to prepend its safety prompt

        Returns:
            The completion as parsed JSON
        """
        body = build_chat_request(
            model, messages, temperature, max_tokens, top_p, random_seed,
            stream=False, safe_mode=safe_mode,
        )
        return self.request("POST", "v1/chat/completions", body)

    async def chat_async(
        self,
        model: str,
        messages: List[MessageLike],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        random_seed: Optional[int] = None,
        safe_mode: Optional[bool] = None,
    ) -> Any:
        """Create a chat completion asynchronously."""
        body = build_chat_request(
            model, messages, temperature, max_tokens, top_p, random_seed,
            stream=False, safe_mode=safe_mode,
        )
        return await self.request_async("POST", "v1/chat/completions", body)

    def chat_stream(
        self,
        model: str,
        messages: List[MessageLike],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        random_seed: Optional[int] = None,
        safe_mode: Optional[bool] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> EventStream:
        """
        Stream a chat completion.

        Takes the same arguments as ``chat``. The returned stream yields
        completion chunks as parsed JSON; close it to stop early.
        """
        body = build_chat_request(
            model, messages, temperature, max_tokens, top_p, random_seed,
            stream=True, safe_mode=safe_mode,
        )
        return self.request("POST", "v1/chat/completions", body, stream=True, cancel_token=cancel_token)

    async def chat_stream_async(
        self,
        model: str,
        messages: List[MessageLike],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        random_seed: Optional[int] = None,
        safe_mode: Optional[bool] = None,
    ) -> AsyncEventStream:
        """Stream a chat completion asynchronously."""
        body = build_chat_request(
            model, messages, temperature, max_tokens, top_p, random_seed,
            stream=True, safe_mode=safe_mode,
        )
        return await self.request_async("POST", "v1/chat/completions", body, stream=True)

    def embeddings(self, model: str, input: Union[str, List[str]]) -> Any:
        """
        Embed a single input or a batch of inputs.

        Args:
            model: Embedding model, e.g. "mistral-embed"
            input: Text or list of texts to embed
        """
        return self.request("POST", "v1/embeddings", build_embeddings_request(model, input))

    async def embeddings_async(self, model: str, input: Union[str, List[str]]) -> Any:
        """Embed inputs asynchronously."""
        return await self.request_async("POST", "v1/embeddings", build_embeddings_request(model, input))

    def close(self) -> None:
        """Close synchronous client.

        An async client cannot be closed from synchronous code; use
        ``close_async`` or ``async with`` once async calls have been made.
        """
        if self._async_client is not None:
            logger.warning(
                "Async HTTP client left open; close it with close_async() or async with",
                endpoint=self.config.endpoint,
            )
        if self._client is not None:
            self._client.close()
            self._client = None

    async def close_async(self) -> None:
        """Close both clients."""
        if self._async_client is not None:
            await self._async_client.aclose()
            self._async_client = None
        self.close()

    def __enter__(self) -> "MistralClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    async def __aenter__(self) -> "MistralClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close_async()


def create_client(
    api_key: Optional[str] = None,
    endpoint: Optional[str] = None,
    max_retries: Optional[int] = None,
    retry_delay: Optional[float] = None,
) -> MistralClient:
    """
    Create a client from the environment, overriding any given value.

    Args:
        api_key: API key (uses MISTRAL_API_KEY if not provided)
        endpoint: Base URL (defaults to https://api.mistral.ai)
        max_retries: Retries after the first attempt
        retry_delay: Initial backoff delay in seconds

    Returns:
        Configured MistralClient
    """
    config = ClientConfig.from_env()

    if api_key:
        config.api_key = api_key
    if endpoint:
        config.endpoint = endpoint
    if max_retries is not None or retry_delay is not None:
        policy = config.retry_policy
        config.retry_policy = RetryPolicy(
            max_retries=policy.max_retries if max_retries is None else max_retries,
            initial_delay=policy.initial_delay if retry_delay is None else retry_delay,
            backoff_multiplier=policy.backoff_multiplier,
        )

    return MistralClient(config)
