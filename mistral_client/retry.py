"""Retrying transport with exponential backoff.

One logical request is sent through an ``httpx`` client. Connection-level
failures and responses with a transient status (429, 500, 502, 503, 504)
are retried up to ``RetryPolicy.max_retries`` times, waiting
``initial_delay * backoff_multiplier ** n`` seconds before retry ``n``.
Every other outcome ends the call at once: other exceptions propagate and
other responses, error statuses included, are handed back untouched.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

import httpx

from .errors import CancellationError, TransientTransportError
from .logging_config import get_logger

logger = get_logger(__name__)

RETRIABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# (attempt number, status code or exception, delay before next attempt)
OnRetry = Callable[[int, Union[int, Exception], float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior."""

    max_retries: int = 3
    initial_delay: float = 0.5  # seconds
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_delay < 0:
            raise ValueError(f"initial_delay must be >= 0, got {self.initial_delay}")
        if self.backoff_multiplier < 1:
            raise ValueError(
                f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            )

    def delay_for(self, retry: int) -> float:
        """Delay to wait before the given retry (0-based). No jitter, no cap."""
        return self.initial_delay * (self.backoff_multiplier ** retry)


@dataclass(frozen=True)
class Success:
    """The attempt produced a response the caller should see."""

    response: httpx.Response


@dataclass(frozen=True)
class RetriableFailure:
    """The attempt failed transiently; ``reason`` is a status code or an exception."""

    reason: Union[int, Exception]
    response: Optional[httpx.Response] = None


@dataclass(frozen=True)
class FatalFailure:
    """The attempt raised an error that retrying cannot fix."""

    error: Exception


AttemptResult = Union[Success, RetriableFailure, FatalFailure]


def classify_attempt(
    response: Optional[httpx.Response] = None,
    error: Optional[Exception] = None,
) -> AttemptResult:
    """Classify the outcome of a single attempt."""
    if error is not None:
        if isinstance(error, httpx.TransportError):
            return RetriableFailure(reason=error)
        return FatalFailure(error=error)

    if response is None:
        raise ValueError("classify_attempt needs a response or an error")

    if response.status_code in RETRIABLE_STATUS_CODES:
        return RetriableFailure(reason=response.status_code, response=response)
    return Success(response=response)


class CancelToken:
    """Lets another thread abort a synchronous call and its backoff waits."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)


class _BaseRetryingTransport:
    """Bookkeeping shared by the sync and async retry loops."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        on_retry: Optional[OnRetry] = None,
    ):
        self.policy = policy or RetryPolicy()
        self.on_retry = on_retry

    def _before_wait(
        self,
        request: httpx.Request,
        attempt: int,
        failure: RetriableFailure,
        delay: float,
        retries_left: int,
    ) -> None:
        logger.warning(
            "Retrying request",
            method=request.method,
            url=str(request.url),
            attempt=attempt,
            reason=_describe(failure.reason),
            delay=delay,
            retries_left=retries_left,
        )
        if self.on_retry:
            self.on_retry(attempt, failure.reason, delay)

    def _give_up(
        self,
        request: httpx.Request,
        attempt: int,
        failure: RetriableFailure,
    ) -> httpx.Response:
        """Surface the last retriable outcome once no retries remain."""
        logger.error(
            "Retries exhausted",
            method=request.method,
            url=str(request.url),
            attempts=attempt,
            reason=_describe(failure.reason),
        )
        if failure.response is not None:
            return failure.response

        error = failure.reason
        raise TransientTransportError(
            f"Retry exhausted after {attempt} attempts: {error}",
            attempts=attempt,
            last_exception=error,
        ) from error


class RetryingTransport(_BaseRetryingTransport):
    """Sends requests through an ``httpx.Client``, retrying transient failures."""

    def __init__(
        self,
        client: httpx.Client,
        policy: Optional[RetryPolicy] = None,
        on_retry: Optional[OnRetry] = None,
    ):
        super().__init__(policy, on_retry)
        self.client = client

    def send(
        self,
        request: httpx.Request,
        *,
        stream: bool = False,
        policy: Optional[RetryPolicy] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> httpx.Response:
        """
        Send ``request`` until it succeeds, fails fatally, or retries run out.

        Args:
            request: The request to send; it is reused for every attempt
            stream: Leave the response body unread so it can be streamed
            policy: Override the transport's retry policy for this call
            cancel_token: Token checked around every attempt and wait

        Returns:
            The first non-retriable response, or the last retriable one if
            retries ran out

        Raises:
            TransientTransportError: a transport error persisted past the last
                retry. The httpx error itself is not re-raised; it is kept as
                ``last_exception`` and as the ``__cause__`` of this error.
            CancellationError: ``cancel_token`` was cancelled
        """
        policy = policy or self.policy
        retries_left = policy.max_retries
        delay = policy.initial_delay
        attempt = 0

        while True:
            _check_cancelled(cancel_token, request, attempt)
            attempt += 1
            logger.debug(
                "Sending request",
                method=request.method,
                url=str(request.url),
                attempt=attempt,
            )

            try:
                response = self.client.send(request, stream=stream)
            except Exception as e:
                result = classify_attempt(error=e)
                if isinstance(result, FatalFailure):
                    logger.error(
                        "Request failed",
                        method=request.method,
                        url=str(request.url),
                        attempt=attempt,
                        error=_describe(e),
                    )
                    raise
            else:
                if cancel_token is not None and cancel_token.cancelled:
                    response.close()
                    _check_cancelled(cancel_token, request, attempt)
                result = classify_attempt(response=response)

            if isinstance(result, Success):
                return result.response

            if retries_left <= 0:
                return self._give_up(request, attempt, result)

            if result.response is not None:
                result.response.close()

            self._before_wait(request, attempt, result, delay, retries_left)
            self._wait(delay, cancel_token, request, attempt)
            retries_left -= 1
            delay *= policy.backoff_multiplier

    def _wait(
        self,
        delay: float,
        cancel_token: Optional[CancelToken],
        request: httpx.Request,
        attempt: int,
    ) -> None:
        if cancel_token is None:
            time.sleep(delay)
        elif cancel_token.wait(delay):
            _check_cancelled(cancel_token, request, attempt)


class AsyncRetryingTransport(_BaseRetryingTransport):
    """Sends requests through an ``httpx.AsyncClient``, retrying transient failures.

    Cancel the surrounding task to abort; ``asyncio.CancelledError`` raised
    during an attempt or a backoff sleep stops the loop and propagates.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        policy: Optional[RetryPolicy] = None,
        on_retry: Optional[OnRetry] = None,
    ):
        super().__init__(policy, on_retry)
        self.client = client

    async def send(
        self,
        request: httpx.Request,
        *,
        stream: bool = False,
        policy: Optional[RetryPolicy] = None,
    ) -> httpx.Response:
        """Async counterpart of ``RetryingTransport.send``.

        Exhausted transport errors are wrapped the same way, in a
        ``TransientTransportError`` chained from the last httpx error.
        """
        policy = policy or self.policy
        retries_left = policy.max_retries
        delay = policy.initial_delay
        attempt = 0

        while True:
            attempt += 1
            logger.debug(
                "Sending request",
                method=request.method,
                url=str(request.url),
                attempt=attempt,
            )

            try:
                response = await self.client.send(request, stream=stream)
            except asyncio.CancelledError:
                logger.info("Request cancelled", url=str(request.url), attempt=attempt)
                raise
            except Exception as e:
                result = classify_attempt(error=e)
                if isinstance(result, FatalFailure):
                    logger.error(
                        "Request failed",
                        method=request.method,
                        url=str(request.url),
                        attempt=attempt,
                        error=_describe(e),
                    )
                    raise
            else:
                result = classify_attempt(response=response)

            if isinstance(result, Success):
                return result.response

            if retries_left <= 0:
                return self._give_up(request, attempt, result)

            if result.response is not None:
                await result.response.aclose()

            self._before_wait(request, attempt, result, delay, retries_left)
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                logger.info("Backoff wait cancelled", url=str(request.url), attempt=attempt)
                raise
            retries_left -= 1
            delay *= policy.backoff_multiplier


def _check_cancelled(
    cancel_token: Optional[CancelToken],
    request: httpx.Request,
    attempt: int,
) -> None:
    if cancel_token is not None and cancel_token.cancelled:
        logger.info("Request cancelled", url=str(request.url), attempt=attempt)
        raise CancellationError(f"Request to {request.url} cancelled after {attempt} attempts")


def _describe(reason: Union[int, Exception]) -> str:
    if isinstance(reason, int):
        return f"HTTP {reason}"
    return f"{type(reason).__name__}: {reason}"
