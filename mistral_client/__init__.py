"""
mistral-client - Mistral API client with retries and streaming.

This package provides:
- A retrying transport with exponential backoff for transient failures
  (connection errors and HTTP 429, 500, 502, 503, 504)
- An incremental decoder for ``data:``-framed event streams
- Thin wrappers for the model listing, chat and embeddings endpoints

Basic usage:
    from mistral_client import MistralClient, ClientConfig, Message

    client = MistralClient(ClientConfig(api_key="..."))
    response = client.chat("mistral-tiny", [Message.user("Hello!")])
    print(response["choices"][0]["message"]["content"])

Streaming:
    with client.chat_stream("mistral-tiny", [Message.user("Hello!")]) as events:
        for event in events:
            print(event["choices"][0]["delta"].get("content", ""), end="")

Custom retry policy:
    from mistral_client import RetryPolicy

    config = ClientConfig(
        api_key="...",
        retry_policy=RetryPolicy(max_retries=5, initial_delay=1.0),
    )
"""

__version__ = "0.1.0"

# Main client
from .client import (
    MistralClient,
    ClientConfig,
    DEFAULT_ENDPOINT,
    create_client,
)

# Request values
from .models import (
    Message,
    RequestDescriptor,
    build_chat_request,
    build_embeddings_request,
)

# Retry module
from .retry import (
    RETRIABLE_STATUS_CODES,
    RetryPolicy,
    RetryingTransport,
    AsyncRetryingTransport,
    CancelToken,
    Success,
    RetriableFailure,
    FatalFailure,
    classify_attempt,
)

# Streaming module
from .streaming import (
    SSEDecoder,
    EventStream,
    AsyncEventStream,
)

# Errors
from .errors import (
    MistralError,
    AuthenticationError,
    TransientTransportError,
    NonRetriableResponseError,
    DecodeError,
    CancellationError,
)

# Logging
from .logging_config import configure_logging

__all__ = [
    # Version
    "__version__",
    # Client
    "MistralClient",
    "ClientConfig",
    "DEFAULT_ENDPOINT",
    "create_client",
    # Request values
    "Message",
    "RequestDescriptor",
    "build_chat_request",
    "build_embeddings_request",
    # Retry
    "RETRIABLE_STATUS_CODES",
    "RetryPolicy",
    "RetryingTransport",
    "AsyncRetryingTransport",
    "CancelToken",
    "Success",
    "RetriableFailure",
    "FatalFailure",
    "classify_attempt",
    # Streaming
    "SSEDecoder",
    "EventStream",
    "AsyncEventStream",
    # Errors
    "MistralError",
    "AuthenticationError",
    "TransientTransportError",
    "NonRetriableResponseError",
    "DecodeError",
    "CancellationError",
    # Logging
    "configure_logging",
]
