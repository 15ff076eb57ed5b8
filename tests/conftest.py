"""Shared test fixtures.

Transports are faked with ``httpx.MockTransport`` driven by a scripted
handler, and backoff sleeps are recorded instead of slept.
"""

from typing import Any, Callable, List

import httpx
import pytest

from mistral_client import ClientConfig, MistralClient, RetryPolicy

ENDPOINT = "https://api.test"
API_KEY = "test-key"


class ScriptedHandler:
    """Mock transport handler replaying outcomes in order.

    Each outcome is an exception (raised), an int (JSON response with that
    status), an ``httpx.Response`` or a callable taking the request. The
    last outcome repeats once the script runs out.
    """

    def __init__(self, *outcomes: Any):
        self.outcomes: List[Any] = list(outcomes)
        self.requests: List[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]

        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            return httpx.Response(outcome, json={"status": outcome})
        if callable(outcome):
            return outcome(request)
        return outcome


@pytest.fixture
def make_handler() -> Callable[..., ScriptedHandler]:
    return ScriptedHandler


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> List[float]:
    """Record backoff delays instead of sleeping."""
    recorded: List[float] = []
    monkeypatch.setattr("mistral_client.retry.time.sleep", recorded.append)
    return recorded


@pytest.fixture
def make_client() -> Callable[..., MistralClient]:
    """Build a MistralClient whose sync and async clients hit ``handler``."""

    def factory(handler: ScriptedHandler, **overrides: Any) -> MistralClient:
        values = {
            "api_key": API_KEY,
            "endpoint": ENDPOINT,
            "retry_policy": RetryPolicy(max_retries=3, initial_delay=0.001),
        }
        values.update(overrides)
        transport = httpx.MockTransport(handler)
        return MistralClient(
            ClientConfig(**values),
            http_client=httpx.Client(transport=transport),
            async_http_client=httpx.AsyncClient(transport=transport),
        )

    return factory


@pytest.fixture
def sse_body() -> Callable[..., bytes]:
    """Encode frames as a ``data:`` event stream ending with [DONE]."""

    def encode(*frames: str) -> bytes:
        lines = [f"data: {frame}\n\n" for frame in frames]
        lines.append("data: [DONE]\n\n")
        return "".join(lines).encode("utf-8")

    return encode
