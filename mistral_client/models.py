"""Request value types and payload builders."""

import json
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Union


@dataclass
class Message:
    """A chat message."""

    role: str  # "system", "user", "assistant"
    content: str

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def system(cls, content: str) -> "Message":
        """Create a system message."""
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        """Create a user message."""
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        """Create an assistant message."""
        return cls(role="assistant", content=content)


MessageLike = Union[Message, Dict[str, Any]]


@dataclass(frozen=True)
class RequestDescriptor:
    """One logical API call: method, path relative to the endpoint, JSON payload."""

    method: str
    path: str
    payload: Optional[Any] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())

    def url(self, endpoint: str) -> str:
        """Join the path onto the endpoint with a single slash."""
        return f"{endpoint.rstrip('/')}/{self.path.lstrip('/')}"

    def body(self) -> Optional[bytes]:
        """Serialized payload, or None when there is nothing to send."""
        if self.payload is None:
            return None
        return json.dumps(self.payload).encode("utf-8")


def build_chat_request(
    model: str,
    messages: List[MessageLike],
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    top_p: Optional[float] = None,
    random_seed: Optional[int] = None,
    stream: Optional[bool] = None,
    safe_mode: Optional[bool] = None,
) -> Dict[str, Any]:
    """Build request body for chat completion, leaving unset options out."""
    body: Dict[str, Any] = {
        "model": model,
        "messages": [m.to_dict() if isinstance(m, Message) else dict(m) for m in messages],
    }

    optional = {
        "temperature": temperature,
        "max_tokens": max_tokens,
        "top_p": top_p,
        "random_seed": random_seed,
        "stream": stream,
        "safe_prompt": safe_mode,
    }
    body.update({key: value for key, value in optional.items() if value is not None})

    return body


def build_embeddings_request(model: str, input: Union[str, List[str]]) -> Dict[str, Any]:
    """Build request body for the embeddings endpoint."""
    return {"model": model, "input": input}
