from dataclasses import dataclass
from typing import Literal, Protocol, Sequence


Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str


class AnalysisModelError(RuntimeError):
    def __init__(self, message: str, *, code: str = "model_unavailable"):
        super().__init__(message)
        self.code = code


class AnalysisModelClient(Protocol):
    def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> str: ...
