"""Domain models for tool call results."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ToolResultKind(Enum):
    """Shape of the payload a tool call produced."""
    JSON = "json"
    TEXT = "text"
    ERROR = "error"


@dataclass(frozen=True)
class ToolCallResult:
    """Discriminated union of JSON value, plain text, or error message."""
    kind: ToolResultKind
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def of_json(cls, value: Any) -> "ToolCallResult":
        return cls(kind=ToolResultKind.JSON, value=value)

    @classmethod
    def of_text(cls, text: str) -> "ToolCallResult":
        return cls(kind=ToolResultKind.TEXT, value=text)

    @classmethod
    def of_error(cls, message: str) -> "ToolCallResult":
        return cls(kind=ToolResultKind.ERROR, error=message)

    @property
    def is_json(self) -> bool:
        return self.kind is ToolResultKind.JSON

    @property
    def is_text(self) -> bool:
        return self.kind is ToolResultKind.TEXT

    @property
    def is_error(self) -> bool:
        return self.kind is ToolResultKind.ERROR

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        if self.is_error:
            return {"kind": self.kind.value, "error": self.error}
        return {"kind": self.kind.value, "value": self.value}
