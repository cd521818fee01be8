"""Status messages carried across redirects in the ``message`` query parameter."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Literal

MessageType = Literal["success", "error", "info"]


@dataclass(frozen=True)
class StatusMessage:
    """A ``{type, content}`` message shown after an operation."""

    type: MessageType
    content: str

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "content": self.content}

    @classmethod
    def from_json(cls, raw: str) -> StatusMessage:
        """
        Decode a message from its JSON form.

        Raises:
            ValueError: If the payload is not a ``{type, content}`` object
        """
        data = json.loads(raw)
        if not isinstance(data, dict) or not isinstance(data.get("content"), str):
            raise ValueError(f"Malformed status message: {raw!r}")
        msg_type = data.get("type")
        if msg_type not in ("success", "error", "info"):
            raise ValueError(f"Unknown status message type: {msg_type!r}")
        return cls(type=msg_type, content=data["content"])

    @classmethod
    def success(cls, content: str) -> StatusMessage:
        return cls(type="success", content=content)


CREATED = StatusMessage.success("Created successfully")
UPDATED = StatusMessage.success("Updated successfully")
DELETED = StatusMessage.success("Deleted successfully")
