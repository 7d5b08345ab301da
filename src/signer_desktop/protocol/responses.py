"""Response envelopes received from the signer desktop agent.

The agent answers with one JSON object per frame:
- Success: {"requestId": ..., <result fields>}
- Business error: {"requestId"?: ..., "error": <payload>}

A frame is a business error when the `error` key is present, whatever
its value.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


class ResponseEnvelope(BaseModel):
    """An inbound frame, parsed just enough to route it."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    request_id: str | int | None = Field(default=None, alias="requestId")
    error: Any = None

    _raw: dict[str, Any] = PrivateAttr(default_factory=dict)

    @property
    def is_error(self) -> bool:
        """True when the agent reported a business error."""
        return "error" in self._raw

    @property
    def has_request_id(self) -> bool:
        return self.request_id is not None and self.request_id != ""

    @property
    def payload(self) -> dict[str, Any]:
        """The decoded frame exactly as the agent sent it."""
        return self._raw

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResponseEnvelope:
        envelope = cls.model_validate(data)
        envelope._raw = data
        return envelope

    @classmethod
    def from_frame(cls, frame: str | bytes) -> ResponseEnvelope:
        """Parse a text frame.

        Raises:
            ValueError: If the frame is not a JSON object or the identifier
                has an unsupported type.
        """
        if isinstance(frame, bytes):
            frame = frame.decode("utf-8")
        data = json.loads(frame)
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        return cls.from_dict(data)
