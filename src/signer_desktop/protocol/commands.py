"""Command envelopes sent to the signer desktop agent.

Every outbound frame is a flat JSON object with a `command` tag. Tracked
commands also carry a `requestId` that the agent echoes back so the
response can be matched to its caller:

    {"command": "validate", "requestId": 1718000000001,
     "format": "base64", "content": "...", "signature": "..."}

Payload fields are opaque to the client and are passed through unchanged.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CommandType(str, Enum):
    """All commands understood by the agent."""

    # Signing
    SIGNER = "signer"
    FILE_SIGNER = "filesigner"
    FILE_SIGNER_USING_DEFAULTS = "filesignerusingdefaults"

    # Validation
    VALIDATE = "validate"
    VALIDATE_FILE = "validatefile"

    # Queries
    STATUS = "status"
    LIST_CERTS = "listcerts"
    LIST_POLICIES = "listpolicies"
    GET_FILES = "getfiles"

    # Fire-and-forget
    LOGOUT_PKCS11 = "logoutpkcs11"
    SHUTDOWN = "shutdown"


# Commands the agent never answers
FIRE_AND_FORGET = frozenset({CommandType.LOGOUT_PKCS11.value, CommandType.SHUTDOWN.value})


class CommandEnvelope(BaseModel):
    """An outbound command.

    Only `command` and `requestId` are interpreted; any other field is
    payload and is serialized as given.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    command: str
    request_id: str | int | None = Field(default=None, alias="requestId")

    @property
    def has_request_id(self) -> bool:
        """True when a non-empty correlation identifier is set."""
        return self.request_id is not None and self.request_id != ""

    def to_dict(self) -> dict[str, Any]:
        """Wire representation. `requestId` is omitted when unset."""
        data = self.model_dump(by_alias=True)
        if not self.has_request_id:
            data.pop("requestId", None)
        return data

    def to_frame(self) -> str:
        """Serialize to a JSON text frame."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | CommandEnvelope) -> CommandEnvelope:
        """Accept either an envelope or a plain mapping with a `command` key."""
        if isinstance(data, CommandEnvelope):
            return data
        return cls.model_validate(dict(data))

    @classmethod
    def create(
        cls,
        command: str | CommandType,
        request_id: str | int | None = None,
        **payload: Any,
    ) -> CommandEnvelope:
        """Factory method for creating envelopes."""
        return cls(
            command=command.value if isinstance(command, CommandType) else command,
            request_id=request_id,
            **payload,
        )

    # Convenience factories, one per agent command

    @classmethod
    def signer(
        cls,
        alias: str | None,
        provider: str | None,
        content: str,
        signature_policy: str | None,
    ) -> CommandEnvelope:
        """Sign raw text content."""
        return cls.create(
            CommandType.SIGNER,
            type="raw",
            format="text",
            compacted=False,
            alias=alias,
            signaturePolicy=signature_policy,
            provider=provider,
            content=content,
        )

    @classmethod
    def validate_content(cls, content: str, signature: str) -> CommandEnvelope:
        """Validate a signature against its content. Both must be base64."""
        return cls.create(
            CommandType.VALIDATE,
            format="base64",
            content=content,
            signature=signature,
        )

    @classmethod
    def file_signer(
        cls,
        alias: str | None,
        provider: str | None,
        file_name: str,
        signature_policy: str | None,
    ) -> CommandEnvelope:
        """Sign a file previously listed by `getfiles`."""
        return cls.create(
            CommandType.FILE_SIGNER,
            type="raw",
            format="text",
            compacted=False,
            alias=alias,
            signaturePolicy=signature_policy,
            provider=provider,
            content=file_name,
        )

    @classmethod
    def file_signer_using_defaults(cls) -> CommandEnvelope:
        """Sign a file with the agent's first certificate, provider and policy."""
        return cls.create(
            CommandType.FILE_SIGNER_USING_DEFAULTS,
            type="raw",
            format="text",
            compacted=False,
        )

    @classmethod
    def validate_file(cls) -> CommandEnvelope:
        return cls.create(CommandType.VALIDATE_FILE)

    @classmethod
    def status(cls) -> CommandEnvelope:
        return cls.create(CommandType.STATUS)

    @classmethod
    def list_certs(cls) -> CommandEnvelope:
        return cls.create(CommandType.LIST_CERTS)

    @classmethod
    def list_policies(cls) -> CommandEnvelope:
        return cls.create(CommandType.LIST_POLICIES)

    @classmethod
    def get_files(cls) -> CommandEnvelope:
        return cls.create(CommandType.GET_FILES)

    @classmethod
    def logout_pkcs11(cls) -> CommandEnvelope:
        return cls.create(CommandType.LOGOUT_PKCS11)

    @classmethod
    def shutdown(cls) -> CommandEnvelope:
        return cls.create(CommandType.SHUTDOWN)
