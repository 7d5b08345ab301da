"""Unit tests for command and response envelopes."""

import json

import pytest

from signer_desktop.protocol import FIRE_AND_FORGET, CommandEnvelope, CommandType, ResponseEnvelope


class TestCommandEnvelope:
    """Test CommandEnvelope creation and serialization."""

    def test_create_without_request_id(self):
        """Unset requestId is left out of the wire form."""
        envelope = CommandEnvelope.create(CommandType.STATUS)

        assert envelope.command == "status"
        assert not envelope.has_request_id
        assert envelope.to_dict() == {"command": "status"}

    def test_create_with_request_id(self):
        envelope = CommandEnvelope.create("status", request_id="abc")

        assert envelope.to_dict() == {"command": "status", "requestId": "abc"}

    def test_empty_request_id_is_unset(self):
        envelope = CommandEnvelope(command="status", requestId="")

        assert not envelope.has_request_id
        assert "requestId" not in envelope.to_dict()

    def test_payload_fields_pass_through(self):
        """Unknown fields are kept verbatim."""
        envelope = CommandEnvelope.from_mapping(
            {"command": "custom", "requestId": 7, "nested": {"a": [1, 2]}, "flag": None}
        )

        assert envelope.request_id == 7
        assert envelope.to_dict() == {
            "command": "custom",
            "requestId": 7,
            "nested": {"a": [1, 2]},
            "flag": None,
        }

    def test_to_frame_is_json(self):
        envelope = CommandEnvelope.create(CommandType.LIST_CERTS, request_id=1)

        assert json.loads(envelope.to_frame()) == {"command": "listcerts", "requestId": 1}

    def test_from_mapping_returns_same_envelope(self):
        envelope = CommandEnvelope.status()

        assert CommandEnvelope.from_mapping(envelope) is envelope

    def test_from_mapping_requires_command(self):
        with pytest.raises(ValueError):
            CommandEnvelope.from_mapping({"requestId": 1})


class TestCommandFactories:
    """Test the per-command factories."""

    def test_signer(self):
        envelope = CommandEnvelope.signer("my-cert", "TOKEN", "hello", "AD_RB_CADES_2_2")

        assert envelope.to_dict() == {
            "command": "signer",
            "type": "raw",
            "format": "text",
            "compacted": False,
            "alias": "my-cert",
            "signaturePolicy": "AD_RB_CADES_2_2",
            "provider": "TOKEN",
            "content": "hello",
        }

    def test_file_signer_puts_file_name_in_content(self):
        data = CommandEnvelope.file_signer("my-cert", "TOKEN", "contract.pdf", "POLICY").to_dict()

        assert data["command"] == "filesigner"
        assert data["content"] == "contract.pdf"
        assert data["type"] == "raw"
        assert data["signaturePolicy"] == "POLICY"

    def test_file_signer_using_defaults(self):
        assert CommandEnvelope.file_signer_using_defaults().to_dict() == {
            "command": "filesignerusingdefaults",
            "type": "raw",
            "format": "text",
            "compacted": False,
        }

    def test_validate_content(self):
        assert CommandEnvelope.validate_content("Y29udGVudA==", "c2ln").to_dict() == {
            "command": "validate",
            "format": "base64",
            "content": "Y29udGVudA==",
            "signature": "c2ln",
        }

    @pytest.mark.parametrize(
        ("factory", "command"),
        [
            (CommandEnvelope.validate_file, "validatefile"),
            (CommandEnvelope.status, "status"),
            (CommandEnvelope.list_certs, "listcerts"),
            (CommandEnvelope.list_policies, "listpolicies"),
            (CommandEnvelope.get_files, "getfiles"),
            (CommandEnvelope.logout_pkcs11, "logoutpkcs11"),
            (CommandEnvelope.shutdown, "shutdown"),
        ],
    )
    def test_bare_commands(self, factory, command):
        assert factory().to_dict() == {"command": command}

    def test_fire_and_forget_set(self):
        assert FIRE_AND_FORGET == {"logoutpkcs11", "shutdown"}


class TestResponseEnvelope:
    """Test inbound frame parsing."""

    def test_success_frame(self):
        envelope = ResponseEnvelope.from_frame('{"requestId": 12, "desktopVersion": "1.0"}')

        assert envelope.request_id == 12
        assert envelope.has_request_id
        assert not envelope.is_error
        assert envelope.payload == {"requestId": 12, "desktopVersion": "1.0"}

    def test_error_frame(self):
        envelope = ResponseEnvelope.from_frame(
            '{"requestId": "r1", "error": {"code": "INVALID_SIGNATURE"}}'
        )

        assert envelope.is_error
        assert envelope.error == {"code": "INVALID_SIGNATURE"}
        assert envelope.request_id == "r1"

    def test_null_error_is_still_an_error(self):
        """Presence of the key decides, not its value."""
        envelope = ResponseEnvelope.from_frame('{"requestId": 1, "error": null}')

        assert envelope.is_error

    def test_error_without_request_id(self):
        envelope = ResponseEnvelope.from_frame('{"error": "token removed"}')

        assert envelope.is_error
        assert not envelope.has_request_id

    def test_bytes_frame(self):
        envelope = ResponseEnvelope.from_frame(b'{"requestId": 3}')

        assert envelope.request_id == 3

    def test_invalid_json(self):
        with pytest.raises(json.JSONDecodeError):
            ResponseEnvelope.from_frame("not json")

    def test_non_object_frame(self):
        with pytest.raises(ValueError):
            ResponseEnvelope.from_frame("[1, 2, 3]")
