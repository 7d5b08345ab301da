"""Tests for the signer-desktop CLI."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from signer_desktop import ClientConfig, MockConnection, SignerDesktopClient
from signer_desktop.cli import main


class ScriptedConnection(MockConnection):
    """Answers each tracked command with a canned response."""

    def __init__(self, config: ClientConfig, responses: dict[str, dict[str, Any]]):
        super().__init__(config)
        self.responses = responses

    async def _do_send(self, data: str) -> None:
        await super()._do_send(data)
        frame = self.sent_frames[-1]
        if "requestId" not in frame:
            return
        response = {"requestId": frame["requestId"], **self.responses.get(frame["command"], {})}
        asyncio.get_running_loop().call_soon(self.feed, response)


@pytest.fixture
def sent() -> list[dict[str, Any]]:
    return []


def scripted(responses: dict[str, dict[str, Any]], sent: list[dict[str, Any]], **kwargs):
    """Patch the CLI to build clients over a ScriptedConnection."""
    connections: list[ScriptedConnection] = []

    def factory(config: ClientConfig) -> SignerDesktopClient:
        connection = ScriptedConnection(config, responses)
        for key, value in kwargs.items():
            setattr(connection, key, value)
        connections.append(connection)
        original = connection._do_send

        async def recording_send(data: str) -> None:
            sent.append(json.loads(data))
            await original(data)

        connection._do_send = recording_send
        return SignerDesktopClient(connection=connection)

    return patch("signer_desktop.cli.SignerDesktopClient", side_effect=factory)


class TestCli:
    """Test CLI commands against a scripted agent."""

    def test_status_table(self, sent):
        runner = CliRunner()
        with scripted({"status": {"desktopVersion": "1.0"}}, sent):
            result = runner.invoke(main, ["status"])

        assert result.exit_code == 0, result.output
        assert "desktopVersion" in result.output
        assert "1.0" in result.output
        assert sent[0]["command"] == "status"

    def test_status_json(self, sent):
        runner = CliRunner()
        with scripted({"status": {"desktopVersion": "1.0"}}, sent):
            result = runner.invoke(main, ["--format", "json", "status"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["desktopVersion"] == "1.0"

    def test_certs_list_output(self, sent):
        runner = CliRunner()
        certs = {"certificates": [{"alias": "joao", "provider": "TOKEN"}]}
        with scripted({"listcerts": certs}, sent):
            result = runner.invoke(main, ["certs"])

        assert result.exit_code == 0, result.output
        assert "alias=joao" in result.output

    def test_sign_passes_options(self, sent):
        runner = CliRunner()
        with scripted({"signer": {"signed": "abc"}}, sent):
            result = runner.invoke(
                main,
                ["sign", "hello", "--alias", "cert-1", "--provider", "TOKEN", "--policy", "P"],
            )

        assert result.exit_code == 0, result.output
        assert sent[0]["command"] == "signer"
        assert sent[0]["alias"] == "cert-1"
        assert sent[0]["provider"] == "TOKEN"
        assert sent[0]["signaturePolicy"] == "P"
        assert sent[0]["content"] == "hello"

    def test_validate_business_error(self, sent):
        runner = CliRunner()
        with scripted({"validate": {"error": {"code": "INVALID_SIGNATURE"}}}, sent):
            result = runner.invoke(main, ["validate", "YQ==", "Yg=="])

        assert result.exit_code == 1
        assert "INVALID_SIGNATURE" in result.output

    def test_shutdown_is_untracked(self, sent):
        runner = CliRunner()
        with scripted({}, sent):
            result = runner.invoke(main, ["shutdown"])

        assert result.exit_code == 0, result.output
        assert sent == [{"command": "shutdown"}]
        assert "Shutdown sent" in result.output

    def test_connection_refused(self, sent):
        runner = CliRunner()
        with scripted({}, sent, connect_error=OSError("refused")):
            result = runner.invoke(main, ["status"])

        assert result.exit_code == 1
        assert "refused" in result.output
        assert sent == []

    def test_uri_option(self, sent):
        runner = CliRunner()
        with scripted({}, sent) as factory:
            runner.invoke(main, ["--uri", "ws://127.0.0.1:9999/", "files"])

        config = factory.call_args[0][0]
        assert config.uri == "ws://127.0.0.1:9999/"

    def test_malformed_timeout_env(self, sent, monkeypatch):
        """A bad SIGNER_DESKTOP_TIMEOUT is a usage error, not a traceback."""
        monkeypatch.setenv("SIGNER_DESKTOP_TIMEOUT", "soon")
        runner = CliRunner()
        with scripted({}, sent):
            result = runner.invoke(main, ["status"])

        assert result.exit_code == 1
        assert "SIGNER_DESKTOP_TIMEOUT" in result.output
        assert "soon" in result.output
        assert isinstance(result.exception, SystemExit)
        assert sent == []
