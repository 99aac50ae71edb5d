"""Tests for the command-line parser, the ask command and the synthesizer wiring."""
from types import SimpleNamespace

import pytest

from oblivion import cli
from oblivion.cli import build_parser
from oblivion.config import Settings
from oblivion.context import AppContext, build_synthesizer
from oblivion.services.credentials import CredentialStore

from conftest import Script


class TestParser:

    def test_ask(self):
        args = build_parser().parse_args(
            ["ask", "What is 2+2?", "-s", "openai:gpt-4o", "-s", "ollama:llama3", "--timeout", "10"]
        )
        assert args.command == "ask"
        assert args.session == ["openai:gpt-4o", "ollama:llama3"]
        assert args.timeout == 10.0
        assert args.synthesize is False

    def test_ask_requires_session(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["ask", "q"])

    def test_serve_defaults(self):
        args = build_parser().parse_args(["serve"])
        assert args.host == "127.0.0.1"
        assert args.port == 8000

    def test_set_key(self):
        assert build_parser().parse_args(["set-key", "openai"]).provider == "openai"


class TestSynthesizerWiring:

    def test_disabled_by_default(self, registry):
        assert build_synthesizer(Settings(synthesizer_provider="", synthesizer_model=""), registry) is None

    def test_enabled(self, registry):
        config = Settings(synthesizer_provider="alpha", synthesizer_model="judge")
        synthesizer = build_synthesizer(config, registry)
        assert synthesizer.label == "alpha/judge"


class TestAsk:

    @pytest.fixture
    def context(self, registry, monkeypatch):
        credentials = CredentialStore(iterations=1000)
        credentials.save("alpha", "sk-alpha", "pw")
        ctx = AppContext.build(
            Settings(synthesizer_provider="", synthesizer_model="", prompt_store_path=""),
            registry=registry,
            credentials=credentials,
        )
        monkeypatch.setattr(cli, "AppContext", SimpleNamespace(build=lambda: ctx))
        return ctx

    @pytest.mark.asyncio
    async def test_passphrase_read_before_any_query(self, context, scripts, monkeypatch):
        scripts["alpha/m1"] = Script(reply="4")
        scripts["beta/m1"] = Script(reply="4")
        prompted = []

        def _getpass(prompt=""):
            prompted.append(len(scripts["alpha/m1"].prompts))
            return "pw"

        monkeypatch.setattr(cli.getpass, "getpass", _getpass)
        args = build_parser().parse_args(["ask", "2+2?", "-s", "alpha:m1", "-s", "beta:m1"])

        assert await cli._run_ask(args) == 0
        # Once, and before alpha saw the prompt
        assert prompted == [0]
        assert scripts["alpha/m1"].keys == ["sk-alpha"]
        assert scripts["beta/m1"].keys == [None]

    @pytest.mark.asyncio
    async def test_no_passphrase_without_stored_keys(self, context, scripts, monkeypatch):
        def _getpass(prompt=""):
            raise AssertionError("passphrase should not be requested")

        monkeypatch.setattr(cli.getpass, "getpass", _getpass)
        args = build_parser().parse_args(["ask", "2+2?", "-s", "beta:m1", "-s", "gamma:m1"])

        assert await cli._run_ask(args) == 0

    @pytest.mark.asyncio
    async def test_invalid_session_spec(self, context):
        args = build_parser().parse_args(["ask", "q", "-s", "alpha"])
        assert await cli._run_ask(args) == 2

    @pytest.mark.asyncio
    async def test_saved_prompt_becomes_system_prompt(self, context, scripts):
        context.prompts.add("terse", "Terse", "Answer in one word.")
        args = build_parser().parse_args(
            ["ask", "2+2?", "-s", "beta:m1", "-s", "gamma:m1", "--use-prompt", "terse"]
        )

        assert await cli._run_ask(args) == 0
        assert scripts["beta/m1"].system_prompts == ["Answer in one word."]

    @pytest.mark.asyncio
    async def test_unknown_saved_prompt(self, context, scripts):
        args = build_parser().parse_args(["ask", "q", "-s", "beta:m1", "--use-prompt", "missing"])
        assert await cli._run_ask(args) == 1
        assert scripts.get("beta/m1") is None or scripts["beta/m1"].prompts == []
