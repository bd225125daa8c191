"""Tests for the click command-line entry point."""

from unittest.mock import AsyncMock, MagicMock, patch

from click.testing import CliRunner

from toolstream.cli import main
from toolstream.errors import ProviderError
from toolstream.types import LLMResponse, Usage


def _invoke(tmp_path, *args):
    runner = CliRunner()
    return runner.invoke(main, ["--config", str(tmp_path / "none.yaml"), *args])


def _mock_orchestrator(**send_kwargs):
    orchestrator = MagicMock()
    orchestrator.send_message = AsyncMock(**send_kwargs)
    orchestrator.close = AsyncMock()
    return orchestrator


class TestProvidersCommand:
    def test_lists_catalog(self, tmp_path):
        result = _invoke(tmp_path, "providers")
        assert result.exit_code == 0
        assert "ollama" in result.output


class TestChatCommand:
    def test_requires_model(self, tmp_path):
        result = _invoke(tmp_path, "chat", "hello")
        assert result.exit_code == 2
        assert "No model configured" in result.output

    def test_no_stream_prints_reply(self, tmp_path):
        response = LLMResponse(content="hi there", usage=Usage.from_counts(1, 2), rounds=1, model="m")
        orchestrator = _mock_orchestrator(return_value=response)
        with patch("toolstream.cli.AgenticOrchestrator", return_value=orchestrator):
            result = _invoke(tmp_path, "chat", "hello", "--model", "m", "--no-stream")

        assert result.exit_code == 0, result.output
        assert "hi there" in result.output
        assert "3 tokens" in result.output
        orchestrator.close.assert_awaited_once()
        _, kwargs = orchestrator.send_message.call_args
        assert kwargs["on_stream_chunk"] is None

    def test_stream_passes_chunk_callback(self, tmp_path):
        orchestrator = _mock_orchestrator(return_value=LLMResponse(content="x", model="m"))
        with patch("toolstream.cli.AgenticOrchestrator", return_value=orchestrator):
            result = _invoke(tmp_path, "chat", "hello", "--model", "m")

        assert result.exit_code == 0, result.output
        _, kwargs = orchestrator.send_message.call_args
        assert callable(kwargs["on_stream_chunk"])

    def test_provider_error_exits_1(self, tmp_path):
        orchestrator = _mock_orchestrator(
            side_effect=ProviderError("ollama", "Ollama API error (500): boom", 500),
        )
        with patch("toolstream.cli.AgenticOrchestrator", return_value=orchestrator):
            result = _invoke(tmp_path, "chat", "hello", "--model", "m")

        assert result.exit_code == 1
        orchestrator.close.assert_awaited_once()
