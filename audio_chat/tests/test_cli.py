"""Tests for the audio-chat command line interface."""

import json
import pytest
from unittest.mock import Mock, patch
from click.testing import CliRunner

from ..cli import main as cli_main
from ..cli.main import cli, signal_handler
from ..providers.query.base import QueryError
from ..providers.transcription.base import TranscriptionError


class TestStartCommand:
    """Test cases for the start command."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_mock_conversation(self):
        result = self.runner.invoke(cli, ["start", "--mock"])

        assert result.exit_code == 0, result.output
        assert "MOCK mode" in result.output
        assert "You: What is the capital of France?" in result.output
        assert "Assistant: The capital of France is Paris." in result.output
        assert "Silence detected." in result.output
        assert "Session summary:" in result.output
        assert "Turns: 3" in result.output

    def test_mock_conversation_replies_only(self):
        result = self.runner.invoke(cli, ["start", "--mock", "--replies-only", "--no-speech"])

        assert result.exit_code == 0, result.output
        assert "You:" not in result.output
        assert "Paris" in result.output

    def test_invalid_provider(self):
        result = self.runner.invoke(cli, ["start", "--query-provider", "nope"])

        assert result.exit_code == 2
        assert "Invalid query provider 'nope'" in result.output

    def test_invalid_temperature(self):
        result = self.runner.invoke(cli, ["start", "--mock", "--temperature", "5"])

        assert result.exit_code == 2

    def test_options_reach_controller(self):
        with patch("audio_chat.cli.main.ConversationController") as mock_controller:
            mock_controller.return_value.metrics_collector = None
            result = self.runner.invoke(
                cli,
                [
                    "start",
                    "--mock",
                    "--model", "qwen2.5-7b",
                    "-t", "0.5",
                    "--context-depth", "2",
                    "--quit-phrase", "goodbye",
                    "--quit-phrase", "stop listening",
                    "--halt-on-error",
                    "--language", "de",
                ],
            )

        assert result.exit_code == 0, result.output
        config = mock_controller.call_args.args[0]
        assert config.model == "qwen2.5-7b"
        assert config.temperature == 0.5
        assert config.context_depth == 2
        assert config.quit_phrases == ("goodbye", "stop listening")
        assert config.halt_on_turn_error is True
        assert config.transcription_options.language == "de"
        assert config.mock_mode is True

    def test_transcription_failure_exits_nonzero(self):
        with patch("audio_chat.cli.main.ConversationController") as mock_controller:
            mock_controller.return_value.metrics_collector = None
            mock_controller.return_value.run.side_effect = TranscriptionError("no microphone")
            result = self.runner.invoke(cli, ["start", "--mock"])

        assert result.exit_code == 1
        assert "Transcription failed: no microphone" in result.output

    def test_halted_session_exits_nonzero(self):
        with patch("audio_chat.cli.main.ConversationController") as mock_controller:
            mock_controller.return_value.metrics_collector = None
            mock_controller.return_value.run.side_effect = QueryError("server down")
            result = self.runner.invoke(cli, ["start", "--mock", "--halt-on-error"])

        assert result.exit_code == 1
        assert "Session halted: server down" in result.output

    def test_signal_handler_stops_controller(self):
        controller = Mock()
        with patch.object(cli_main, "controller", controller):
            signal_handler(15, None)

        controller.stop.assert_called_once()


class TestAskCommand:
    """Test cases for the ask command."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    @pytest.fixture
    def mock_service(self):
        service = Mock()
        service.query.return_value = "Berlin."
        return service

    def test_mock_ask(self):
        result = self.runner.invoke(cli, ["ask", "--mock", "--input", "Capital of France?"])

        assert result.exit_code == 0
        assert "The capital of France is Paris." in result.output

    def test_ask_sends_composed_context(self, mock_service):
        with patch("audio_chat.cli.main.registry.get_query_service", return_value=mock_service):
            result = self.runner.invoke(
                cli, ["ask", "-i", "Capital of Germany?", "-s", "Be brief.", "-t", "0.1"]
            )

        assert result.exit_code == 0
        assert "Berlin." in result.output
        context, instructions, temperature, _ = mock_service.query.call_args.args
        assert context == "<< Capital of Germany?"
        assert instructions == "Be brief."
        assert temperature == 0.1
        mock_service.initialize.assert_called_once()
        mock_service.stop.assert_called_once()

    def test_ask_from_stdin(self, mock_service):
        with patch("audio_chat.cli.main.registry.get_query_service", return_value=mock_service):
            result = self.runner.invoke(cli, ["ask"], input="Hello from stdin\n")

        assert result.exit_code == 0
        assert mock_service.query.call_args.args[0] == "<< Hello from stdin"

    def test_ask_empty_stdin(self):
        result = self.runner.invoke(cli, ["ask"], input="")

        assert result.exit_code == 1
        assert "No input provided" in result.output

    def test_ask_json(self, mock_service):
        with patch("audio_chat.cli.main.registry.get_query_service", return_value=mock_service):
            result = self.runner.invoke(
                cli, ["ask", "-i", "Hi", "--provider", "gemini", "--json"]
            )

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["response"] == "Berlin."
        assert data["provider"] == "gemini"
        assert data["input"] == "Hi"
        assert "total_latency_ms" in data["metadata"]

    def test_ask_query_error(self, mock_service):
        mock_service.query.side_effect = QueryError("No model is loaded in LM Studio")
        with patch("audio_chat.cli.main.registry.get_query_service", return_value=mock_service):
            result = self.runner.invoke(cli, ["ask", "-i", "Hi"])

        assert result.exit_code == 1
        assert "No model is loaded" in result.output
        mock_service.stop.assert_called_once()


class TestModelsAndProviders:
    """Test cases for the models and providers commands."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_models(self):
        with patch("audio_chat.cli.main.LMStudioQueryService") as mock_cls:
            service = mock_cls.return_value
            service.base_url = "http://localhost:1234/v1"
            service.list_models.return_value = ["qwen2.5-7b", "llama-3.2-3b"]
            result = self.runner.invoke(cli, ["models"])

        assert result.exit_code == 0
        assert "  - qwen2.5-7b" in result.output
        assert "  - llama-3.2-3b" in result.output

    def test_models_json(self):
        with patch("audio_chat.cli.main.LMStudioQueryService") as mock_cls:
            mock_cls.return_value.list_models.return_value = ["qwen2.5-7b"]
            result = self.runner.invoke(cli, ["models", "--json"])

        assert json.loads(result.output) == ["qwen2.5-7b"]

    def test_models_unreachable(self):
        with patch("audio_chat.cli.main.LMStudioQueryService") as mock_cls:
            mock_cls.return_value.list_models.side_effect = QueryError("Connection error.")
            result = self.runner.invoke(cli, ["models"])

        assert result.exit_code == 1
        assert "Connection error." in result.output

    def test_providers(self):
        result = self.runner.invoke(cli, ["providers"])

        assert result.exit_code == 0
        assert "whisperkit" in result.output
        assert "lmstudio" in result.output
        assert "gemini" in result.output
        assert "elevenlabs" in result.output
