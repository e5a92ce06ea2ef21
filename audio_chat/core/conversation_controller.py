"""
Turn-taking conversation controller.

Each turn records an utterance, queries the language model with a bounded
context window, prints and speaks the reply, and waits for speech to end
or for a key press that either interrupts playback or ends the session.
"""

import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, Tuple
import click
import structlog

from ..providers.transcription.base import (
    TranscriptionSource,
    TranscriptionOptions,
    TranscriptionAborted,
    TranscriptionError,
)
from ..providers.query.base import QueryService, QueryError
from ..providers.speech.base import SpeechRenderer, RenderError
from ..providers.registry import registry
from ..metrics.collector import MetricsCollector
from ..config.settings import settings
from .context import ContextWindow, Turn
from .handlers import HandlerChain, HandlerResult, PhraseHandler
from .interrupt import InterruptListener, SpeechOutcome, DEFAULT_QUIT_KEYS


logger = structlog.get_logger()


class LoopState(Enum):
    """Where the controller is within a turn."""

    LISTENING = "listening"
    TRANSCRIBING = "transcribing"
    QUERYING = "querying"
    SPEAKING = "speaking"
    INTERRUPT_CHECK = "interrupt_check"
    TERMINATED = "terminated"


class SessionAborted(Exception):
    """Raised to end the session at the user's request."""


@dataclass
class ConversationConfig:
    """Configuration for the conversation loop."""

    transcription_provider: str = "whisperkit"
    query_provider: str = "lmstudio"
    speech_provider: str = "elevenlabs"
    instructions: str = field(default_factory=lambda: settings.system_prompts.default)
    model: Optional[str] = None
    temperature: float = 0.2
    transcription_options: TranscriptionOptions = field(default_factory=TranscriptionOptions)
    replies_only: bool = False
    no_speech: bool = False
    context_depth: int = 1
    halt_on_turn_error: bool = False
    poll_interval: float = 0.05  # seconds
    quit_keys: Tuple[str, ...] = DEFAULT_QUIT_KEYS
    quit_phrases: Tuple[str, ...] = ()
    reset_phrases: Tuple[str, ...] = ()
    enable_metrics: bool = True
    mock_mode: bool = False


class ConversationController:
    """
    Runs the conversation one turn at a time.

    Transcription and query calls block the controller thread; speech plays
    in the background while the interrupt listener polls the keyboard. The
    context window and loop state are only touched from the thread that
    calls ``run``. ``stop`` may be called from any thread.
    """

    def __init__(
        self,
        config: ConversationConfig,
        transcription_source: Optional[TranscriptionSource] = None,
        query_service: Optional[QueryService] = None,
        speech_renderer: Optional[SpeechRenderer] = None,
        interrupt_listener: Optional[InterruptListener] = None,
        handler_chain: Optional[HandlerChain] = None,
    ):
        self.config = config

        self.state = LoopState.LISTENING
        self.context = ContextWindow(depth=config.context_depth)
        self.shutdown_event = threading.Event()
        self.is_running = False
        self.session_id: Optional[str] = None
        self.turns_completed = 0
        self.last_error: Optional[str] = None

        self.transcription_source = transcription_source or self._initialize_transcription_source()
        self.query_service = query_service or self._initialize_query_service()
        if speech_renderer is not None:
            self.speech_renderer: Optional[SpeechRenderer] = speech_renderer
        elif config.no_speech:
            self.speech_renderer = None
        else:
            self.speech_renderer = self._initialize_speech_renderer()

        self.interrupt_listener = interrupt_listener or InterruptListener(
            quit_keys=config.quit_keys, poll_interval=config.poll_interval
        )
        self.handler_chain = (
            handler_chain if handler_chain is not None else self._build_handler_chain()
        )
        self.metrics_collector = MetricsCollector() if config.enable_metrics else None

    def _initialize_transcription_source(self) -> TranscriptionSource:
        """Create the transcription source named in the configuration."""
        if self.config.mock_mode:
            from mocks.providers import MockTranscriptionSource

            return MockTranscriptionSource()
        return registry.get_transcription_source(self.config.transcription_provider)

    def _initialize_query_service(self) -> QueryService:
        """Create the query service named in the configuration."""
        if self.config.mock_mode:
            from mocks.providers import MockQueryService

            return MockQueryService()
        return registry.get_query_service(self.config.query_provider)

    def _initialize_speech_renderer(self) -> SpeechRenderer:
        """Create the speech renderer named in the configuration."""
        if self.config.mock_mode:
            from mocks.providers import MockSpeechRenderer

            return MockSpeechRenderer()
        return registry.get_speech_renderer(self.config.speech_provider)

    def _build_handler_chain(self) -> HandlerChain:
        chain = HandlerChain()
        if self.config.quit_phrases:
            chain.add(PhraseHandler(self.config.quit_phrases, self._quit_by_phrase, name="quit"))
        if self.config.reset_phrases:
            chain.add(PhraseHandler(self.config.reset_phrases, self._reset_by_phrase, name="reset"))
        return chain

    def _quit_by_phrase(self, text: str) -> None:
        self._notice("Session ended.")
        raise SessionAborted(f"Quit phrase heard: {text}")

    def _reset_by_phrase(self, text: str) -> None:
        self.context.clear()
        self._notice("Conversation context cleared.")

    def run(self) -> None:
        """
        Run turns until the user quits, the transcription source aborts, or
        ``stop`` is called.

        Raises:
            TranscriptionError: the transcription source failed
            QueryError: a query failed and halt_on_turn_error is set
            RenderError: speech failed and halt_on_turn_error is set
        """
        try:
            self._start()
            while not self.shutdown_event.is_set():
                self.run_turn()
        except SessionAborted as e:
            logger.info("Session aborted", reason=str(e))
        except TranscriptionAborted as e:
            logger.info("Transcription aborted, ending session", reason=str(e))
        finally:
            self._terminate()

    def _start(self) -> None:
        self.session_id = uuid.uuid4().hex[:12]
        logger.info(
            "Starting conversation",
            session_id=self.session_id,
            query_provider=self.config.query_provider,
            model=self.config.model,
            context_depth=self.config.context_depth,
        )

        self.shutdown_event.clear()
        self.is_running = True

        self.transcription_source.initialize()
        self.query_service.initialize()
        if self.speech_renderer:
            try:
                self.speech_renderer.initialize()
            except RenderError as e:
                if self.config.halt_on_turn_error:
                    raise
                logger.warning("Speech output unavailable", error=str(e))
                self._notice(f"Speech output unavailable ({e}); replies will only be printed.")
                self.speech_renderer = None

        if self.metrics_collector:
            self.metrics_collector.start_session(self.session_id)

        self.interrupt_listener.open()
        self._set_state(LoopState.LISTENING)

    def run_turn(self) -> Optional[Turn]:
        """
        Run a single listen, query and speak cycle.

        Returns the answered turn, or None when the turn ended early
        (silence, a handled phrase, a failed query, or shutdown).
        """
        self._set_state(LoopState.LISTENING)
        self._set_state(LoopState.TRANSCRIBING)

        start_time = time.time()
        text = self.transcription_source.transcribe(self.config.transcription_options)
        if self.metrics_collector:
            self.metrics_collector.record_transcription_latency((time.time() - start_time) * 1000)

        if not text or not text.strip():
            self._notice("Silence detected.")
            if self.metrics_collector:
                self.metrics_collector.record_silence()
            return None

        text = text.strip()
        if self.handler_chain.try_handle(text) is HandlerResult.HANDLED:
            return None

        self._set_state(LoopState.QUERYING)
        context_text = self.context.compose(text)
        logger.debug("Querying", context_length=len(context_text))

        start_time = time.time()
        try:
            reply = self.query_service.query(
                context_text,
                self.config.instructions,
                self.config.temperature,
                self.config.model,
            )
        except QueryError as e:
            self._turn_failed("query", e)
            return None

        if self.metrics_collector:
            self.metrics_collector.record_query_latency((time.time() - start_time) * 1000)

        if self.shutdown_event.is_set():
            return None

        turn = Turn(user_text=text, assistant_text=reply)
        self._echo_turn(turn)
        speaking = self._start_speech(reply)

        # One-turn sliding window: this exchange replaces the previous one
        self.context.commit(turn)
        self.turns_completed += 1
        if self.metrics_collector:
            self.metrics_collector.record_interaction()

        if speaking:
            self._await_speech()

        return turn

    def _start_speech(self, reply: str) -> bool:
        """Start speaking the reply. Returns whether speech was started."""
        if not self.speech_renderer:
            return False

        self._set_state(LoopState.SPEAKING)
        try:
            self.speech_renderer.speak(reply)
        except RenderError as e:
            self._turn_failed("speech", e)
            return False
        return True

    def _await_speech(self) -> None:
        """Wait for speech to finish unless a key press cuts it short."""
        self._set_state(LoopState.INTERRUPT_CHECK)
        outcome = self.interrupt_listener.wait_while_speaking(
            self.speech_renderer, self.shutdown_event
        )

        if outcome is SpeechOutcome.QUIT:
            self.speech_renderer.stop_speaking()
            self._notice("Session ended.")
            raise SessionAborted("Quit key pressed")

        if outcome is SpeechOutcome.INTERRUPTED:
            # Speech keeps playing; the user simply starts the next turn
            logger.debug("Barge-in, listening again")
            if self.metrics_collector:
                self.metrics_collector.record_interruption()

        error = self.speech_renderer.take_error()
        if error:
            self._turn_failed("speech", RenderError(error))

    def _turn_failed(self, component: str, error: Exception) -> None:
        """Report a failed query or speech call for this turn."""
        self.last_error = str(error)
        logger.error("Turn failed", component=component, error=str(error))
        if self.metrics_collector:
            self.metrics_collector.record_error(component, str(error))

        click.echo(click.style(f"{component.capitalize()} failed: {error}", fg="red"), err=True)

        if self.config.halt_on_turn_error:
            raise error

    def _terminate(self) -> None:
        self._set_state(LoopState.TERMINATED)
        self.is_running = False
        self.shutdown_event.set()

        if self.speech_renderer:
            try:
                self.speech_renderer.stop_speaking()
            except RenderError as e:
                logger.warning("Error stopping speech", error=str(e))

        self.interrupt_listener.close()
        self._notice("Conversation ended.")

        if self.metrics_collector and self.metrics_collector.current_session:
            self.metrics_collector.end_session()

        self._stop_providers()
        logger.info("Conversation stopped", turns=self.turns_completed)

    def _stop_providers(self) -> None:
        providers = [self.transcription_source, self.query_service, self.speech_renderer]
        for provider in providers:
            if provider is None:
                continue
            try:
                provider.stop()
            except (TranscriptionError, QueryError, RenderError, OSError) as e:
                logger.warning(
                    "Error stopping provider",
                    provider=type(provider).__name__,
                    error=str(e),
                )

    def stop(self) -> None:
        """Ask a running conversation to end. Safe to call from any thread."""
        logger.info("Stopping conversation")
        self.shutdown_event.set()

        # Unblocks a recording in progress with TranscriptionAborted
        try:
            self.transcription_source.stop()
        except (TranscriptionError, OSError) as e:
            logger.warning("Error stopping transcription", error=str(e))

        if self.speech_renderer:
            try:
                self.speech_renderer.stop_speaking()
            except RenderError as e:
                logger.warning("Error stopping speech", error=str(e))

    def _set_state(self, state: LoopState) -> None:
        if state is not self.state:
            logger.debug("State transition", from_state=self.state.value, to_state=state.value)
        self.state = state

    def _echo_turn(self, turn: Turn) -> None:
        if not self.config.replies_only:
            click.echo(click.style(f"You: {turn.user_text}", fg="cyan"))
        click.echo(click.style(f"Assistant: {turn.assistant_text}", fg="green", bold=True))

    def _notice(self, message: str) -> None:
        click.echo(click.style(message, fg="yellow"))

    def get_status(self) -> Dict[str, Any]:
        """Get current controller status."""
        return {
            "is_running": self.is_running,
            "state": self.state.value,
            "session_id": self.session_id,
            "turns_completed": self.turns_completed,
            "context_turns": len(self.context),
            "last_error": self.last_error,
            "providers_status": {
                "transcription": self.transcription_source.get_status(),
                "query": self.query_service.get_status(),
                "speech": self.speech_renderer.get_status() if self.speech_renderer else None,
            },
        }
