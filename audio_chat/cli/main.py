"""CLI entry point for the audio chat assistant."""

import click
import json
import signal
import sys
import time
from pathlib import Path
import structlog
from typing import Optional, Tuple

from ..core.conversation_controller import ConversationController, ConversationConfig
from ..core.context import ContextWindow
from ..config.settings import settings
from ..utils.logging import setup_logging
from ..providers import registry
from ..providers.transcription.base import TranscriptionOptions, TranscriptionError
from ..providers.query.base import QueryError
from ..providers.query.lmstudio import LMStudioQueryService
from ..providers.speech.base import RenderError


logger = structlog.get_logger()


# Global controller for signal handling
controller: Optional[ConversationController] = None


def signal_handler(signum, frame):
    """Ask the running conversation to wind down."""
    logger.info("Received shutdown signal", signal=signum)
    if controller:
        controller.stop()


def validate_provider(ctx, param, value):
    """Validate provider selection."""
    if value is None:
        return value

    if param.name == "transcription_provider":
        valid_providers = registry.list_transcription_sources()
        provider_type = "transcription"
    elif param.name == "query_provider":
        valid_providers = registry.list_query_services()
        provider_type = "query"
    elif param.name == "speech_provider":
        valid_providers = registry.list_speech_renderers()
        provider_type = "speech"
    else:
        return value

    if value not in valid_providers:
        raise click.BadParameter(
            f"Invalid {provider_type} provider '{value}'. "
            f"Available options: {', '.join(valid_providers)}"
        )
    return value


def _pick(value, default):
    return default if value is None else value


def _configure_logging(debug: bool, log_file: bool) -> None:
    setup_logging(
        debug=debug,
        log_file=log_file or settings.logging.file_enabled,
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        file_rotation_mb=settings.logging.file_rotation_mb,
        file_backup_count=settings.logging.file_backup_count,
    )


def _load_config_file(config: Optional[str]) -> None:
    if config:
        settings.config_file = Path(config)
        settings.reload()


@click.command()
@click.option("--language", "-l", help="Spoken language code, e.g. en")
@click.option("--model", "-m", help="Model identifier passed to the query service")
@click.option(
    "--temperature",
    "-t",
    type=click.FloatRange(0.0, 2.0),
    help="Sampling temperature",
)
@click.option("--instructions", "-i", help="System instructions for the model")
@click.option(
    "--transcription-provider",
    callback=validate_provider,
    help="Transcription source to use",
)
@click.option(
    "--query-provider",
    callback=validate_provider,
    help="Query service to use",
)
@click.option(
    "--speech-provider",
    callback=validate_provider,
    help="Speech renderer to use",
)
@click.option("--desktop-audio", is_flag=True, default=None, help="Record desktop audio instead of the microphone")
@click.option("--replies-only", is_flag=True, default=None, help="Print only the assistant's replies")
@click.option("--no-speech", is_flag=True, default=None, help="Print replies without speaking them")
@click.option("--context-depth", type=click.IntRange(min=0), help="Number of previous turns sent with each query")
@click.option("--halt-on-error", is_flag=True, default=None, help="Stop the session when a query or speech call fails")
@click.option("--quit-phrase", multiple=True, help="Spoken phrase that ends the session (repeatable)")
@click.option("--reset-phrase", multiple=True, help="Spoken phrase that clears the context (repeatable)")
@click.option(
    "--config", type=click.Path(exists=True), help="Path to configuration file"
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--log-file", is_flag=True, help="Also write JSON logs to ./logs")
@click.option("--mock", is_flag=True, help="Run in mock mode (no audio devices or API calls)")
@click.option("--no-metrics", is_flag=True, help="Disable metrics collection")
@click.pass_context
def start(
    ctx: click.Context,
    language: Optional[str],
    model: Optional[str],
    temperature: Optional[float],
    instructions: Optional[str],
    transcription_provider: Optional[str],
    query_provider: Optional[str],
    speech_provider: Optional[str],
    desktop_audio: Optional[bool],
    replies_only: Optional[bool],
    no_speech: Optional[bool],
    context_depth: Optional[int],
    halt_on_error: Optional[bool],
    quit_phrase: Tuple[str, ...],
    reset_phrase: Tuple[str, ...],
    config: Optional[str],
    debug: bool,
    log_file: bool,
    mock: bool,
    no_metrics: bool,
):
    """
    Start a spoken conversation.

    Each turn records what you say, asks the language model and speaks the
    reply. While the assistant is speaking, press q or Escape to end the
    session, or any other key to start talking again right away.
    """
    global controller

    _load_config_file(config)
    _configure_logging(debug, log_file)

    issues = settings.validate()
    if issues:
        for issue in issues:
            click.echo(click.style(f"Configuration error: {issue}", fg="red"), err=True)
        ctx.exit(2)

    conv = settings.conversation
    audio = settings.audio
    conversation_config = ConversationConfig(
        transcription_provider=_pick(transcription_provider, conv.transcription_provider),
        query_provider=_pick(query_provider, conv.query_provider),
        speech_provider=_pick(speech_provider, conv.speech_provider),
        instructions=_pick(instructions, settings.system_prompts.default),
        model=_pick(model, conv.model),
        temperature=_pick(temperature, conv.temperature),
        transcription_options=TranscriptionOptions(
            language=_pick(language, audio.language),
            use_desktop_audio=_pick(desktop_audio, audio.use_desktop_audio),
            silence_threshold=audio.silence_threshold,
            max_silence_seconds=audio.max_silence_seconds,
            max_duration_seconds=audio.max_duration_seconds,
        ),
        replies_only=_pick(replies_only, conv.replies_only),
        no_speech=_pick(no_speech, conv.no_speech),
        context_depth=_pick(context_depth, conv.context_depth),
        halt_on_turn_error=_pick(halt_on_error, conv.halt_on_turn_error),
        poll_interval=conv.poll_interval_ms / 1000.0,
        quit_keys=tuple(conv.quit_keys),
        quit_phrases=quit_phrase,
        reset_phrases=reset_phrase,
        enable_metrics=settings.metrics.enabled and not no_metrics,
        mock_mode=mock,
    )

    try:
        controller = ConversationController(conversation_config)
    except ValueError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        ctx.exit(1)

    signal.signal(signal.SIGTERM, signal_handler)

    click.echo(click.style("Audio chat starting...", fg="green", bold=True))
    if mock:
        click.echo(click.style("Running in MOCK mode - no audio devices or API calls", fg="yellow"))
    else:
        click.echo(f"Transcription: {conversation_config.transcription_provider}")
        click.echo(f"Query: {conversation_config.query_provider}")
        click.echo(f"Speech: {'off' if conversation_config.no_speech else conversation_config.speech_provider}")
    click.echo("Speak after the prompt. Press q or Esc while the assistant talks to quit.\n")

    exit_code = 0
    try:
        controller.run()
    except KeyboardInterrupt:
        click.echo("\nShutting down...")
    except TranscriptionError as e:
        logger.error("Transcription failed", error=str(e))
        click.echo(click.style(f"Transcription failed: {e}", fg="red"), err=True)
        exit_code = 1
    except (QueryError, RenderError) as e:
        logger.error("Session halted", error=str(e))
        click.echo(click.style(f"Session halted: {e}", fg="red"), err=True)
        exit_code = 1
    finally:
        if controller.metrics_collector and controller.metrics_collector.current_session:
            summary = controller.metrics_collector.get_summary()
            click.echo("\nSession summary:")
            click.echo(f"Duration: {summary['session_duration_seconds']:.1f}s")
            click.echo(f"Turns: {summary['total_interactions']}")
            click.echo(f"Interruptions: {summary['interruptions']}")
            if summary["query_latency_ms"]["samples"] > 0:
                click.echo(f"Avg query latency: {summary['query_latency_ms']['avg']:.0f}ms")
        controller = None

    ctx.exit(exit_code)


@click.command()
@click.option(
    "--input", "-i", "text", help="Text to send (if not provided, reads from stdin)"
)
@click.option(
    "--provider",
    "-p",
    "query_provider",
    callback=validate_provider,
    help="Query service to use",
)
@click.option("--model", "-m", help="Model to use (provider-specific)")
@click.option("--temperature", "-t", type=click.FloatRange(0.0, 2.0), help="Sampling temperature")
@click.option("--instructions", "-s", help="System instructions to use")
@click.option(
    "--json", "json_output", is_flag=True, help="Output response as JSON with metadata"
)
@click.option("--config", type=click.Path(exists=True), help="Path to configuration file")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--mock", is_flag=True, help="Answer with the mock query service")
def ask(
    text: Optional[str],
    query_provider: Optional[str],
    model: Optional[str],
    temperature: Optional[float],
    instructions: Optional[str],
    json_output: bool,
    config: Optional[str],
    debug: bool,
    mock: bool,
):
    """
    Send one text prompt to a query service and print the reply.

    Examples:
    \b
        audio-chat ask --input "What is the capital of France?"
        echo "Tell me a joke" | audio-chat ask --provider gemini
    """
    _load_config_file(config)
    _configure_logging(debug, log_file=False)

    if text:
        user_input = text
    else:
        user_input = sys.stdin.read().strip()
        if not user_input:
            click.echo("Error: No input provided", err=True)
            sys.exit(1)

    provider = _pick(query_provider, settings.conversation.query_provider)
    instructions = _pick(instructions, settings.system_prompts.default)
    temperature = _pick(temperature, settings.conversation.temperature)
    model = _pick(model, settings.conversation.model)

    if mock:
        from mocks.providers import MockQueryService

        service = MockQueryService()
        provider = "mock"
    else:
        service = registry.get_query_service(provider)

    context_text = ContextWindow().compose(user_input)
    start_time = time.time()
    try:
        service.initialize()
        reply = service.query(context_text, instructions, temperature, model)
    except QueryError as e:
        logger.error("Query failed", provider=provider, error=str(e))
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        service.stop()

    latency_ms = (time.time() - start_time) * 1000

    if json_output:
        click.echo(
            json.dumps(
                {
                    "response": reply,
                    "provider": provider,
                    "model": model,
                    "input": user_input,
                    "metadata": {
                        "total_latency_ms": round(latency_ms, 2),
                        "response_length": len(reply),
                    },
                },
                indent=2,
            )
        )
    else:
        click.echo(reply)


@click.command()
@click.option("--json", "json_output", is_flag=True, help="Output the list as JSON")
def models(json_output: bool):
    """List the models loaded in LM Studio."""
    setup_logging(log_level=settings.logging.level)

    service = LMStudioQueryService(**settings.get_provider_config("lmstudio"))
    try:
        service.initialize()
        model_ids = service.list_models()
    except QueryError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)
    finally:
        service.stop()

    if json_output:
        click.echo(json.dumps(model_ids, indent=2))
        return

    if not model_ids:
        click.echo("No models are loaded in LM Studio.")
        return

    click.echo(f"Models at {service.base_url}:")
    for model_id in model_ids:
        click.echo(f"  - {model_id}")


@click.command()
def providers():
    """List available providers."""
    click.echo("Available providers")
    click.echo("-" * 50)

    sections = [
        ("Transcription", registry.list_transcription_sources()),
        ("Query", registry.list_query_services()),
        ("Speech", registry.list_speech_renderers()),
    ]
    for title, names in sections:
        click.echo(f"\n{title} ({len(names)})")
        for name in names:
            click.echo(f"  - {name}")

    click.echo("\nUse --<type>-provider to select a specific provider.")
    click.echo("Example: audio-chat start --query-provider gemini")


# Create CLI group
cli = click.Group(help="Voice conversations with a language model.")
cli.add_command(start)
cli.add_command(ask)
cli.add_command(models)
cli.add_command(providers)


if __name__ == "__main__":
    cli()
