"""ElevenLabs speech renderer implementation."""

import os
from typing import Optional

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
import pygame
from io import BytesIO
import threading
from elevenlabs import VoiceSettings
from elevenlabs.client import ElevenLabs
import structlog

from .base import SpeechRenderer, RenderError


logger = structlog.get_logger()


class ElevenLabsRenderer(SpeechRenderer):
    """
    ElevenLabs speech renderer.

    ``speak`` synthesizes on a background thread and plays the result with
    pygame's music channel, so the caller only waits for the thread to be
    started. ``is_speaking`` is true from the call to ``speak`` until
    playback ends.
    """

    def __init__(
        self,
        voice_id: str = "pNInz6obpgDQGcFmaJgB",  # Adam voice
        model_id: str = "eleven_flash_v2_5",
        output_format: str = "mp3_22050_32",
        stability: float = 0.5,
        similarity_boost: float = 0.8,
        style: float = 0.0,
        speed: float = 1.0,
        use_speaker_boost: bool = True,
        timeout: float = 10.0,
    ):
        self.voice_id = voice_id
        self.model_id = model_id
        self.output_format = output_format
        self.timeout = timeout

        self.voice_settings = VoiceSettings(
            stability=stability,
            similarity_boost=similarity_boost,
            style=style,
            use_speaker_boost=use_speaker_boost,
            speed=speed,
        )

        self.client: Optional[ElevenLabs] = None
        self.render_thread: Optional[threading.Thread] = None
        self.last_error: Optional[str] = None
        self._pending_error: Optional[str] = None
        self._lock = threading.Lock()
        self._synthesizing = False
        # Bumped by stop_speaking so a stale render thread never starts playback
        self._generation = 0

    def initialize(self) -> None:
        """Initialize ElevenLabs client and pygame mixer."""
        logger.info("Initializing ElevenLabs renderer", voice_id=self.voice_id)

        api_key = os.getenv("ELEVENLABS_API_KEY")
        if not api_key:
            raise RenderError("ELEVENLABS_API_KEY environment variable not set")

        self.client = ElevenLabs(api_key=api_key, timeout=self.timeout)

        try:
            pygame.mixer.pre_init(frequency=22050, size=-16, channels=2, buffer=1024)
            pygame.mixer.init()
        except pygame.error as e:
            self.client = None
            raise RenderError(f"Audio output unavailable: {e}") from e

        logger.info("ElevenLabs renderer initialized")

    def speak(self, text: str) -> None:
        """Start speaking ``text`` in the background."""
        if not self.client:
            raise RenderError("ElevenLabs not initialized")

        self.stop_speaking()
        if not text.strip():
            return

        with self._lock:
            self._pending_error = None
            self._generation += 1
            generation = self._generation
            self._synthesizing = True

        self.render_thread = threading.Thread(
            target=self._render, args=(text, generation), daemon=True, name="TTS-Render"
        )
        try:
            self.render_thread.start()
        except RuntimeError as e:
            with self._lock:
                self._synthesizing = False
            raise RenderError(f"Could not start speech thread: {e}") from e

    def _render(self, text: str, generation: int) -> None:
        """Synthesize ``text`` and hand it to the mixer."""
        logger.debug("Generating speech", text_length=len(text))
        try:
            audio = self.client.text_to_speech.convert(
                voice_id=self.voice_id,
                text=text,
                model_id=self.model_id,
                output_format=self.output_format,
                voice_settings=self.voice_settings,
            )
            if isinstance(audio, (bytes, bytearray)):
                audio_data = bytes(audio)
            else:
                audio_data = b"".join(audio)

            with self._lock:
                if generation != self._generation:
                    logger.debug("Speech superseded before playback")
                    return
                pygame.mixer.music.load(BytesIO(audio_data))
                pygame.mixer.music.play()

            logger.debug("Speech playback started", total_bytes=len(audio_data))

        except Exception as e:
            logger.error("Error rendering speech", error=str(e))
            with self._lock:
                self.last_error = str(e)
                if generation == self._generation:
                    self._pending_error = str(e)
        finally:
            with self._lock:
                if generation == self._generation:
                    self._synthesizing = False

    def take_error(self) -> Optional[str]:
        """Return the background failure of the current speech once, then forget it."""
        with self._lock:
            error, self._pending_error = self._pending_error, None
        return error

    def is_speaking(self) -> bool:
        """Whether speech is being synthesized or played."""
        with self._lock:
            if self._synthesizing:
                return True
        return bool(pygame.mixer.get_init() and pygame.mixer.music.get_busy())

    def stop_speaking(self) -> None:
        """Stop current playback and discard any pending synthesis."""
        with self._lock:
            self._generation += 1
            self._synthesizing = False
            if pygame.mixer.get_init():
                pygame.mixer.music.stop()
        logger.debug("Speech stopped")

    def stop(self) -> None:
        """Stop ElevenLabs renderer."""
        logger.info("Stopping ElevenLabs renderer")

        self.stop_speaking()

        if self.render_thread and self.render_thread.is_alive():
            self.render_thread.join(timeout=2.0)

        pygame.mixer.quit()
        self.client = None

    def get_status(self) -> dict:
        """Get ElevenLabs renderer status."""
        return {
            "provider": "elevenlabs",
            "voice_id": self.voice_id,
            "model_id": self.model_id,
            "is_speaking": self.is_speaking(),
            "initialized": self.client is not None,
            "last_error": self.last_error,
            "mixer_initialized": pygame.mixer.get_init() is not None,
        }
