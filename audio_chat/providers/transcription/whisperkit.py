"""WhisperKit transcription source: record until silence, then transcribe the file."""

import os
import queue
import subprocess
import tempfile
import threading
import time
from typing import Optional

import numpy as np
import soundfile as sf
import structlog

from .base import (
    TranscriptionSource,
    TranscriptionOptions,
    TranscriptionError,
    TranscriptionAborted,
)


logger = structlog.get_logger()

# Substrings identifying loopback / monitor inputs that capture desktop audio
DESKTOP_DEVICE_HINTS = ("loopback", "stereo mix", "monitor", "blackhole", "what u hear")


def _sounddevice():
    # PortAudio is loaded on first use so that the module imports on
    # machines without an audio stack.
    import sounddevice

    return sounddevice


class WhisperKitTranscriber(TranscriptionSource):
    """
    Records one utterance with sounddevice and transcribes it with whisperkit-cli.

    Recording starts immediately and ends after ``max_silence_seconds`` of
    audio below the RMS ``silence_threshold`` once speech has been heard, or
    after ``max_duration_seconds`` overall.
    """

    def __init__(
        self,
        model: str = "large-v3_turbo",
        compute_units: str = "cpuAndNeuralEngine",
        whisperkit_path: str = "whisperkit-cli",
        sample_rate: int = 16000,
        channels: int = 1,
        block_duration: float = 0.1,
        timeout: float = 60.0,
    ):
        self.model = model
        self.compute_units = compute_units
        self.whisperkit_path = whisperkit_path
        self.sample_rate = sample_rate
        self.channels = channels
        self.block_duration = block_duration
        self.block_size = int(sample_rate * block_duration)
        self.timeout = timeout

        self.is_initialized = False
        self.is_recording = False
        self.process: Optional[subprocess.Popen] = None
        self._abort = threading.Event()
        self._audio_queue: queue.Queue = queue.Queue(maxsize=600)

        self.last_recording_seconds = 0.0
        self.last_transcription_ms: Optional[float] = None

    def initialize(self) -> None:
        """Check that whisperkit-cli runs and an input device exists."""
        logger.info(
            "Initializing WhisperKit transcriber",
            model=self.model,
            whisperkit_path=self.whisperkit_path,
        )

        try:
            result = subprocess.run(
                [self.whisperkit_path, "--help"],
                capture_output=True,
                text=True,
                timeout=10,
            )
            if result.returncode != 0:
                raise TranscriptionError(f"WhisperKit CLI not working: {result.stderr}")
        except FileNotFoundError:
            raise TranscriptionError(f"WhisperKit CLI not found at {self.whisperkit_path}")
        except subprocess.TimeoutExpired:
            raise TranscriptionError("WhisperKit CLI check timed out")

        try:
            default_input = _sounddevice().query_devices(kind="input")
            logger.info(
                "Audio device info",
                default_input=default_input["name"],
                sample_rate=default_input["default_samplerate"],
            )
        except Exception as e:
            logger.error("Failed to query audio devices", error=str(e))
            raise TranscriptionError(f"No usable audio input device: {e}") from e

        self._abort.clear()
        self.is_initialized = True

    def transcribe(self, options: TranscriptionOptions) -> str:
        """Record until silence and return the transcribed text."""
        if not self.is_initialized:
            raise TranscriptionError("Transcriber not initialized. Call initialize() first.")
        if self._abort.is_set():
            raise TranscriptionAborted("Transcriber was stopped")

        audio = self._record(options)
        if audio is None:
            logger.debug("No speech captured")
            return ""

        fd, temp_filename = tempfile.mkstemp(suffix=".wav")
        os.close(fd)
        try:
            sf.write(temp_filename, audio, self.sample_rate)
            return self._transcribe_file(temp_filename, options.language)
        finally:
            try:
                os.unlink(temp_filename)
            except OSError:
                pass

    def _find_input_device(self, use_desktop_audio: bool) -> Optional[int]:
        """Pick the capture device; None selects the system default microphone."""
        if not use_desktop_audio:
            return None

        for index, device in enumerate(_sounddevice().query_devices()):
            name = device["name"].lower()
            if device["max_input_channels"] > 0 and any(
                hint in name for hint in DESKTOP_DEVICE_HINTS
            ):
                logger.info("Using desktop capture device", device=device["name"])
                return index

        raise TranscriptionError(
            "No desktop audio capture device found (enable a loopback or monitor input)"
        )

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        if status:
            logger.warning("Audio callback status", status=str(status))

        if indata.ndim > 1 and indata.shape[1] > 1:
            block = np.mean(indata, axis=1)
        else:
            block = indata.reshape(-1)

        try:
            self._audio_queue.put_nowait(block.astype(np.float32, copy=True))
        except queue.Full:
            logger.warning("Audio queue full, dropping block")

    def _record(self, options: TranscriptionOptions) -> Optional[np.ndarray]:
        """Capture one utterance. Returns None when only silence was heard."""
        sd = _sounddevice()
        device = self._find_input_device(options.use_desktop_audio)

        while not self._audio_queue.empty():
            self._audio_queue.get_nowait()

        blocks = []
        speech_heard = False
        silent_for = 0.0
        recorded = 0.0

        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype=np.float32,
                blocksize=self.block_size,
                device=device,
                callback=self._audio_callback,
            )
        except Exception as e:
            logger.error("Failed to open audio stream", error=str(e))
            raise TranscriptionError(f"Failed to open audio stream: {e}") from e

        self.is_recording = True
        try:
            with stream:
                while recorded < options.max_duration_seconds:
                    if self._abort.is_set():
                        raise TranscriptionAborted("Recording aborted")
                    if not stream.active:
                        # Device went away underneath us
                        raise TranscriptionAborted("Audio stream closed")

                    try:
                        block = self._audio_queue.get(timeout=0.5)
                    except queue.Empty:
                        continue

                    block_seconds = len(block) / self.sample_rate
                    recorded += block_seconds
                    rms = float(np.sqrt(np.mean(np.square(block)))) if len(block) else 0.0

                    if rms >= options.silence_threshold:
                        speech_heard = True
                        silent_for = 0.0
                    else:
                        silent_for += block_seconds

                    if speech_heard:
                        blocks.append(block)
                        if silent_for >= options.max_silence_seconds:
                            break
        except TranscriptionError:
            raise
        except Exception as e:
            logger.error("Recording failed", error=str(e))
            raise TranscriptionError(f"Recording failed: {e}") from e
        finally:
            self.is_recording = False
            self.last_recording_seconds = recorded

        if not speech_heard or not blocks:
            return None
        return np.concatenate(blocks)

    def _transcribe_file(self, file_path: str, language: Optional[str]) -> str:
        """Run whisperkit-cli on a WAV file and return its text output."""
        cmd = [
            self.whisperkit_path,
            "transcribe",
            "--audio-path",
            file_path,
            "--model",
            self.model,
            "--audio-encoder-compute-units",
            self.compute_units,
            "--text-decoder-compute-units",
            self.compute_units,
        ]
        if language:
            cmd.extend(["--language", language])

        start_time = time.time()
        try:
            self.process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
            logger.debug("WhisperKit subprocess started", pid=self.process.pid)
            stdout, stderr = self.process.communicate(timeout=self.timeout)
            return_code = self.process.returncode
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.communicate()
            raise TranscriptionError(f"WhisperKit timed out after {self.timeout}s")
        except OSError as e:
            raise TranscriptionError(f"Failed to start WhisperKit: {e}") from e
        finally:
            self.process = None

        if self._abort.is_set():
            raise TranscriptionAborted("Transcription aborted")

        if return_code != 0:
            logger.error("WhisperKit process failed", return_code=return_code, stderr=stderr)
            raise TranscriptionError(f"WhisperKit failed with code {return_code}: {stderr}")

        self.last_transcription_ms = (time.time() - start_time) * 1000
        text = " ".join(line.strip() for line in stdout.splitlines() if line.strip())

        logger.info(
            "Transcription completed",
            processing_time_ms=self.last_transcription_ms,
            text_length=len(text),
        )
        return text

    def stop(self) -> None:
        """Abort any recording or transcription in progress."""
        logger.info("Stopping WhisperKit transcriber")
        self._abort.set()

        process = self.process
        if process and process.poll() is None:
            try:
                process.terminate()
            except OSError as e:
                logger.warning("Error terminating WhisperKit process", error=str(e))

    def get_status(self) -> dict:
        """Get transcriber status."""
        return {
            "provider": "whisperkit",
            "model": self.model,
            "is_initialized": self.is_initialized,
            "is_recording": self.is_recording,
            "aborted": self._abort.is_set(),
            "sample_rate": self.sample_rate,
            "last_recording_seconds": self.last_recording_seconds,
            "last_transcription_ms": self.last_transcription_ms,
        }
