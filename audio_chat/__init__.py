"""
Audio Chat - turn-taking voice conversations with a language model.

Records an utterance, transcribes it with WhisperKit, asks an LM Studio or
Gemini model for a reply using a bounded window of recent context, and
speaks the answer with ElevenLabs while listening for a key press that
interrupts playback or ends the session.
"""

__version__ = "1.0.0"
