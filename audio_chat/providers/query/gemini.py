"""Gemini query service implementation."""

import os
import time
from typing import Dict, Optional, Tuple
import google.generativeai as genai
import structlog

from .base import QueryService, QueryError


logger = structlog.get_logger()


class GeminiQueryService(QueryService):
    """
    Gemini query service using direct API calls.
    """

    def __init__(
        self,
        model_name: str = "gemini-1.5-flash",
        max_output_tokens: int = 2048,
        timeout: float = 30.0,
        max_retries: int = 3,
        initial_backoff: float = 1.0,
        backoff_multiplier: float = 2.0,
        max_backoff: float = 30.0,
    ):
        self.model_name = model_name
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.backoff_multiplier = backoff_multiplier
        self.max_backoff = max_backoff
        self.is_configured = False
        self.queries_sent = 0

        # One GenerativeModel per (model, instructions) pair
        self._models: Dict[Tuple[str, str], genai.GenerativeModel] = {}

    def initialize(self) -> None:
        """Configure the Gemini API client."""
        logger.info("Initializing Gemini query service", model=self.model_name)

        api_key = os.getenv("GOOGLE_API_KEY")
        if not api_key:
            raise QueryError("GOOGLE_API_KEY environment variable not set")

        genai.configure(api_key=api_key)
        self.is_configured = True

    def _get_model(self, model_name: str, instructions: str) -> genai.GenerativeModel:
        key = (model_name, instructions)
        if key not in self._models:
            self._models[key] = genai.GenerativeModel(
                model_name=model_name, system_instruction=instructions
            )
        return self._models[key]

    def query(
        self,
        context_text: str,
        instructions: str,
        temperature: float,
        model: Optional[str] = None,
    ) -> str:
        """Generate a single reply from Gemini."""
        if not self.is_configured:
            raise QueryError("Gemini not initialized")

        generative_model = self._get_model(model or self.model_name, instructions)
        generation_config = genai.GenerationConfig(
            temperature=temperature,
            max_output_tokens=self.max_output_tokens,
        )

        for attempt in range(self.max_retries):
            try:
                response = generative_model.generate_content(
                    context_text,
                    generation_config=generation_config,
                    request_options={"timeout": self.timeout},
                )
                # .text raises ValueError when the candidate was blocked
                text = response.text
                self.queries_sent += 1
                return text.strip()

            except ValueError as e:
                logger.error("Gemini returned no usable text", error=str(e))
                raise QueryError(f"Gemini returned no usable text: {e}") from e

            except Exception as e:
                logger.warning(f"Gemini attempt {attempt + 1} failed", error=str(e))

                if attempt == self.max_retries - 1:
                    logger.error("All Gemini retry attempts failed", error=str(e))
                    raise QueryError(f"Gemini request failed: {e}") from e

                wait_time = min(
                    self.initial_backoff * self.backoff_multiplier**attempt, self.max_backoff
                )
                logger.info(f"Retrying Gemini in {wait_time}s", attempt=attempt + 1)
                time.sleep(wait_time)

        raise QueryError("Gemini request failed")

    def stop(self) -> None:
        """Stop Gemini query service."""
        logger.info("Stopping Gemini query service")
        self._models.clear()
        self.is_configured = False

    def get_status(self) -> dict:
        """Get Gemini query service status."""
        return {
            "provider": "gemini",
            "model": self.model_name,
            "initialized": self.is_configured,
            "queries_sent": self.queries_sent,
        }
