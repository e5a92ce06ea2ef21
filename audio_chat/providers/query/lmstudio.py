"""LM Studio query service using the OpenAI compatible chat API."""

import time
from typing import Optional

import openai
from openai import OpenAI
import structlog

from .base import QueryService, QueryError


logger = structlog.get_logger()


class LMStudioQueryService(QueryService):
    """
    Query service for a local LM Studio server.

    Each query is a single, stateless chat completion: the conversation
    context is carried entirely in ``context_text``.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:1234/v1",
        api_key: str = "lm-studio",
        model_name: Optional[str] = None,
        timeout: float = 120.0,
        max_retries: int = 3,
        initial_backoff: float = 1.0,
        backoff_multiplier: float = 2.0,
        max_backoff: float = 30.0,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.model_name = model_name
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.backoff_multiplier = backoff_multiplier
        self.max_backoff = max_backoff

        self.client: Optional[OpenAI] = None
        self.last_model: Optional[str] = None
        self.queries_sent = 0

    def initialize(self) -> None:
        """Create the OpenAI client pointed at LM Studio."""
        logger.info("Initializing LM Studio query service", base_url=self.base_url)
        # Retries are handled here, with logging, rather than inside the client
        self.client = OpenAI(
            base_url=self.base_url,
            api_key=self.api_key,
            timeout=self.timeout,
            max_retries=0,
        )

    def list_models(self) -> list[str]:
        """Identifiers of the models the server can answer with."""
        if not self.client:
            raise QueryError("LM Studio not initialized")

        try:
            return [model.id for model in self.client.models.list().data]
        except openai.OpenAIError as e:
            logger.error("Failed to list LM Studio models", error=str(e))
            raise QueryError(f"Failed to list models: {e}") from e

    def _resolve_model(self, model: Optional[str]) -> str:
        if model:
            return model
        if self.model_name:
            return self.model_name

        models = self.list_models()
        if not models:
            raise QueryError("No model is loaded in LM Studio")
        self.model_name = models[0]
        logger.info("Using first loaded LM Studio model", model=self.model_name)
        return self.model_name

    def query(
        self,
        context_text: str,
        instructions: str,
        temperature: float,
        model: Optional[str] = None,
    ) -> str:
        """Send one chat completion request and return the reply text."""
        if not self.client:
            raise QueryError("LM Studio not initialized")

        model_name = self._resolve_model(model)
        self.last_model = model_name
        messages = [
            {"role": "system", "content": instructions},
            {"role": "user", "content": context_text},
        ]

        completion = None
        for attempt in range(max(1, self.max_retries)):
            try:
                completion = self.client.chat.completions.create(
                    model=model_name,
                    messages=messages,
                    temperature=temperature,
                )
                break
            except (openai.APIConnectionError, openai.APITimeoutError, openai.InternalServerError) as e:
                logger.warning(
                    f"LM Studio attempt {attempt + 1} failed", error=str(e), model=model_name
                )
                if attempt >= self.max_retries - 1:
                    raise QueryError(f"LM Studio request failed: {e}") from e

                wait_time = min(
                    self.initial_backoff * self.backoff_multiplier**attempt, self.max_backoff
                )
                logger.info(f"Retrying LM Studio in {wait_time}s", attempt=attempt + 1)
                time.sleep(wait_time)
            except openai.OpenAIError as e:
                logger.error("LM Studio request rejected", error=str(e), model=model_name)
                raise QueryError(f"LM Studio request failed: {e}") from e

        if completion is None or not completion.choices:
            raise QueryError("LM Studio returned no choices")

        content = completion.choices[0].message.content
        if content is None:
            raise QueryError("LM Studio returned an empty message")

        self.queries_sent += 1
        return content.strip()

    def stop(self) -> None:
        """Close the HTTP client."""
        logger.info("Stopping LM Studio query service")
        if self.client:
            self.client.close()
            self.client = None

    def get_status(self) -> dict:
        """Get LM Studio query service status."""
        return {
            "provider": "lmstudio",
            "base_url": self.base_url,
            "model": self.last_model or self.model_name,
            "initialized": self.client is not None,
            "queries_sent": self.queries_sent,
        }
