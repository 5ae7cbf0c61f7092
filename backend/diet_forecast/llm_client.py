"""
Client for the prediction-generation LLM (Ollama /api/generate, non-streaming).
"""
import logging
from typing import Optional

import httpx

from .config import Settings
from .errors import ExternalServiceError

logger = logging.getLogger(__name__)

SERVICE_NAME = "ollama"


class GenerationClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    @property
    def model(self) -> str:
        return self.settings.ollama_model

    async def generate(
        self,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        context_window: int = 8192,
    ) -> str:
        """Send one prompt and return the raw response text."""
        payload = {
            "model": self.settings.ollama_model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
                "num_ctx": context_window,
            },
        }
        url = f"{self.settings.ollama_url}/api/generate"
        try:
            async with httpx.AsyncClient(timeout=self.settings.http_timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise ExternalServiceError(SERVICE_NAME, None, str(e)) from e

        if response.status_code >= 300:
            raise ExternalServiceError(SERVICE_NAME, response.status_code, response.text)
        try:
            text = response.json().get("response")
        except (ValueError, AttributeError) as e:
            raise ExternalServiceError(SERVICE_NAME, response.status_code, response.text) from e
        if not isinstance(text, str):
            raise ExternalServiceError(SERVICE_NAME, response.status_code, "response field missing")

        logger.debug("Ollama response (%d chars, temperature %.2f): %s", len(text), temperature, text[:200])
        return text
