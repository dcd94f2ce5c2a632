from __future__ import annotations

import asyncio
import json
from typing import Any, Dict

import httpx

from ..config import Settings
from ..logging_config import logger


class GenerationError(Exception):
    pass


class GenerationClient:
    """JSON-mode text generation over the Gemini REST API.

    Without an API key the client answers with the caller's simulated payload so the
    service can run offline.
    """

    name = "gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta/models"

    def __init__(self, api_key: str | None, model: str, *, timeout: float = 30.0, max_retries: int = 2) -> None:
        self.api_key = api_key
        self.model = model
        self._timeout = timeout
        self._max_retries = max_retries

    @classmethod
    def from_settings(cls, settings: Settings) -> "GenerationClient":
        return cls(
            settings.gemini_api_key,
            settings.gemini_model,
            timeout=settings.request_timeout_seconds,
            max_retries=settings.request_max_retries,
        )

    @property
    def simulated(self) -> bool:
        return not self.api_key

    async def generate_json(self, prompt: str, *, simulated: Dict[str, Any], temperature: float = 1.0) -> Dict[str, Any]:
        if self.simulated:
            return dict(simulated)
        return await self._call_with_retry(prompt, temperature)

    async def _call_with_retry(self, prompt: str, temperature: float) -> Dict[str, Any]:
        backoff = 0.5
        last_error: Exception | None = None
        for attempt in range(self._max_retries + 1):
            try:
                response = await self._call_api(prompt, temperature)
            except httpx.HTTPError as exc:
                last_error = exc
                logger.warning("generation.retry", provider=self.name, attempt=attempt + 1, reason=str(exc))
                await asyncio.sleep(backoff)
                backoff *= 2
                continue
            return self._parse(response)
        logger.error("generation.failed", provider=self.name, model=self.model)
        raise GenerationError(f"{self.name} generation failed") from last_error

    async def _call_api(self, prompt: str, temperature: float) -> Dict[str, Any]:
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"responseMimeType": "application/json", "temperature": temperature},
        }
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                f"{self.base_url}/{self.model}:generateContent",
                params={"key": self.api_key},
                json=body,
            )
            response.raise_for_status()
            return response.json()

    def _parse(self, response: Dict[str, Any]) -> Dict[str, Any]:
        try:
            text = response["candidates"][0]["content"]["parts"][0]["text"]
            payload = json.loads(text)
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as exc:
            logger.error("generation.malformed", provider=self.name)
            raise GenerationError("Invalid AI response: could not read JSON text") from exc
        if not isinstance(payload, dict):
            raise GenerationError("Invalid AI response: expected JSON object")
        return payload
