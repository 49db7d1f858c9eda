"""
Gemini Menu Analyzer

Calls the Gemini generateContent REST API directly with the menu photo and
the fixed extraction instruction. Used in two places:

    - by the /api/analyze-menu endpoint, with the server key (GEMINI_API_KEY)
    - by the ingestion pipeline as the fallback path, with the client key
      (CLIENT_GEMINI_API_KEY)

API Documentation:
    https://ai.google.dev/api/generate-content
"""

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from office_lunch.services.analysis.base import (
    ERROR_NOT_CONFIGURED,
    ERROR_UNPARSABLE,
    ERROR_UNREACHABLE,
    ERROR_UPSTREAM,
    MENU_EXTRACTION_PROMPT,
    AnalysisResult,
    BaseMenuAnalyzer,
    parse_menu_json,
)

logger = logging.getLogger(__name__)


class GeminiMenuAnalyzer(BaseMenuAnalyzer):
    """
    Direct Gemini implementation of the menu analyzer.

    Example:
        >>> analyzer = GeminiMenuAnalyzer(api_key="...")
        >>> result = await analyzer.analyze(image_b64)
        >>> result.data["items"][0]
        {'name': 'Fried Rice', 'price': 90}
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-2.0-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "gemini"

    @property
    def url(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    @staticmethod
    def build_payload(image_b64: str) -> dict[str, Any]:
        return {
            "contents": [{
                "parts": [
                    {"text": MENU_EXTRACTION_PROMPT},
                    {"inlineData": {"mimeType": "image/jpeg", "data": image_b64}},
                ]
            }]
        }

    async def analyze(self, image_b64: str) -> AnalysisResult:
        if not self.api_key:
            return self._failure(ERROR_NOT_CONFIGURED, "Gemini API key is not configured")

        start_time = datetime.now()
        logger.debug(f"Gemini: requesting {self.model} analysis")

        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self.timeout
            ) as client:
                response = await client.post(
                    self.url,
                    params={"key": self.api_key},
                    json=self.build_payload(image_b64),
                )
        except httpx.HTTPError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.error(f"Gemini: transport error - {e!r}")
            return self._failure(ERROR_UNREACHABLE, f"Gemini unreachable: {e}", elapsed_ms)

        elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000

        try:
            data = response.json()
        except ValueError:
            logger.error(f"Gemini: non-JSON response ({response.status_code})")
            return self._failure(
                ERROR_UPSTREAM,
                f"invalid response from Gemini ({response.status_code})",
                elapsed_ms,
            )

        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.error(f"Gemini: API error - {message}")
            return self._failure(ERROR_UPSTREAM, message or "Gemini API error", elapsed_ms)

        text = _candidate_text(data)
        if not text:
            logger.error("Gemini: no text content in response")
            return self._failure(ERROR_UPSTREAM, "No text content in AI response", elapsed_ms)

        try:
            menu = parse_menu_json(text)
        except ValueError as e:
            logger.error(f"Gemini: unparsable answer - {e}")
            return self._failure(ERROR_UNPARSABLE, f"AI response is not valid JSON: {e}", elapsed_ms)

        logger.info(f"Gemini: menu analyzed in {elapsed_ms:.0f}ms")
        return AnalysisResult(
            success=True,
            data=menu,
            provider=self.provider_name,
            response_time_ms=elapsed_ms,
        )

    async def health_check(self) -> bool:
        return bool(self.api_key)


def _candidate_text(data: Any) -> Optional[str]:
    """candidates[0].content.parts[0].text, or None anywhere along the way."""
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
