"""
Backend Menu Analyzer

Client for the trusted analysis endpoint (POST {"image": <base64 JPEG>}).
This is the primary ingestion path: the Gemini credential stays on the
server that hosts the endpoint.

Anything that stops the request from producing a 2xx answer (connection
errors, timeouts, non-2xx status, no endpoint configured) is reported as
"unreachable" so the pipeline may fall back to the direct path.
"""

import logging
from datetime import datetime
from typing import Optional

import httpx

from office_lunch.services.analysis.base import (
    ERROR_UNPARSABLE,
    ERROR_UNREACHABLE,
    AnalysisResult,
    BaseMenuAnalyzer,
    parse_menu_json,
)

logger = logging.getLogger(__name__)


class BackendMenuAnalyzer(BaseMenuAnalyzer):
    """
    Calls the menu analysis endpoint over HTTP.

    Example:
        >>> analyzer = BackendMenuAnalyzer("https://lunch.example.com/api/analyze-menu")
        >>> result = await analyzer.analyze(image_b64)
    """

    def __init__(
        self,
        endpoint_url: Optional[str],
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint_url = endpoint_url
        self.timeout = timeout
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "backend"

    async def analyze(self, image_b64: str) -> AnalysisResult:
        if not self.endpoint_url:
            return self._failure(ERROR_UNREACHABLE, "no analysis endpoint configured")

        start_time = datetime.now()
        logger.debug(f"Backend: posting menu image to {self.endpoint_url}")

        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self.timeout
            ) as client:
                response = await client.post(self.endpoint_url, json={"image": image_b64})
        except httpx.HTTPError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.warning(f"Backend: analysis endpoint unreachable - {e!r}")
            return self._failure(ERROR_UNREACHABLE, f"analysis endpoint unreachable: {e}", elapsed_ms)

        elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000

        if not response.is_success:
            detail = _error_detail(response)
            logger.warning(f"Backend: analysis endpoint returned {response.status_code} - {detail}")
            return self._failure(
                ERROR_UNREACHABLE,
                f"analysis endpoint returned {response.status_code}: {detail}",
                elapsed_ms,
            )

        try:
            data = parse_menu_json(response.text)
        except ValueError as e:
            logger.error(f"Backend: unparsable analysis response - {e}")
            return self._failure(ERROR_UNPARSABLE, f"AI response is not valid JSON: {e}", elapsed_ms)

        logger.info(f"Backend: menu analyzed in {elapsed_ms:.0f}ms")
        return AnalysisResult(
            success=True,
            data=data,
            provider=self.provider_name,
            response_time_ms=elapsed_ms,
        )

    async def health_check(self) -> bool:
        return bool(self.endpoint_url)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.text[:200]
