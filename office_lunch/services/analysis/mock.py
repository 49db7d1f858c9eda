"""
Mock Menu Analyzer

Simulates menu extraction without calling any AI service.
Used in development mode (ENV_MODE=development).

Behavior:
    - Returns a canned lunch menu, wrapped in a ```json fence like real
      models often do, so the fence stripping path is exercised
    - Simulates latency and an optional failure rate
    - Can be told to behave as unreachable or to answer with arbitrary text
"""

import asyncio
import random
import logging
from datetime import datetime
from typing import Optional

from office_lunch.services.analysis.base import (
    ERROR_UNPARSABLE,
    ERROR_UNREACHABLE,
    AnalysisResult,
    BaseMenuAnalyzer,
    parse_menu_json,
)

logger = logging.getLogger(__name__)


CANNED_RESPONSE = """```json
{
  "restaurant": {"name": "Corner Noodle House", "phone": "02-2345-6789", "address": "12 Market St"},
  "items": [
    {"name": "Fried Rice", "price": 90},
    {"name": "Beef Noodle Soup", "price": 150},
    {"name": "Dumplings (10)", "price": 80},
    {"name": "Hot and Sour Soup", "price": 40}
  ]
}
```"""


class MockMenuAnalyzer(BaseMenuAnalyzer):
    """
    Mock implementation of the menu analyzer.

    Attributes:
        response_text: Raw model answer to return (fenced JSON by default)
        unreachable: Always report the path as unreachable
        failure_rate: Probability of a simulated unreachable failure
    """

    def __init__(
        self,
        response_text: Optional[str] = None,
        unreachable: bool = False,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
    ):
        self.response_text = CANNED_RESPONSE if response_text is None else response_text
        self.unreachable = unreachable
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.calls = 0

    @property
    def provider_name(self) -> str:
        return "mock"

    async def analyze(self, image_b64: str) -> AnalysisResult:
        start_time = datetime.now()
        self.calls += 1
        if self.max_latency:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))
        elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000

        if self.unreachable or (self.failure_rate and random.random() < self.failure_rate):
            logger.debug("Mock: simulated unreachable analyzer")
            return self._failure(ERROR_UNREACHABLE, "mock analyzer unreachable", elapsed_ms)

        try:
            data = parse_menu_json(self.response_text)
        except ValueError as e:
            return self._failure(ERROR_UNPARSABLE, f"AI response is not valid JSON: {e}", elapsed_ms)

        logger.info(f"Mock: analyzed menu image ({len(image_b64)} base64 chars)")
        return AnalysisResult(
            success=True,
            data=data,
            provider=self.provider_name,
            response_time_ms=elapsed_ms,
        )

    async def health_check(self) -> bool:
        return not self.unreachable
