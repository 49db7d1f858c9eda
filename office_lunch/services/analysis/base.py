"""
Menu Analyzer Abstract Base Class

Defines the interface contract for everything that turns a menu photo into
structured JSON. The trusted backend endpoint client, the direct Gemini
client and the mock all implement it.

Analyzers never raise for expected failures. They return an AnalysisResult
whose error_code tells the ingestion pipeline what went wrong:

    unreachable     network/endpoint failure; the fallback path may be tried
    not_configured  no credential for this path
    unparsable      the model answered, but not with a JSON object
    upstream_error  the provider reported an error or an empty answer
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional


ERROR_UNREACHABLE = "unreachable"
ERROR_NOT_CONFIGURED = "not_configured"
ERROR_UNPARSABLE = "unparsable"
ERROR_UPSTREAM = "upstream_error"


MENU_EXTRACTION_PROMPT = (
    "Analyze this menu image. "
    "1. Extract the Restaurant Name, Phone Number, and Address. "
    "2. Extract all food items and their prices. "
    "Return a JSON object with this exact structure: "
    '{ "restaurant": { "name": "string", "phone": "string", "address": "string" }, '
    '"items": [{ "name": "string", "price": 123 }] }. '
    "If address or phone is missing, use empty string. "
    "Do not use markdown code blocks. Just pure JSON string."
)

_FENCE = re.compile(r"```json|```")


def strip_code_fences(text: str) -> str:
    """Remove ```json / ``` markers a model may wrap around its answer."""
    return _FENCE.sub("", text).strip()


def _reject_constant(name: str) -> None:
    raise ValueError(f"{name} is not valid JSON")


def parse_menu_json(text: str) -> dict[str, Any]:
    """
    Strictly parse a model answer into a JSON object.

    NaN and Infinity literals are rejected like any other invalid JSON.

    Raises:
        ValueError: If the stripped text is not a JSON object
    """
    parsed = json.loads(strip_code_fences(text), parse_constant=_reject_constant)
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed


@dataclass
class AnalysisResult:
    """
    Standardized result from one analysis attempt.

    Attributes:
        success: Whether a JSON object was obtained
        data: The parsed object ({restaurant, items}) on success
        error_message: Human-readable failure reason
        error_code: One of the ERROR_* constants
        provider: Analyzer that produced the result
        response_time_ms: Time taken by the call
    """
    success: bool
    data: Optional[dict] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    provider: str = "unknown"
    response_time_ms: float = 0.0

    @property
    def unreachable(self) -> bool:
        return self.error_code == ERROR_UNREACHABLE

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "data": self.data,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "provider": self.provider,
            "response_time_ms": self.response_time_ms,
        }


class BaseMenuAnalyzer(ABC):
    """
    Abstract base class for menu analyzers.

    Example:
        >>> analyzer = get_menu_analyzer()
        >>> result = await analyzer.analyze(image_b64)
        >>> if result.success:
        ...     print(result.data["restaurant"]["name"])
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the analyzer name (e.g., "backend", "gemini", "mock")."""
        pass

    @abstractmethod
    async def analyze(self, image_b64: str) -> AnalysisResult:
        """
        Extract restaurant info and priced items from a menu photo.

        Args:
            image_b64: Base64-encoded JPEG bytes

        Returns:
            AnalysisResult: Parsed JSON object or a typed failure
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Report whether this analyzer can currently be used.

        Returns:
            bool: True if configured and reachable as far as cheaply knowable
        """
        pass

    def _failure(self, code: str, message: str, elapsed_ms: float = 0.0) -> AnalysisResult:
        return AnalysisResult(
            success=False,
            error_code=code,
            error_message=message,
            provider=self.provider_name,
            response_time_ms=elapsed_ms,
        )
