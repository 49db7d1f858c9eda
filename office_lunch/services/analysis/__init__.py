"""
Menu Analyzer Factory

Provides the analyzers used by the ingestion pipeline and by the
/api/analyze-menu endpoint.

Usage:
    from office_lunch.services.analysis import get_primary_analyzer

    result = await get_primary_analyzer().analyze(image_b64)

Environment Switching:
    - ENV_MODE=development → MockMenuAnalyzer as primary, no fallback
    - ENV_MODE=staging/production → BackendMenuAnalyzer as primary,
      GeminiMenuAnalyzer fallback when CLIENT_GEMINI_API_KEY is set
"""

import logging
from functools import lru_cache
from typing import Optional

from office_lunch.core.config import get_settings
from office_lunch.services.analysis.base import (
    ERROR_NOT_CONFIGURED,
    ERROR_UNPARSABLE,
    ERROR_UNREACHABLE,
    ERROR_UPSTREAM,
    MENU_EXTRACTION_PROMPT,
    AnalysisResult,
    BaseMenuAnalyzer,
    parse_menu_json,
    strip_code_fences,
)
from office_lunch.services.analysis.backend import BackendMenuAnalyzer
from office_lunch.services.analysis.gemini import GeminiMenuAnalyzer
from office_lunch.services.analysis.mock import MockMenuAnalyzer

logger = logging.getLogger(__name__)


@lru_cache()
def get_primary_analyzer() -> BaseMenuAnalyzer:
    """Analyzer for ingestion step 2 (trusted endpoint, or mock in development)."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Menu Analyzer: Using MockMenuAnalyzer (development mode)")
        return MockMenuAnalyzer()

    logger.info(f"Menu Analyzer: Using BackendMenuAnalyzer ({settings.analysis_endpoint_url})")
    return BackendMenuAnalyzer(
        settings.analysis_endpoint_url,
        timeout=settings.analysis_timeout_seconds,
    )


@lru_cache()
def get_fallback_analyzer() -> Optional[BaseMenuAnalyzer]:
    """Analyzer for ingestion step 3, or None when no client key is configured."""
    settings = get_settings()

    if settings.is_development or not settings.client_gemini_api_key:
        logger.info("Menu Analyzer: no direct fallback configured")
        return None

    logger.info("Menu Analyzer: direct Gemini fallback enabled")
    return GeminiMenuAnalyzer(
        settings.client_gemini_api_key,
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
        timeout=settings.analysis_timeout_seconds,
    )


@lru_cache()
def get_server_analyzer() -> Optional[BaseMenuAnalyzer]:
    """
    Analyzer behind the /api/analyze-menu endpoint.

    Returns:
        GeminiMenuAnalyzer with the server key, MockMenuAnalyzer in development
        without a key, or None (server configuration error) otherwise
    """
    settings = get_settings()

    if settings.gemini_api_key:
        return GeminiMenuAnalyzer(
            settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout=settings.analysis_timeout_seconds,
        )
    if settings.is_development:
        return MockMenuAnalyzer()
    logger.error("GEMINI_API_KEY is missing; analysis endpoint disabled")
    return None


def reset_analyzers() -> None:
    """Clear the cached analyzer instances."""
    get_primary_analyzer.cache_clear()
    get_fallback_analyzer.cache_clear()
    get_server_analyzer.cache_clear()
    logger.debug("Analyzer caches cleared")


__all__ = [
    "get_primary_analyzer",
    "get_fallback_analyzer",
    "get_server_analyzer",
    "reset_analyzers",
    "AnalysisResult",
    "BaseMenuAnalyzer",
    "BackendMenuAnalyzer",
    "GeminiMenuAnalyzer",
    "MockMenuAnalyzer",
    "MENU_EXTRACTION_PROMPT",
    "ERROR_NOT_CONFIGURED",
    "ERROR_UNPARSABLE",
    "ERROR_UNREACHABLE",
    "ERROR_UPSTREAM",
    "parse_menu_json",
    "strip_code_fences",
]
