"""
Menu Ingestion Pipeline

Turns an uploaded menu photo into a structured menu:

    1. normalize    decode, fix orientation, downscale to max width, JPEG
    2. analyze      trusted analysis endpoint (primary analyzer)
    3. fallback     direct provider call, only if the primary is unreachable
                    and a client credential is configured
    4. normalize    synthetic item ids, default restaurant fields, int prices

The pipeline never writes to the store. The ledger engine merges the
resulting IngestedMenu into today's menu only after ingest() returned.
"""

import base64
import io
import logging
import math
import re
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from office_lunch.core.config import get_settings
from office_lunch.core.exceptions import AnalysisUnavailableError, IngestionError, ValidationError
from office_lunch.services.analysis import (
    AnalysisResult,
    BaseMenuAnalyzer,
    get_fallback_analyzer,
    get_primary_analyzer,
)
from office_lunch.services.records import MenuItem, Restaurant

logger = logging.getLogger(__name__)

DEFAULT_RESTAURANT_NAME = "AI detected restaurant"
_NUMBER = re.compile(r"\d+(?:\.\d+)?")


@dataclass
class NormalizedImage:
    """A menu photo re-encoded as JPEG, ready for analysis and display."""
    jpeg_bytes: bytes
    width: int
    height: int

    @property
    def base64(self) -> str:
        return base64.b64encode(self.jpeg_bytes).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:image/jpeg;base64,{self.base64}"


@dataclass
class IngestedMenu:
    """Structured result of a successful ingestion."""
    restaurant: Restaurant
    items: list[MenuItem]
    image_url: str
    provider: str = "unknown"


def normalize_image(raw: bytes, max_width: int = 1200, quality: int = 80) -> NormalizedImage:
    """
    Decode an uploaded photo and re-encode it as a bounded-width JPEG.

    The aspect ratio is kept and images narrower than max_width are never
    upscaled.

    Raises:
        ValidationError: If no bytes were uploaded
        IngestionError: If the bytes are not a decodable image
    """
    if not raw:
        raise ValidationError("no image provided")

    try:
        with Image.open(io.BytesIO(raw)) as source:
            image = ImageOps.exif_transpose(source).convert("RGB")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        logger.warning(f"Rejected undecodable menu image - {e}")
        raise IngestionError(f"ingestion failed: could not decode image ({e})") from e

    if image.width > max_width:
        height = max(1, round(image.height * max_width / image.width))
        image = image.resize((max_width, height), Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    logger.debug(f"Normalized menu image to {image.width}x{image.height}")
    return NormalizedImage(buffer.getvalue(), image.width, image.height)


def coerce_price(value: Any) -> int:
    """Best-effort non-negative integer price from whatever the model returned."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float) and math.isfinite(value):
        return max(0, round(value))
    if isinstance(value, str):
        match = _NUMBER.search(value.replace(",", ""))
        if match and math.isfinite(float(match.group())):
            return round(float(match.group()))
    logger.warning(f"Unreadable item price {value!r}; using 0")
    return 0


def normalize_menu_data(
    data: dict[str, Any],
    id_base: Optional[int] = None,
) -> tuple[Restaurant, list[MenuItem]]:
    """
    Shape raw analysis output into a restaurant block and menu items.

    Each item gets a synthetic id: a millisecond timestamp plus its index,
    so ids are unique and increasing within the batch.
    """
    raw_restaurant = data.get("restaurant")
    if raw_restaurant:
        restaurant = Restaurant.from_doc(raw_restaurant)
    else:
        restaurant = Restaurant(name=DEFAULT_RESTAURANT_NAME)

    base = int(time.time() * 1000) if id_base is None else id_base
    items = []
    raw_items = data.get("items")
    if not isinstance(raw_items, list):
        if raw_items:
            logger.warning(f"Ignoring non-list items field {raw_items!r}")
        raw_items = []
    for index, raw_item in enumerate(raw_items):
        if not isinstance(raw_item, dict):
            raw_item = {"name": str(raw_item)}
        items.append(
            MenuItem(
                id=str(base + index),
                name=str(raw_item.get("name") or "").strip(),
                price=coerce_price(raw_item.get("price")),
            )
        )
    return restaurant, items


class MenuIngestionPipeline:
    """
    Primary/fallback menu extraction.

    Example:
        >>> pipeline = MenuIngestionPipeline(BackendMenuAnalyzer(url), fallback=None)
        >>> menu = await pipeline.ingest(photo_bytes)
        >>> len(menu.items)
        12
    """

    def __init__(
        self,
        primary: BaseMenuAnalyzer,
        fallback: Optional[BaseMenuAnalyzer] = None,
        max_width: int = 1200,
        quality: int = 80,
    ):
        self.primary = primary
        self.fallback = fallback
        self.max_width = max_width
        self.quality = quality

    async def analyze(self, image_b64: str) -> AnalysisResult:
        """
        Run the primary analyzer and, if it cannot be reached, the fallback.

        Raises:
            IngestionError: With the reason the menu could not be extracted
        """
        result = await self.primary.analyze(image_b64)
        if result.success:
            return result

        if not result.unreachable:
            raise IngestionError(f"ingestion failed: {result.error_message}")

        if self.fallback is None:
            logger.error(f"Primary analysis unreachable ({result.error_message}) and no fallback")
            raise AnalysisUnavailableError("ingestion failed: no analysis path")

        logger.warning(
            f"Primary analysis unreachable ({result.error_message}); "
            f"switching to {self.fallback.provider_name}"
        )
        fallback_result = await self.fallback.analyze(image_b64)
        if not fallback_result.success:
            raise IngestionError(
                f"ingestion failed: direct analysis failed: {fallback_result.error_message}"
            )
        return fallback_result

    async def ingest(self, raw: bytes) -> IngestedMenu:
        """
        Full pipeline: photo bytes in, structured menu out.

        Raises:
            ValidationError: If no image was provided
            IngestionError: On any other fatal step
        """
        image = normalize_image(raw, self.max_width, self.quality)
        result = await self.analyze(image.base64)
        restaurant, items = normalize_menu_data(result.data or {})

        logger.info(
            f"Ingested menu from {result.provider}: "
            f"{restaurant.name!r} with {len(items)} items"
        )
        return IngestedMenu(
            restaurant=restaurant,
            items=items,
            image_url=image.data_url,
            provider=result.provider,
        )


@lru_cache()
def get_ingestion_pipeline() -> MenuIngestionPipeline:
    """Pipeline wired to the configured analyzers (cached)."""
    settings = get_settings()
    return MenuIngestionPipeline(
        get_primary_analyzer(),
        fallback=get_fallback_analyzer(),
        max_width=settings.image_max_width,
        quality=settings.image_jpeg_quality,
    )
