"""
Heuristic attribute extractors, keyed by OLX category external id.

Extractors only propose values; template mappings applied afterwards win.
"""
from __future__ import annotations

import re
from typing import Protocol

from olxsync.services.listing.option_matching import normalize


class AttributeExtractor(Protocol):
    def extract(self, product) -> dict[int, str]:
        """Return attribute external id -> raw value."""
        ...


TIRE_CATEGORY_ID = 940


class TireExtractor:
    """Tire size from the title (``225/55R19``), season from the description."""

    WIDTH_ID = 2918
    HEIGHT_ID = 2919
    DIAMETER_ID = 1849
    SEASON_ID = 1848

    SIZE_PATTERN = re.compile(r"(\d{3})[/-](\d{2})[/-]?\s*Z?R?F?\s*(\d{2})", re.IGNORECASE)

    # checked in order; normalized description text
    SEASONS = (
        (("sezona: zima", "zimsk"), "Zimske"),
        (("sezona: ljeto", "ljetn"), "Ljetne"),
        (("all season", "cjelogodisnj", "sezona: cijela godina"), "All season (Cjelogodišnje)"),
    )

    def extract(self, product) -> dict[int, str]:
        values: dict[int, str] = {}
        match = self.SIZE_PATTERN.search(product.title or "")
        if match:
            values[self.WIDTH_ID] = match.group(1)
            values[self.HEIGHT_ID] = match.group(2)
            values[self.DIAMETER_ID] = match.group(3)

        description = normalize(product.description or "")
        for keywords, season in self.SEASONS:
            if any(keyword in description for keyword in keywords):
                values[self.SEASON_ID] = season
                break
        return values


_registry: dict[int, list[AttributeExtractor]] = {}


def register_extractor(category_id: int, extractor: AttributeExtractor) -> None:
    _registry.setdefault(int(category_id), []).append(extractor)


def extractors_for(category_id: int | None) -> list[AttributeExtractor]:
    if category_id is None:
        return []
    return list(_registry.get(int(category_id), []))


def extract_attributes(product, category_id: int | None) -> dict[int, str]:
    values: dict[int, str] = {}
    for extractor in extractors_for(category_id):
        values.update(extractor.extract(product))
    return values


register_extractor(TIRE_CATEGORY_ID, TireExtractor())
