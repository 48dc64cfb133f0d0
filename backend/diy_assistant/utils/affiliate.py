"""Affiliate search links for recommended materials and tools."""

from __future__ import annotations

import urllib.parse
from typing import Any

import structlog

from diy_assistant.config import settings
from diy_assistant.models.contracts import (
    ExtractedRecommendations,
    ProductItem,
    Recommendations,
)

log = structlog.get_logger("affiliate")


class AffiliateLinkBuilder:
    """Builds retail search URLs tagged for referral attribution."""

    def __init__(self, tag: str | None = None, base_url: str | None = None) -> None:
        self.tag = tag if tag is not None else settings.affiliate_tag
        self.base_url = base_url if base_url is not None else settings.affiliate_base_url

    def build(self, item_name: str) -> str:
        query = urllib.parse.quote_plus(item_name)
        tag = urllib.parse.quote_plus(self.tag)
        return f"{self.base_url}?k={query}&tag={tag}"

    def product(self, name: str, search_term: str | None = None) -> ProductItem:
        return ProductItem(name=name, affiliate_url=self.build(search_term or name))

    def decorate(self, extracted: ExtractedRecommendations) -> Recommendations:
        """Attach affiliate links to extracted items, keeping the first of each name."""
        return Recommendations(
            materials=self._decorate_list(extracted.materials, "materials"),
            tools=self._decorate_list(extracted.tools, "tools"),
        )

    def _decorate_list(self, items: list[dict[str, Any]], group: str) -> list[ProductItem]:
        seen: set[str] = set()
        products: list[ProductItem] = []
        for item in items:
            name = item["name"].strip()
            if name in seen:
                log.debug("affiliate_duplicate_dropped", group=group, name=name)
                continue
            seen.add(name)
            products.append(self.product(name))
        return products


def build_affiliate_link(item_name: str, tag: str | None = None) -> str:
    """Return the affiliate search URL for ``item_name``."""
    return AffiliateLinkBuilder(tag=tag).build(item_name)


# (display name, search term) pairs shown when no recommendation block is found
_FALLBACK_MATERIALS = [
    ("Drywall Sheets", "Drywall Sheets"),
    ("Wood Studs", "Wood Studs"),
    ("Joint Compound", "Joint Compound"),
    ("Primer", "Wall Primer"),
    ("Paint", "Interior Wall Paint"),
]
_FALLBACK_TOOLS = [
    ("Hammer", "Hammer"),
    ("Screwdriver Set", "Screwdriver Set"),
    ("Measuring Tape", "Measuring Tape"),
    ("Utility Knife", "Utility Knife"),
    ("Level", "Level Tool"),
]


def fallback_recommendations(builder: AffiliateLinkBuilder | None = None) -> Recommendations:
    """General-purpose renovation kit, never empty."""
    builder = builder or AffiliateLinkBuilder()
    return Recommendations(
        materials=[builder.product(name, term) for name, term in _FALLBACK_MATERIALS],
        tools=[builder.product(name, term) for name, term in _FALLBACK_TOOLS],
    )
