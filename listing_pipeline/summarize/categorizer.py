from __future__ import annotations

import re
from typing import Iterable

from listing_pipeline.models import AggregatedEntity, TextWindow
from listing_pipeline.summarize.taxonomy import (
    CURRENCY_SYMBOLS,
    OTHER_BUCKET,
    PROPERTY_DETAIL_KEYWORDS,
    TEXT_BUCKETS,
    Taxonomy,
)

_DIGITS = re.compile(r"\d+")


def categorize(description: str, taxonomy: Taxonomy) -> str:
    """Return the first bucket whose keyword occurs inside the description, else `other`."""

    lowered = description.lower()
    for bucket, keywords in taxonomy.categories:
        if any(keyword in lowered for keyword in keywords):
            return bucket
    return OTHER_BUCKET


def categorize_entities(
    entities: dict[str, AggregatedEntity] | Iterable[AggregatedEntity],
    taxonomy: Taxonomy,
) -> dict[str, list[AggregatedEntity]]:
    """Partition aggregated entities into the taxonomy's buckets, in input order."""

    buckets: dict[str, list[AggregatedEntity]] = {name: [] for name in taxonomy.bucket_names}
    values = entities.values() if isinstance(entities, dict) else entities
    for entity in values:
        buckets[categorize(entity.name, taxonomy)].append(entity)
    return buckets


def categorize_text_value(text: str) -> str:
    if any(symbol in text for symbol in CURRENCY_SYMBOLS) or _DIGITS.search(text):
        return "prices"

    lowered = text.lower()
    if any(keyword in lowered for keyword in PROPERTY_DETAIL_KEYWORDS):
        return "propertyDetails"
    return OTHER_BUCKET


def categorize_text(records: Iterable[TextWindow]) -> dict[str, list[TextWindow]]:
    """Split merged on-screen text into prices, property details and other."""

    buckets: dict[str, list[TextWindow]] = {name: [] for name in TEXT_BUCKETS}
    for record in records:
        buckets[categorize_text_value(record.text)].append(record)
    return buckets
