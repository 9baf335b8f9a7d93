from __future__ import annotations

import json
import logging
from typing import Any

from support_directory.services.records import CANDIDATE_FIELDS, SourceDescriptor

logger = logging.getLogger(__name__)

# Community documents the directory has been compiled from, in processing order.
DEFAULT_SOURCES: tuple[dict[str, Any], ...] = (
    {
        "region": "AU",
        "partition_key": "1uhPa_kUCZXcoxJKwPAkKG6XJtER1QH6ZYpJk2EkhZq4",
        "partition_title": "AUS",
        "field_map": {"title": "title", "description": "description", "donate_url": "donateUrl", "logo": "logo"},
    },
    {
        "region": "CA",
        "partition_key": "1uhPa_kUCZXcoxJKwPAkKG6XJtER1QH6ZYpJk2EkhZq4",
        "partition_title": "CAN",
        "field_map": {"title": "title", "description": "description", "donate_url": "donateUrl", "logo": "logo"},
    },
    {
        "region": "US",
        "partition_key": "1uhPa_kUCZXcoxJKwPAkKG6XJtER1QH6ZYpJk2EkhZq4",
        "partition_title": "USA",
        "field_map": {"title": "title", "description": "description", "donate_url": "donateUrl", "logo": "logo"},
    },
    {
        "region": "AU",
        "partition_key": "1kpse8wqYdjmPrtJPLWnT4RPKVK_-bmQfVP_xDg0d3g4",
        "field_map": {"title": "Organisation", "description": "Info", "donate_url": "Link"},
    },
    {
        "region": "US",
        "partition_key": "1p7QxOvtvRfHUoMWib8coGHSS8szENXzSjIZKpvp-gtA",
        "partition_title": "ACCESSIBLE VERSION",
        "field_map": {"title": "Org/Individual", "donate_url": "Link", "state": "Location (State)"},
    },
    {
        "region": "UK",
        "partition_key": "1mZu6UAxnanWUMHGz3m6zgsFSEQE3IXG8AfuGxV_PuTM",
        "field_map": {"title": "ORGANISATIONS", "donate_url": "LINKS", "description": "WHAT THEY DO"},
    },
    {
        "region": "US",
        "partition_key": "1SRl1HOoBC_RSI4X8e_O8W9yI-7E7WJfJgYpa3UAUY-o",
        "field_map": {"title": "Name", "donate_url": "Website", "state": "State", "city": "City"},
    },
)

_FIELD_ALIASES = {"donateUrl": "donate_url"}


def parse_source_descriptors(raw: str | None, *, url_template: str) -> list[SourceDescriptor]:
    """Build descriptors from a JSON array, or the built-in list when ``raw`` is empty.

    Invalid JSON raises ``ValueError``; individual malformed entries are skipped.
    """
    if raw is None or not raw.strip():
        entries: list[Any] = list(DEFAULT_SOURCES)
    else:
        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"sources must be a JSON array: {exc}") from exc
        if not isinstance(entries, list):
            raise ValueError("sources must be a JSON array")

    descriptors: list[SourceDescriptor] = []
    for position, entry in enumerate(entries):
        descriptor = _parse_entry(entry, url_template=url_template)
        if descriptor is None:
            logger.warning("skipping malformed source descriptor position=%s", position)
            continue
        descriptors.append(descriptor)
    return descriptors


def _parse_entry(entry: Any, *, url_template: str) -> SourceDescriptor | None:
    if not isinstance(entry, dict):
        return None

    region = entry.get("region")
    partition_key = entry.get("partition_key")
    raw_field_map = entry.get("field_map")
    if not isinstance(region, str) or not region.strip():
        return None
    if not isinstance(partition_key, str) or not partition_key.strip():
        return None
    if not isinstance(raw_field_map, dict):
        return None

    field_map: dict[str, str] = {}
    for field_name, label in raw_field_map.items():
        canonical = _FIELD_ALIASES.get(field_name, field_name)
        if canonical not in CANDIDATE_FIELDS or not isinstance(label, str) or not label.strip():
            return None
        field_map[canonical] = label
    if "donate_url" not in field_map:
        return None

    partition_title = entry.get("partition_title")
    if partition_title is not None and not isinstance(partition_title, str):
        return None

    url = entry.get("url")
    if not isinstance(url, str) or not url.strip():
        url = url_template.format(partition_key=partition_key)

    return SourceDescriptor(
        region=region.strip(),
        partition_key=partition_key.strip(),
        url=url,
        field_map=field_map,
        partition_title=partition_title or None,
    )
