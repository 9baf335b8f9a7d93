#!/usr/bin/env python3
"""Emit deterministic SQL that seeds an empty canonical document in the Postgres row store."""

from __future__ import annotations

import argparse
import json

CANONICAL_HEADER = ["title", "description", "donateUrl", "state", "city", "logo", "source", "hide"]
DEFAULT_REGIONS = ["AU", "CA", "US", "UK"]


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, document_key: str, regions: list[str], metadata_title: str) -> str:
    key_value = _quote_sql(document_key)
    header_value = _quote_sql(json.dumps(CANONICAL_HEADER))
    titles = [*regions, metadata_title]

    partition_values = ",\n  ".join(
        f"({key_value}, {_quote_sql(title)}, {position})" for position, title in enumerate(titles)
    )
    header_values = ",\n  ".join(
        f"({key_value}, {_quote_sql(region)}, 0, {header_value}::jsonb)" for region in regions
    )

    return f"""-- Canonical document seed SQL
-- Run after the service has created the row store tables (first connection does this).

insert into row_store_partitions (document_key, title, position)
values
  {partition_values}
on conflict (document_key, title) do nothing;

insert into row_store_rows (document_key, title, row_index, cells)
values
  {header_values}
on conflict (document_key, title, row_index) do nothing;
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to seed the canonical directory document.")
    parser.add_argument("--document-key", default="main", help="Canonical document key (SD_CANONICAL_DOCUMENT_KEY)")
    parser.add_argument(
        "--region",
        action="append",
        dest="regions",
        help="Region partition to create; repeat for several (default: AU, CA, US, UK)",
    )
    parser.add_argument(
        "--metadata-title",
        default="About",
        help="Partition holding the last-reconciled timestamp (SD_METADATA_PARTITION_TITLE)",
    )
    args = parser.parse_args()

    print(
        render_sql(
            document_key=args.document_key,
            regions=args.regions or DEFAULT_REGIONS,
            metadata_title=args.metadata_title,
        )
    )


if __name__ == "__main__":
    main()
