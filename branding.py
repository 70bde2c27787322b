"""
Brand grouping: sub-APIs of one company (`amazonaws.com:ec2`,
`amazonaws.com:s3`, ...) collapse into a single listing entry keyed by
the part of the id before the first colon.
"""

from typing import Iterable

from models import ApiRecord, Brand


def brand_key_of(api_id: str) -> str:
    return api_id.split(":")[0]


def group_by_brand(records: Iterable[ApiRecord]) -> list[Brand]:
    """
    Group records by brand key, preserving first-seen order.

    The primary record is the one whose id equals the brand key, else the
    first in the group. `logo` and `doc_url` come from the first member
    that has one, regardless of which member is primary.
    """
    groups: dict[str, list[ApiRecord]] = {}
    for record in records:
        groups.setdefault(brand_key_of(record.id), []).append(record)

    brands = []
    for key, members in groups.items():
        primary = next((m for m in members if m.id == key), members[0])
        logo = next((m.logo for m in members if m.logo), None)
        doc_url = next((m.doc_url for m in members if m.doc_url), None)
        brands.append(Brand(
            id=key,
            title=primary.title,
            description=primary.tldr or primary.description,
            logo=logo,
            website=primary.website,
            doc_url=doc_url or primary.doc_url or primary.website,
            api_count=len(members),
        ))
    return brands


def brand_page(records: list[ApiRecord], size: int) -> tuple[list[Brand], int]:
    """
    The first `size` brands in `records` and the number of leading rows
    they consumed. The next page starts at that row.
    """
    keys: set[str] = set()
    used = len(records)
    for i, record in enumerate(records):
        key = brand_key_of(record.id)
        if key in keys:
            continue
        if len(keys) == size:
            used = i
            break
        keys.add(key)
    return group_by_brand(records[:used]), used
