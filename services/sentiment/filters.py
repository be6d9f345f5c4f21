"""Filtering utilities for news articles."""

from __future__ import annotations

from typing import Iterable, List, Sequence, Set

from services.sentiment.types import Article


def filter_relevant(articles: Iterable[Article], keywords: Sequence[str] = ()) -> List[Article]:
    """Keep articles whose text mentions any keyword (case-insensitive)."""

    items = list(articles)
    if not keywords:
        return items
    lowered = [word.lower() for word in keywords if word]
    return [item for item in items if any(word in item.text.lower() for word in lowered)]


def dedupe(articles: Iterable[Article]) -> List[Article]:
    """Deduplicate articles by (source, id)."""

    seen: Set[tuple[str, str]] = set()
    out: List[Article] = []
    for item in articles:
        key = (item.source, item.id)
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out
