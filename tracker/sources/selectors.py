"""Versioned CSS selector sets for markup-scraping adapters.

Each field is an ordered fallback chain: extraction uses the first selector
that yields a usable match. Sets can be loaded from JSON so a changed site
layout only needs a new file, e.g.::

    {"version": "2025-02", "unit_items": [".chapter-row", ".chapter-list li"]}

Fields missing from the file keep their defaults.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import soupsieve


@dataclass(frozen=True, slots=True)
class SelectorSet:
    version: str = "1"
    search_items: tuple[str, ...] = (
        ".manga-item",
        ".search-result",
        ".manga-list-item",
        ".item",
        ".post",
        "article",
    )
    recent_update_items: tuple[str, ...] = (
        ".latest-update .manga-item",
        ".recent-manga",
        ".latest-manga",
        ".updated-manga",
    )
    unit_items: tuple[str, ...] = (
        ".chapter-list li",
        ".chapters li",
        ".chapter-item",
        ".wp-manga-chapter",
        "li[class*='chapter']",
    )
    unit_date: tuple[str, ...] = (".date", ".time", "[class*='date']")
    title: tuple[str, ...] = (".manga-title", "h1", ".entry-title")
    description: tuple[str, ...] = (".manga-description", ".summary", ".description")
    cover: tuple[str, ...] = (".manga-cover img", ".cover img", ".thumbnail img")
    author: tuple[str, ...] = (".author a", "[href*='author']")
    status: tuple[str, ...] = (".status", "[class*='status']")
    genres: tuple[str, ...] = (".genre a, .genres a, .tags a",)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any], *, base: "SelectorSet | None" = None) -> "SelectorSet":
        base = base or cls()
        known = {item.name for item in fields(cls)}
        updates: dict[str, Any] = {}
        for key, value in payload.items():
            if key not in known:
                raise ValueError(f"Unknown selector field {key!r}")
            if key == "version":
                updates[key] = str(value)
                continue
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
                raise ValueError(f"Selector field {key!r} must be a list of strings")
            cleaned = tuple(item.strip() for item in value if item.strip())
            if not cleaned:
                raise ValueError(f"Selector field {key!r} must not be empty")
            for selector in cleaned:
                try:
                    soupsieve.compile(selector)
                except soupsieve.SelectorSyntaxError as exc:
                    raise ValueError(f"Selector field {key!r} has invalid CSS {selector!r}: {exc}") from exc
            updates[key] = cleaned
        return replace(base, **updates)

    @classmethod
    def from_file(cls, path: Path) -> "SelectorSet":
        try:
            payload = json.loads(Path(path).read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Selector file {path} is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"Selector file {path} must contain a JSON object")
        return cls.from_mapping(payload)


DEFAULT_SELECTORS = SelectorSet()
