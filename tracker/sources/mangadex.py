"""Adapter for the MangaDex JSON API (https://api.mangadex.org/docs/)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping

from ..http_client import HttpFetchError
from ..normalize import normalize_status, normalize_unit_number
from . import (
    UNKNOWN_TITLE,
    ScrapedUnit,
    ScrapedWork,
    SearchResult,
    SourceAdapter,
    SourcePayloadError,
    WorkDetails,
    sort_units_ascending,
)

LOGGER = logging.getLogger(__name__)

API_BASE_URL = "https://api.mangadex.org"
SITE_BASE_URL = "https://mangadex.org"
COVER_BASE_URL = "https://uploads.mangadex.org/covers"

FEED_PAGE_SIZE = 500

_CONTENT_RATINGS = ("safe", "suggestive", "erotica")
_TITLE_LANGUAGES = ("en", "ja-ro")
_PAYLOAD_ERRORS = (HttpFetchError, SourcePayloadError, AttributeError, KeyError, TypeError, ValueError)


def pick_localized(values: Mapping[str, str] | None, languages: tuple[str, ...] = ("en",)) -> str | None:
    """Return the first non-empty value for ``languages``, else any non-empty value."""

    if not values:
        return None
    for language in languages:
        value = values.get(language)
        if value:
            return value
    for value in values.values():
        if value:
            return value
    return None


def localized_title(values: Mapping[str, str] | None) -> str:
    return pick_localized(values, _TITLE_LANGUAGES) or UNKNOWN_TITLE


class MangaDexAdapter(SourceAdapter):
    source_name = "mangadex"
    # MangaDex allows roughly five requests per second per IP.
    default_delay = 0.25

    def search(self, query: str) -> list[SearchResult]:
        params = [
            ("title", query),
            ("limit", self._search_limit),
            ("includes[]", "cover_art"),
            *self._content_rating_params(),
            ("order[relevance]", "desc"),
        ]
        try:
            self._rate_limiter.wait()
            payload = self._fetcher.fetch_json(f"{API_BASE_URL}/manga", params=params)
            return [self._map_search_result(item) for item in self._data_list(payload)]
        except _PAYLOAD_ERRORS as exc:
            LOGGER.warning("MangaDex search failed for %r: %s", query, exc)
            return []

    def get_details(self, source_id: str) -> WorkDetails:
        work = self._fetch_work(source_id)
        units = sort_units_ascending(self._fetch_all_units(source_id))
        return WorkDetails(work=work, units=units)

    def get_latest_units(self, source_id: str, limit: int = 10) -> list[ScrapedUnit]:
        params = [
            ("limit", limit),
            ("translatedLanguage[]", "en"),
            ("includes[]", "scanlation_group"),
            ("order[publishAt]", "desc"),
            *self._content_rating_params(),
        ]
        try:
            self._rate_limiter.wait()
            payload = self._fetcher.fetch_json(f"{API_BASE_URL}/manga/{source_id}/feed", params=params)
            units = [self._map_unit(item) for item in self._data_list(payload)]
        except _PAYLOAD_ERRORS as exc:
            LOGGER.warning("MangaDex latest chapters failed for %s: %s", source_id, exc)
            return []
        return sort_units_ascending(units)

    def get_recent_updates(self, limit: int = 20) -> list[SearchResult]:
        params = [
            ("limit", limit),
            ("includes[]", "cover_art"),
            *self._content_rating_params(),
            ("order[latestUploadedChapter]", "desc"),
            ("hasAvailableChapters", "true"),
        ]
        try:
            self._rate_limiter.wait()
            payload = self._fetcher.fetch_json(f"{API_BASE_URL}/manga", params=params)
            return [self._map_search_result(item) for item in self._data_list(payload)]
        except _PAYLOAD_ERRORS as exc:
            LOGGER.warning("MangaDex recent updates failed: %s", exc)
            return []

    def _fetch_work(self, source_id: str) -> ScrapedWork:
        params = [
            ("includes[]", "cover_art"),
            ("includes[]", "author"),
            ("includes[]", "artist"),
        ]
        self._rate_limiter.wait()
        payload = self._fetcher.fetch_json(f"{API_BASE_URL}/manga/{source_id}", params=params)
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict) or not data.get("id"):
            raise SourcePayloadError(f"MangaDex returned no manga data for {source_id}")
        try:
            return self._map_work(data)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise SourcePayloadError(f"Malformed MangaDex manga payload for {source_id}: {exc}") from exc

    def _fetch_all_units(self, source_id: str) -> list[ScrapedUnit]:
        units: list[ScrapedUnit] = []
        offset = 0
        while True:
            params = [
                ("limit", FEED_PAGE_SIZE),
                ("offset", offset),
                ("translatedLanguage[]", "en"),
                ("includes[]", "scanlation_group"),
                ("order[chapter]", "asc"),
                *self._content_rating_params(),
            ]
            try:
                self._rate_limiter.wait()
                payload = self._fetcher.fetch_json(f"{API_BASE_URL}/manga/{source_id}/feed", params=params)
                page = self._data_list(payload)
                units.extend(self._map_unit(item) for item in page)
            except _PAYLOAD_ERRORS as exc:
                LOGGER.warning(
                    "MangaDex feed for %s stopped at offset %d: %s", source_id, offset, exc
                )
                break

            if len(page) < FEED_PAGE_SIZE:
                break
            offset += FEED_PAGE_SIZE

        LOGGER.debug("MangaDex feed for %s returned %d chapters", source_id, len(units))
        return units

    @staticmethod
    def _content_rating_params() -> list[tuple[str, str]]:
        return [("contentRating[]", rating) for rating in _CONTENT_RATINGS]

    @staticmethod
    def _data_list(payload: Any) -> list[dict]:
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise SourcePayloadError("MangaDex payload has no 'data' list")
        return data

    @staticmethod
    def _relationship(relationships: list[dict], kind: str) -> dict | None:
        for relationship in relationships:
            if relationship.get("type") == kind:
                return relationship
        return None

    def _cover_url(self, manga_id: str, relationships: list[dict], *, thumbnail: bool = False) -> str | None:
        cover = self._relationship(relationships, "cover_art")
        file_name = ((cover or {}).get("attributes") or {}).get("fileName")
        if not file_name:
            return None
        url = f"{COVER_BASE_URL}/{manga_id}/{file_name}"
        return f"{url}.256.jpg" if thumbnail else url

    def _map_work(self, data: dict) -> ScrapedWork:
        manga_id = data["id"]
        attributes = data.get("attributes") or {}
        relationships = data.get("relationships") or []

        author = self._relationship(relationships, "author")
        artist = self._relationship(relationships, "artist")

        alternative_titles = []
        for alt in attributes.get("altTitles") or []:
            value = next(iter(alt.values()), None) if isinstance(alt, dict) else None
            if value:
                alternative_titles.append(value)

        genres = []
        for tag in attributes.get("tags") or []:
            tag_attributes = tag.get("attributes") or {}
            if tag_attributes.get("group") != "genre":
                continue
            name = (tag_attributes.get("name") or {}).get("en")
            if name:
                genres.append(name)

        return ScrapedWork(
            title=localized_title(attributes.get("title")),
            source_id=manga_id,
            source_url=f"{SITE_BASE_URL}/title/{manga_id}",
            alternative_titles=alternative_titles,
            author=((author or {}).get("attributes") or {}).get("name"),
            artist=((artist or {}).get("attributes") or {}).get("name"),
            description=pick_localized(attributes.get("description")),
            cover_image=self._cover_url(manga_id, relationships),
            genres=genres,
            status=normalize_status(attributes.get("status")),
        )

    def _map_unit(self, data: dict) -> ScrapedUnit:
        chapter_id = data["id"]
        attributes = data.get("attributes") or {}
        relationships = data.get("relationships") or []
        group = self._relationship(relationships, "scanlation_group")

        return ScrapedUnit(
            number=normalize_unit_number(attributes.get("chapter") or "0"),
            source_id=chapter_id,
            source_url=f"{SITE_BASE_URL}/chapter/{chapter_id}",
            title=attributes.get("title") or None,
            volume=attributes.get("volume") or None,
            published_at=_parse_timestamp(attributes.get("publishAt")),
            pages=attributes.get("pages") or None,
            language=attributes.get("translatedLanguage") or "en",
            group=((group or {}).get("attributes") or {}).get("name"),
        )

    def _map_search_result(self, data: dict) -> SearchResult:
        manga_id = data["id"]
        attributes = data.get("attributes") or {}
        return SearchResult(
            source_id=manga_id,
            title=localized_title(attributes.get("title")),
            source_url=f"{SITE_BASE_URL}/title/{manga_id}",
            cover_image=self._cover_url(manga_id, data.get("relationships") or [], thumbnail=True),
        )


def _parse_timestamp(raw_value: str | None) -> datetime | None:
    if not raw_value:
        return None
    try:
        return datetime.fromisoformat(raw_value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
