"""HTML scraping adapter for WeebCentral.

The site publishes no API, so every extraction walks an ordered selector chain
from :class:`~tracker.sources.selectors.SelectorSet` and keeps the first
selector that yields usable matches.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Sequence

from bs4 import BeautifulSoup, Tag

from ..http_client import HttpFetcher, HttpFetchError
from ..normalize import normalize_status, normalize_unit_number
from ..rate_limit import RateLimiter
from . import (
    DEFAULT_SEARCH_LIMIT,
    UNKNOWN_TITLE,
    ScrapedUnit,
    ScrapedWork,
    SearchResult,
    SourceAdapter,
    SourcePayloadError,
    WorkDetails,
    sort_units_ascending,
)
from .selectors import DEFAULT_SELECTORS, SelectorSet

LOGGER = logging.getLogger(__name__)

BASE_URL = "https://weebcentral.com"
RECENT_UPDATE_PATHS = ("/latest", "/latest-updates", "/manga-list", "/")

_UNIT_NUMBER_PATTERN = re.compile(r"chapter[:\s]*(\d+\.?\d*)", re.IGNORECASE)
_UNIT_TITLE_PATTERN = re.compile(r"chapter[:\s]*\d+\.?\d*[:\s-]+(.*)", re.IGNORECASE)
_DATE_FORMATS = ("%b %d, %Y", "%B %d, %Y", "%d %b %Y", "%d %B %Y", "%Y-%m-%d", "%m/%d/%Y")


def normalize_url(raw_url: str, base_url: str = BASE_URL) -> str:
    url = raw_url.strip()
    if url.startswith("http://") or url.startswith("https://"):
        return url
    if url.startswith("//"):
        return f"https:{url}"
    if url.startswith("/"):
        return f"{base_url}{url}"
    return f"{base_url}/{url}"


def extract_source_id(url: str) -> str:
    """Use the last non-empty path segment of ``url`` as the source identifier."""

    segments = [segment for segment in url.split("/") if segment]
    return segments[-1] if segments else url


class WeebCentralAdapter(SourceAdapter):
    source_name = "weebcentral"
    default_delay = 1.0

    def __init__(
        self,
        fetcher: HttpFetcher,
        *,
        rate_limiter: RateLimiter | None = None,
        selectors: SelectorSet | None = None,
        base_url: str = BASE_URL,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> None:
        super().__init__(fetcher, rate_limiter=rate_limiter, search_limit=search_limit)
        self._selectors = selectors or DEFAULT_SELECTORS
        self._base_url = base_url.rstrip("/")

    @property
    def selectors(self) -> SelectorSet:
        return self._selectors

    def search(self, query: str) -> list[SearchResult]:
        try:
            self._rate_limiter.wait()
            html = self._fetcher.fetch_html(f"{self._base_url}/search", params={"q": query})
            results = self._parse_listing(html, self._selectors.search_items)
            if results:
                return results[: self._search_limit]
            LOGGER.debug("WeebCentral search page had no results for %r; trying alternate search", query)
        except HttpFetchError as exc:
            LOGGER.warning("WeebCentral search error for %r: %s", query, exc)

        try:
            self._rate_limiter.wait()
            html = self._fetcher.fetch_html(f"{self._base_url}/", params={"s": query})
        except HttpFetchError as exc:
            LOGGER.warning("WeebCentral alternate search also failed for %r: %s", query, exc)
            return []
        return self._parse_listing(html, self._selectors.search_items)[: self._search_limit]

    def get_details(self, source_id: str) -> WorkDetails:
        self._rate_limiter.wait()
        html = self._fetcher.fetch_html(f"{self._base_url}/manga/{source_id}")
        if not html.strip():
            raise SourcePayloadError(f"WeebCentral returned an empty page for {source_id}")

        soup = BeautifulSoup(html, "html.parser")
        work = self._parse_work(soup, source_id)
        units = sort_units_ascending(self._parse_units(soup))
        return WorkDetails(work=work, units=units)

    def get_latest_units(self, source_id: str, limit: int = 10) -> list[ScrapedUnit]:
        if limit <= 0:
            return []
        try:
            details = self.get_details(source_id)
        except (HttpFetchError, SourcePayloadError) as exc:
            LOGGER.warning("WeebCentral latest chapters failed for %s: %s", source_id, exc)
            return []
        return details.units[-limit:]

    def get_recent_updates(self, limit: int = 20) -> list[SearchResult]:
        for path in RECENT_UPDATE_PATHS:
            url = f"{self._base_url}{path}"
            try:
                self._rate_limiter.wait()
                html = self._fetcher.fetch_html(url, retries=1)
            except HttpFetchError as exc:
                LOGGER.debug("WeebCentral recent updates page %s failed: %s", url, exc)
                continue

            results = self._parse_listing(html, self._selectors.recent_update_items)
            if results:
                return results[:limit]

        LOGGER.warning("WeebCentral recent updates: no candidate page produced results")
        return []

    def _parse_listing(self, html: str, selectors: Sequence[str]) -> list[SearchResult]:
        soup = BeautifulSoup(html, "html.parser")
        for selector in selectors:
            results: list[SearchResult] = []
            for element in soup.select(selector):
                result = self._listing_entry(element)
                if result is not None:
                    results.append(result)
            if results:
                return results
        return []

    def _listing_entry(self, element: Tag) -> SearchResult | None:
        link = element.find("a")
        if not isinstance(link, Tag):
            return None
        href = (link.get("href") or "").strip()
        title = (link.get("title") or "").strip() or link.get_text(strip=True)
        if not href or not title:
            return None

        cover_image = None
        image = element.find("img")
        if isinstance(image, Tag):
            source = image.get("src") or image.get("data-src")
            if source:
                cover_image = normalize_url(source, self._base_url)

        return SearchResult(
            source_id=extract_source_id(href),
            title=title,
            source_url=normalize_url(href, self._base_url),
            cover_image=cover_image,
        )

    def _parse_work(self, soup: BeautifulSoup, source_id: str) -> ScrapedWork:
        cover = self._first_attribute(soup, self._selectors.cover, ("src", "data-src"))
        return ScrapedWork(
            title=self._first_text(soup, self._selectors.title) or UNKNOWN_TITLE,
            source_id=source_id,
            source_url=f"{self._base_url}/manga/{source_id}",
            author=self._first_text(soup, self._selectors.author),
            description=self._first_text(soup, self._selectors.description),
            cover_image=normalize_url(cover, self._base_url) if cover else None,
            genres=self._all_texts(soup, self._selectors.genres),
            status=normalize_status(self._first_text(soup, self._selectors.status)),
        )

    def _parse_units(self, soup: BeautifulSoup) -> list[ScrapedUnit]:
        for selector in self._selectors.unit_items:
            units: list[ScrapedUnit] = []
            for element in soup.select(selector):
                unit = self._unit_entry(element)
                if unit is not None:
                    units.append(unit)
            if units:
                return units
        return []

    def _unit_entry(self, element: Tag) -> ScrapedUnit | None:
        link = element.find("a")
        if not isinstance(link, Tag):
            return None
        href = (link.get("href") or "").strip()
        if not href:
            return None

        link_text = link.get_text(" ", strip=True)
        number_match = _UNIT_NUMBER_PATTERN.search(link_text)
        number = normalize_unit_number(number_match.group(1) if number_match else link_text)
        title_match = _UNIT_TITLE_PATTERN.search(link_text)
        title = title_match.group(1).strip() if title_match else None

        date_text = self._first_text(element, self._selectors.unit_date)
        return ScrapedUnit(
            number=number,
            source_id=extract_source_id(href),
            source_url=normalize_url(href, self._base_url),
            title=title or None,
            published_at=parse_date_text(date_text) if date_text else None,
        )

    @staticmethod
    def _first_text(root: Tag, selectors: Sequence[str]) -> str | None:
        for selector in selectors:
            element = root.select_one(selector)
            if element is None:
                continue
            text = element.get_text(" ", strip=True)
            if text:
                return text
        return None

    @staticmethod
    def _first_attribute(root: Tag, selectors: Sequence[str], attributes: Sequence[str]) -> str | None:
        for selector in selectors:
            element = root.select_one(selector)
            if element is None:
                continue
            for attribute in attributes:
                value = element.get(attribute)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return None

    @staticmethod
    def _all_texts(root: Tag, selectors: Sequence[str]) -> list[str]:
        for selector in selectors:
            texts = [element.get_text(strip=True) for element in root.select(selector)]
            texts = [text for text in texts if text]
            if texts:
                return texts
        return []


def parse_date_text(raw_value: str) -> datetime | None:
    text = raw_value.strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for date_format in _DATE_FORMATS:
        try:
            return datetime.strptime(text, date_format)
        except ValueError:
            continue
    try:
        return parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        LOGGER.debug("Unrecognised chapter date %r", text)
        return None
