import unittest
from datetime import datetime, timezone

import httpx

from tracker.config import RetryConfig, TrackerConfig
from tracker.http_client import HttpFetcher
from tracker.normalize import WorkStatus
from tracker.rate_limit import RateLimiter
from tracker.sources import SourcePayloadError
from tracker.sources.mangadex import FEED_PAGE_SIZE, MangaDexAdapter, localized_title

MANGA_ID = "a1c7c817-4e59-43b7-9365-09675a149a6f"


def _chapter(index: int, **attributes) -> dict:
    payload = {
        "chapter": str(index),
        "title": f"Chapter title {index}",
        "volume": None,
        "publishAt": "2024-05-01T10:00:00+00:00",
        "pages": 20,
        "translatedLanguage": "en",
    }
    payload.update(attributes)
    return {
        "id": f"chapter-{index}",
        "type": "chapter",
        "attributes": payload,
        "relationships": [{"type": "scanlation_group", "attributes": {"name": "Scans"}}],
    }


def _manga_payload(**attributes) -> dict:
    payload = {
        "title": {"ja-ro": "Kingudamu", "en": "Kingdom"},
        "altTitles": [{"ja": "キングダム"}, {"ko": "킹덤"}],
        "description": {"fr": "Description", "en": "Warring states."},
        "status": "ongoing",
        "tags": [
            {"attributes": {"group": "genre", "name": {"en": "Action"}}},
            {"attributes": {"group": "theme", "name": {"en": "Military"}}},
            {"attributes": {"group": "genre", "name": {"en": "Historical"}}},
        ],
    }
    payload.update(attributes)
    return {
        "result": "ok",
        "data": {
            "id": MANGA_ID,
            "type": "manga",
            "attributes": payload,
            "relationships": [
                {"type": "author", "attributes": {"name": "Hara Yasuhisa"}},
                {"type": "artist", "attributes": {"name": "Hara Yasuhisa"}},
                {"type": "cover_art", "attributes": {"fileName": "cover.jpg"}},
            ],
        },
    }


class MangaDexAdapterTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.requests: list[httpx.Request] = []
        self.sleeps: list[float] = []
        self.config = TrackerConfig(retry=RetryConfig(max_retries=0))

    def _adapter(self, handler, **options) -> MangaDexAdapter:
        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        fetcher = HttpFetcher(self.config, transport=httpx.MockTransport(recording_handler), sleep=self.sleeps.append)
        self.addCleanup(fetcher.close)
        return MangaDexAdapter(fetcher, rate_limiter=RateLimiter(0), **options)

    def test_get_details_paginates_feed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == f"/manga/{MANGA_ID}":
                return httpx.Response(200, json=_manga_payload())
            offset = int(request.url.params["offset"])
            if offset == 0:
                chapters = [_chapter(index) for index in range(1, FEED_PAGE_SIZE + 1)]
            elif offset == FEED_PAGE_SIZE:
                chapters = [_chapter(index) for index in range(FEED_PAGE_SIZE + 1, FEED_PAGE_SIZE + 4)]
            else:
                chapters = []
            return httpx.Response(200, json={"data": chapters})

        details = self._adapter(handler).get_details(MANGA_ID)

        self.assertEqual(len(details.units), 503)
        self.assertEqual(details.units[0].number, "1")
        self.assertEqual(details.units[-1].number, "503")
        feed_requests = [request for request in self.requests if request.url.path.endswith("/feed")]
        self.assertEqual(len(feed_requests), 2)
        self.assertEqual([request.url.params["offset"] for request in feed_requests], ["0", "500"])
        self.assertEqual(feed_requests[0].url.params["limit"], "500")
        self.assertEqual(
            feed_requests[0].url.params.get_list("contentRating[]"), ["safe", "suggestive", "erotica"]
        )

    def test_get_details_maps_work_fields(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/feed"):
                return httpx.Response(200, json={"data": [_chapter(1, chapter=None, title="")]})
            return httpx.Response(200, json=_manga_payload())

        details = self._adapter(handler).get_details(MANGA_ID)
        work = details.work

        self.assertEqual(work.title, "Kingdom")
        self.assertEqual(work.alternative_titles, ["キングダム", "킹덤"])
        self.assertEqual(work.author, "Hara Yasuhisa")
        self.assertEqual(work.description, "Warring states.")
        self.assertEqual(work.genres, ["Action", "Historical"])
        self.assertEqual(work.status, WorkStatus.ONGOING)
        self.assertEqual(work.source_url, f"https://mangadex.org/title/{MANGA_ID}")
        self.assertEqual(work.cover_image, f"https://uploads.mangadex.org/covers/{MANGA_ID}/cover.jpg")

        unit = details.units[0]
        self.assertEqual(unit.number, "0")
        self.assertIsNone(unit.title)
        self.assertEqual(unit.group, "Scans")
        self.assertEqual(unit.source_url, "https://mangadex.org/chapter/chapter-1")
        self.assertEqual(unit.published_at, datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc))

    def test_get_details_orders_units_ascending(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/feed"):
                chapters = [_chapter(1), _chapter(3), _chapter(2), _chapter(9, chapter=None)]
                return httpx.Response(200, json={"data": chapters})
            return httpx.Response(200, json=_manga_payload())

        details = self._adapter(handler).get_details(MANGA_ID)

        self.assertEqual([unit.number for unit in details.units], ["0", "1", "2", "3"])
        self.assertEqual(details.units[-1].source_id, "chapter-3")

    def test_feed_failure_keeps_collected_units(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if not request.url.path.endswith("/feed"):
                return httpx.Response(200, json=_manga_payload())
            if request.url.params["offset"] == "0":
                return httpx.Response(200, json={"data": [_chapter(i) for i in range(1, FEED_PAGE_SIZE + 1)]})
            return httpx.Response(502)

        details = self._adapter(handler).get_details(MANGA_ID)

        self.assertEqual(len(details.units), FEED_PAGE_SIZE)

    def test_get_details_raises_on_missing_manga(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"result": "error", "data": None})

        with self.assertRaises(SourcePayloadError):
            self._adapter(handler).get_details(MANGA_ID)

    def test_search_maps_thumbnails_and_titles(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "data": [
                        _manga_payload()["data"],
                        {"id": "no-title", "attributes": {"title": {}}, "relationships": []},
                    ]
                },
            )

        results = self._adapter(handler).search("kingdom")

        self.assertEqual(self.requests[0].url.params["title"], "kingdom")
        self.assertEqual(self.requests[0].url.params["limit"], "20")
        self.assertEqual(results[0].title, "Kingdom")
        self.assertEqual(
            results[0].cover_image, f"https://uploads.mangadex.org/covers/{MANGA_ID}/cover.jpg.256.jpg"
        )
        self.assertEqual(results[1].title, "Unknown Title")
        self.assertIsNone(results[1].cover_image)

    def test_search_uses_configured_limit(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": []})

        self._adapter(handler, search_limit=5).search("kingdom")

        self.assertEqual(self.requests[0].url.params["limit"], "5")

    def test_list_operations_degrade_to_empty(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        adapter = self._adapter(handler)

        self.assertEqual(adapter.search("kingdom"), [])
        self.assertEqual(adapter.get_latest_units(MANGA_ID, 5), [])
        self.assertEqual(adapter.get_recent_updates(), [])

    def test_latest_units_are_returned_ascending(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            self.assertEqual(request.url.params["order[publishAt]"], "desc")
            return httpx.Response(200, json={"data": [_chapter(12), _chapter(11), _chapter(10)]})

        units = self._adapter(handler).get_latest_units(MANGA_ID, 3)

        self.assertEqual([unit.number for unit in units], ["10", "11", "12"])

    def test_localized_title_fallbacks(self) -> None:
        self.assertEqual(localized_title({"ja-ro": "Romaji", "ja": "日本語"}), "Romaji")
        self.assertEqual(localized_title({"ko": "제목"}), "제목")
        self.assertEqual(localized_title(None), "Unknown Title")


if __name__ == "__main__":
    unittest.main()
