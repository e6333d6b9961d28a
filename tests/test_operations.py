import io
import json
import unittest
from contextlib import redirect_stdout
from unittest.mock import patch

import httpx

from tracker import cli, operations
from tracker.config import RateLimitConfig, RetryConfig, TrackerConfig
from tracker.operations import OperationResult, open_service
from tracker.persistence import build_session_factory
from tracker.registry import build_adapters, get_source_definition, list_sources
from tracker.sources.mangadex import MangaDexAdapter
from tracker.sources.weebcentral import WeebCentralAdapter

MANGA_ID = "manga-1"


def _mangadex_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if request.url.host != "api.mangadex.org":
        return httpx.Response(503)
    if path == f"/manga/{MANGA_ID}":
        return httpx.Response(
            200,
            json={
                "data": {
                    "id": MANGA_ID,
                    "attributes": {"title": {"en": "Kingdom"}, "status": "ongoing"},
                    "relationships": [],
                }
            },
        )
    if path == f"/manga/{MANGA_ID}/feed":
        chapters = [
            {"id": f"c{number}", "attributes": {"chapter": number, "pages": 18}, "relationships": []}
            for number in ("1", "2")
        ]
        return httpx.Response(200, json={"data": chapters})
    if path == "/manga":
        return httpx.Response(
            200,
            json={"data": [{"id": MANGA_ID, "attributes": {"title": {"en": "Kingdom"}}, "relationships": []}]},
        )
    return httpx.Response(404)


class OperationsTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.config = TrackerConfig(
            db_url="sqlite://",
            retry=RetryConfig(max_retries=0),
            rate_limit=RateLimitConfig(default_delay=0.0, per_source_delay={"mangadex": 0.0, "weebcentral": 0.0}),
        )
        self.session_factory = build_session_factory("sqlite://")

    def _open(self):
        return open_service(
            self.config,
            session_factory=self.session_factory,
            transport=httpx.MockTransport(_mangadex_handler),
            sleep=lambda _: None,
        )

    def test_import_then_show(self) -> None:
        with self._open() as service:
            imported = operations.import_work(service, "mangadex", MANGA_ID)
            shown = operations.get_work_with_units(service, imported.data["id"])
            listed = operations.list_works(service)

        self.assertTrue(imported.success)
        self.assertEqual(imported.data["title"], "Kingdom")
        self.assertEqual(imported.data["latest_chapter"]["number"], "2")
        self.assertEqual(imported.data["sources"], [{"name": "mangadex", "id": MANGA_ID, "url": f"https://mangadex.org/title/{MANGA_ID}"}])
        self.assertEqual([chapter["number"] for chapter in shown.data["chapters"]], ["1", "2"])
        self.assertEqual(shown.data["chapters"][0]["pages"], 18)
        self.assertEqual(len(listed.data), 1)
        json.dumps(shown.to_dict())

    def test_search_single_and_all_sources(self) -> None:
        with self._open() as service:
            single = operations.search(service, "Kingdom", "mangadex")
            combined = operations.search(service, "Kingdom")

        self.assertEqual([item["source_id"] for item in single.data], [MANGA_ID])
        self.assertEqual(set(combined.data), {"mangadex", "weebcentral"})
        self.assertEqual(len(combined.data["mangadex"]), 1)
        self.assertEqual(combined.data["weebcentral"], [])

    def test_validation_and_status_mapping(self) -> None:
        with self._open() as service:
            missing_query = operations.search(service, "  ")
            bad_source = operations.import_work(service, "nope", "1")
            missing_args = operations.import_work(service, "mangadex", "")
            missing_sync_source = operations.sync(service, None)
            not_found = operations.update_work(service, "00000000-0000-0000-0000-000000000000")
            failed = operations.import_work(service, "mangadex", "does-not-exist")

        self.assertEqual((missing_query.status, missing_query.http_status), ("invalid", 400))
        self.assertEqual(bad_source.error, "Invalid source: nope")
        self.assertEqual(bad_source.data, {"available_sources": ["mangadex", "weebcentral"]})
        self.assertEqual(missing_args.status, "invalid")
        self.assertEqual(missing_sync_source.data["available_sources"], ["mangadex", "weebcentral"])
        self.assertEqual((not_found.status, not_found.http_status), ("not_found", 404))
        self.assertFalse(failed.success)
        self.assertEqual(failed.http_status, 500)
        self.assertEqual(failed.to_dict()["success"], False)

    def test_sync_reports_counts(self) -> None:
        with self._open() as service:
            result = operations.sync(service, "mangadex", 5)

        self.assertTrue(result.success)
        self.assertEqual(result.data["imported"], 1)
        self.assertEqual(result.data["failed"], 0)

    def test_list_sources(self) -> None:
        with self._open() as service:
            result = operations.list_sources(service)

        self.assertEqual(result.to_dict(), {"success": True, "data": ["mangadex", "weebcentral"]})

    def test_open_service_requires_database(self) -> None:
        with self.assertRaises(ValueError):
            with open_service(TrackerConfig()):
                pass


class RegistryTestCase(unittest.TestCase):
    def test_registry_lists_and_builds_adapters(self) -> None:
        config = TrackerConfig(rate_limit=RateLimitConfig(per_source_delay={"weebcentral": 2.5}), search_limit=7)
        fetcher = object()

        adapters = build_adapters(config, fetcher)

        self.assertEqual(list_sources(), ["mangadex", "weebcentral"])
        self.assertIsInstance(adapters["mangadex"], MangaDexAdapter)
        self.assertIsInstance(adapters["weebcentral"], WeebCentralAdapter)
        self.assertEqual(adapters["mangadex"].rate_limiter.delay, 0.25)
        self.assertEqual(adapters["weebcentral"].rate_limiter.delay, 2.5)
        self.assertIsNot(adapters["mangadex"].rate_limiter, adapters["weebcentral"].rate_limiter)
        self.assertEqual(adapters["mangadex"].search_limit, 7)
        self.assertEqual(adapters["weebcentral"].search_limit, 7)

    def test_unknown_source_definition(self) -> None:
        self.assertEqual(get_source_definition("MangaDex").slug, "mangadex")
        with self.assertRaises(KeyError):
            get_source_definition("elsewhere")


class CliTestCase(unittest.TestCase):
    def _run(self, *argv: str) -> tuple[int, dict]:
        buffer = io.StringIO()
        with patch.dict("os.environ", {}, clear=True), redirect_stdout(buffer):
            exit_code = cli.main(["--db-url", "sqlite://", *argv])
        return exit_code, json.loads(buffer.getvalue())

    def test_sources_command(self) -> None:
        exit_code, payload = self._run("sources")

        self.assertEqual(exit_code, 0)
        self.assertEqual(payload, {"success": True, "data": ["mangadex", "weebcentral"]})

    def test_show_unknown_work_fails(self) -> None:
        exit_code, payload = self._run("show", "not-a-uuid")

        self.assertEqual(exit_code, 1)
        self.assertFalse(payload["success"])
        self.assertIn("not found", payload["error"])

    def test_build_config_from_arguments(self) -> None:
        args = cli.build_arg_parser().parse_args(
            ["--db-url", "sqlite://", "--proxy", "127.0.0.1:8080", "--max-retries", "1", "list", "--limit", "5"]
        )
        with patch.dict("os.environ", {}, clear=True):
            config = cli.build_config(args)

        self.assertEqual(config.db_url, "sqlite://")
        self.assertEqual(config.proxy.httpx_proxy(), "http://127.0.0.1:8080")
        self.assertEqual(config.retry.max_retries, 1)
        self.assertEqual(args.limit, 5)

    def test_sync_limit_defaults_to_config(self) -> None:
        parser = cli.build_arg_parser()
        default_args = parser.parse_args(["sync", "mangadex"])
        explicit_args = parser.parse_args(["--search-limit", "3", "sync", "mangadex", "--limit", "4"])
        with patch.dict("os.environ", {"TRACKER_SYNC_LIMIT": "9"}, clear=True):
            cli.build_config(default_args)
            config = cli.build_config(explicit_args)

        self.assertEqual(default_args.limit, 9)
        self.assertEqual(explicit_args.limit, 4)
        self.assertEqual(config.search_limit, 3)
        with self.assertRaises(ValueError):
            cli.build_config(parser.parse_args(["sync", "mangadex", "--limit", "0"]))

    def test_missing_database_url_exits(self) -> None:
        with patch.dict("os.environ", {}, clear=True), redirect_stdout(io.StringIO()):
            with self.assertRaises(SystemExit):
                cli.main(["sources"])

    def test_run_command_dispatches(self) -> None:
        args = cli.build_arg_parser().parse_args(["search", "kingdom", "--source", "mangadex"])
        with patch.object(operations, "search", return_value=OperationResult.ok([])) as search:
            result = cli.run_command(args, service="service")

        search.assert_called_once_with("service", "kingdom", "mangadex")
        self.assertTrue(result.success)


if __name__ == "__main__":
    unittest.main()
