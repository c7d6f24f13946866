from __future__ import annotations

import json

import httpx
import pytest
import respx
from httpx import Response

from recon import repository as repo
from recon.exceptions import SourceFetchError
from recon.fetch.client import SourceFetcher, html_to_text
from recon.notify import SOURCE_FAILED, SOURCE_MINED, SOURCE_UPDATE, TARGET_STATUS_UPDATED
from recon.stages.aggregator import StatusAggregator
from recon.stages.scrape import ScrapeStage

from conftest import FakeFetcher, seed_target

URL = "https://news.example.org/team"


class TestSourceFetcher:
    @respx.mock
    def test_html_normalized_and_truncated(self):
        html = "<html><head><title>x</title><script>var a=1;</script></head><body>" + (
            "<p>Jane Doe leads engineering.</p>" * 500
        ) + "</body></html>"
        route = respx.get(URL).mock(
            return_value=Response(200, text=html, headers={"content-type": "text/html"})
        )
        with SourceFetcher(max_content_chars=100) as fetcher:
            data = fetcher.fetch(URL)

        assert route.called
        assert "Chrome" in route.calls[0].request.headers["user-agent"]
        assert data["statusCode"] == 200
        assert data["contentType"] == "text/html"
        assert len(data["content"]) == 100
        assert data["content"].startswith("Jane Doe leads engineering.")
        assert "var a" not in data["content"]
        assert data["scrapedAt"].endswith("Z") or "+00:00" in data["scrapedAt"]

    @respx.mock
    def test_non_2xx_raises(self):
        respx.get(URL).mock(return_value=Response(404))
        with SourceFetcher() as fetcher, pytest.raises(SourceFetchError) as exc:
            fetcher.fetch(URL)
        assert "404" in str(exc.value)

    @respx.mock
    def test_timeout_raises(self):
        respx.get(URL).mock(side_effect=httpx.ConnectTimeout("slow"))
        with SourceFetcher() as fetcher, pytest.raises(SourceFetchError) as exc:
            fetcher.fetch(URL)
        assert "timeout" in str(exc.value)

    def test_malformed_url_raises_fetch_error(self):
        with SourceFetcher() as fetcher, pytest.raises(SourceFetchError):
            fetcher.fetch("https://exa mple.com/x\x00")

    def test_html_to_text_drops_scripts(self):
        assert html_to_text("<p>a</p><style>b{}</style><p>c</p>") == "a c"


class TestScrapeStage:
    def _stage(self, store, notifier, fetcher):
        return ScrapeStage(store, notifier, StatusAggregator(store, notifier), fetcher)

    def test_mined_source_advances_target(self, store, notifier):
        (sid,) = seed_target(store, "jane@acme.com", [URL])
        stage = self._stage(store, notifier, FakeFetcher())
        result = stage.handle(
            {"sourceId": sid, "sourceUrl": URL, "sourceDomain": "news.example.org"}
        )

        assert result["success"] is True
        row = repo.get_source(store, sid)
        assert row["status"] == "mined"
        assert json.loads(row["data"])["content"] == f"content of {URL}"
        assert repo.get_target(store, "jane@acme.com")["status"] == "enriched"
        assert notifier.names() == [
            SOURCE_UPDATE,
            TARGET_STATUS_UPDATED,
            SOURCE_MINED,
            SOURCE_UPDATE,
        ]

    def test_failed_fetch_settles_and_reraises(self, store, notifier):
        (sid,) = seed_target(store, "jane@acme.com", [URL])
        fetcher = FakeFetcher({URL: SourceFetchError("timeout after 10s fetching x")})
        stage = self._stage(store, notifier, fetcher)

        with pytest.raises(SourceFetchError):
            stage.handle({"sourceId": sid, "sourceUrl": URL})

        row = repo.get_source(store, sid)
        assert row["status"] == "failed"
        assert row["status_message"] == "Error: timeout after 10s fetching x"
        # failure still settles the source, so the target advances
        assert repo.get_target(store, "jane@acme.com")["status"] == "enriched"
        (failed,) = notifier.of(SOURCE_FAILED)
        assert failed == {"sourceId": sid, "targetEmail": "jane@acme.com", "status": "failed"}
        assert notifier.of(SOURCE_UPDATE)[-1]["status"] == "failed"

    def test_unexpected_fetcher_error_still_settles_source(self, store, notifier):
        (sid,) = seed_target(store, "jane@acme.com", [URL])
        stage = self._stage(store, notifier, FakeFetcher({URL: RuntimeError("parser blew up")}))

        with pytest.raises(RuntimeError):
            stage.handle({"sourceId": sid, "sourceUrl": URL})

        row = repo.get_source(store, sid)
        assert row["status"] == "failed"
        assert row["status_message"] == "Error: parser blew up"
        assert repo.get_target(store, "jane@acme.com")["status"] == "enriched"
        assert notifier.of(SOURCE_FAILED)[0]["targetEmail"] == "jane@acme.com"

    def test_malformed_source_url_settles_as_failed(self, store, notifier):
        bad_url = "https://exa mple.com/x\x00"
        (sid,) = seed_target(store, "a@acme.com", [bad_url])
        with SourceFetcher() as fetcher:
            stage = self._stage(store, notifier, fetcher)
            with pytest.raises(SourceFetchError):
                stage.handle({"sourceId": sid, "sourceUrl": bad_url})

        assert repo.get_source(store, sid)["status"] == "failed"
        assert repo.get_target(store, "a@acme.com")["status"] == "enriched"

    def test_one_failure_does_not_block_sibling_target(self, store, notifier):
        (bad,) = seed_target(store, "a@acme.com", ["https://bad.example/a"])
        (good,) = seed_target(store, "b@acme.com", ["https://good.example/b"])
        stage = self._stage(
            store, notifier, FakeFetcher({"https://bad.example/a": SourceFetchError("boom")})
        )
        with pytest.raises(SourceFetchError):
            stage.handle({"sourceId": bad, "sourceUrl": "https://bad.example/a"})
        stage.handle({"sourceId": good, "sourceUrl": "https://good.example/b"})

        assert repo.get_target(store, "a@acme.com")["status"] == "enriched"
        assert repo.get_target(store, "b@acme.com")["status"] == "enriched"

    def test_rescrape_of_mined_source_is_allowed(self, store, notifier):
        (sid,) = seed_target(store, "a@acme.com", [URL])
        stage = self._stage(store, notifier, FakeFetcher())
        stage.handle({"sourceId": sid, "sourceUrl": URL})
        stage.handle({"sourceId": sid, "sourceUrl": URL})

        assert repo.get_source(store, sid)["status"] == "mined"
        assert len(notifier.of(TARGET_STATUS_UPDATED)) == 1
