"""Tests for the reference runner."""

import json

import httpx

from conftest import make_product, window_asos_page

from asos_harvester.config import HarvestConfig
from asos_harvester.main import HarvestRunner, JsonLinesWriter, proxy_url_from_config


def _serve(pages):
    def handler(request):
        page = int(request.url.params.get("page", "1"))
        if page not in pages:
            return httpx.Response(404)
        return httpx.Response(200, text=pages[page])

    return httpx.Client(transport=httpx.MockTransport(handler))


def _read(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_runner_follows_pagination(tmp_path):
    pages = {
        1: window_asos_page([make_product(1), make_product(2)], {"page": 1, "totalPages": 2}),
        2: window_asos_page([make_product(3), make_product(2)], {"page": 2, "totalPages": 2}),
    }
    output = tmp_path / "out.jsonl"
    runner = HarvestRunner(
        HarvestConfig(keyword="shirt", results_wanted=10),
        writer=JsonLinesWriter(output),
        client=_serve(pages),
        max_workers=2,
    )

    assert runner.run() == 3
    assert [record["id"] for record in _read(output)] == ["1", "2", "3"]


def test_runner_stops_at_target(tmp_path):
    pages = {n: window_asos_page([make_product(n * 10 + i) for i in range(3)], {"page": n, "totalPages": 5}) for n in range(1, 6)}
    output = tmp_path / "out.jsonl"
    runner = HarvestRunner(
        HarvestConfig(keyword="shirt", results_wanted=4),
        writer=JsonLinesWriter(output),
        client=_serve(pages),
        max_workers=1,
    )

    assert runner.run() == 4
    assert [record["id"] for record in _read(output)] == ["10", "11", "12", "20"]


def test_runner_survives_failed_requests(tmp_path):
    output = tmp_path / "out.jsonl"
    runner = HarvestRunner(
        HarvestConfig(startUrl="https://www.asos.com/men/cat/?cid=1&page=9", results_wanted=2),
        writer=JsonLinesWriter(output),
        client=_serve({}),
    )

    assert runner.run() == 0
    assert not output.exists()


def test_enqueue_skips_known_urls(tmp_path):
    runner = HarvestRunner(HarvestConfig(), writer=JsonLinesWriter(tmp_path / "x.jsonl"), client=_serve({}))
    runner.enqueue("https://www.asos.com/a", {"label": "LISTING"})
    runner.enqueue("https://www.asos.com/a", {"label": "LISTING"})
    assert len(runner._queue) == 1


def test_start_url():
    assert HarvestRunner(HarvestConfig(keyword="jeans")).start_url().endswith("/search/?q=jeans&page=1")
    start = "https://www.asos.com/women/dresses/cat/?cid=8799"
    assert HarvestRunner(HarvestConfig(startUrl=start)).start_url() == start


def test_proxy_url_from_config():
    assert proxy_url_from_config(None) is None
    assert proxy_url_from_config("http://proxy:8000") == "http://proxy:8000"
    assert proxy_url_from_config({"proxyUrls": ["http://p1:1", "http://p2:2"]}) == "http://p1:1"
    assert proxy_url_from_config({"useApifyProxy": True}) is None


def test_runner_replaces_failed_detail_page(tmp_path):
    listing = window_asos_page([make_product(1), make_product(2)], {"page": 1, "totalPages": 1})

    def handler(request):
        if request.url.path.endswith("/prd/1"):
            return httpx.Response(404)
        if request.url.path.endswith("/prd/2"):
            return httpx.Response(200, text="<html></html>")
        return httpx.Response(200, text=listing)

    output = tmp_path / "out.jsonl"
    runner = HarvestRunner(
        HarvestConfig(keyword="shirt", results_wanted=1, detailMode=True),
        writer=JsonLinesWriter(output),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        max_workers=1,
    )

    assert runner.run() == 1
    assert [record["id"] for record in _read(output)] == ["2"]
