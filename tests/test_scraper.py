import asyncio
import json

import httpx
import pytest

from grabber.services.scraper import FirecrawlScraper, title_from_url


def test_scrape_returns_markdown_and_title():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"markdown": "# Hello", "metadata": {"title": "Hello post"}}})

    scraper = FirecrawlScraper("fc-key", transport=httpx.MockTransport(handler))
    article = asyncio.run(scraper.fetch("https://blog.example.com/hello"))

    assert article.title == "Hello post"
    assert article.content == "# Hello"
    assert seen["auth"] == "Bearer fc-key"
    assert seen["body"] == {"url": "https://blog.example.com/hello", "formats": ["markdown"]}


def test_scrape_without_markdown_returns_none():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"data": {}}))
    scraper = FirecrawlScraper("fc-key", transport=transport)

    assert asyncio.run(scraper.fetch("https://blog.example.com/empty")) is None


def test_scrape_without_key_is_skipped():
    assert asyncio.run(FirecrawlScraper(None).fetch("https://blog.example.com/x")) is None


def test_scrape_http_error_raises():
    transport = httpx.MockTransport(lambda request: httpx.Response(429))
    scraper = FirecrawlScraper("fc-key", transport=transport)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(scraper.fetch("https://blog.example.com/x"))


def test_title_from_url_falls_back_to_host():
    assert title_from_url("https://blog.example.com/") == "blog.example.com"
