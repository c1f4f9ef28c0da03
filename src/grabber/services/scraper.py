"""
Article scraping through the Firecrawl REST API
"""
import logging
import re
from typing import Optional
from urllib.parse import urlparse

import httpx

from grabber.core.entities import ArticleContent
from grabber.processing.base import ArticleFetcher

logger = logging.getLogger(__name__)

FIRECRAWL_API_URL = "https://api.firecrawl.dev/v1"


def title_from_url(url: str) -> str:
    parsed = urlparse(url)
    segments = [s for s in parsed.path.split("/") if s]
    if segments:
        title = re.sub(r"\.\w+$", "", segments[-1]).replace("-", " ").replace("_", " ").strip()
        if title:
            return title
    return parsed.hostname or url


class FirecrawlScraper(ArticleFetcher):
    def __init__(
        self,
        api_key: Optional[str],
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def fetch(self, url: str) -> Optional[ArticleContent]:
        if not self.api_key:
            logger.warning("Firecrawl API key not configured, skipping scrape")
            return None

        async with httpx.AsyncClient(
            base_url=FIRECRAWL_API_URL,
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
        ) as client:
            resp = await client.post("/scrape", json={"url": url, "formats": ["markdown"]})
            resp.raise_for_status()
            data = resp.json().get("data") or {}

        markdown = data.get("markdown")
        if not markdown:
            logger.warning(f"Firecrawl returned no markdown for {url}")
            return None

        metadata = data.get("metadata") or {}
        return ArticleContent(
            url=url,
            title=metadata.get("title") or title_from_url(url),
            content=markdown,
        )
