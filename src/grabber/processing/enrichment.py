"""
Enrichment Router - fetches the extra context a triage decision asks for.
Every fetch is best effort: a failure only means less context.
"""
import asyncio
import logging
from typing import Awaitable, List, Optional, TypeVar

from grabber.core.entities import (
    ArticleContent,
    EnrichedContext,
    ImageDescription,
    ThreadPost,
    Transcript,
)
from grabber.core.schemas import PRIORITY_ORDER, ImageRequest, TriageDecision
from grabber.ingestion.base import Item, SourceClient
from grabber.processing.base import ArticleFetcher, ImageDescriber, TranscriptFetcher
from grabber.processing.prefilter import is_scrapable_url, is_youtube_url, unique

logger = logging.getLogger(__name__)

T = TypeVar("T")


def select_article_urls(triage: TriageDecision) -> List[str]:
    """
    Scrapable article URLs from the triage, highest priority first.
    """
    requests = sorted(triage.needs_article_scrape, key=lambda r: PRIORITY_ORDER[r.priority])
    return unique(r.url for r in requests if is_scrapable_url(r.url))


def select_transcript_urls(triage: TriageDecision) -> List[str]:
    return unique(r.url for r in triage.needs_transcript if is_youtube_url(r.url))


class EnrichmentRouter:
    def __init__(
        self,
        source: SourceClient,
        articles: Optional[ArticleFetcher] = None,
        transcripts: Optional[TranscriptFetcher] = None,
        images: Optional[ImageDescriber] = None,
    ):
        self.source = source
        self.articles = articles
        self.transcripts = transcripts
        self.images = images

    async def gather(self, item: Item, triage: TriageDecision) -> EnrichedContext:
        """
        Run all requested fetch groups concurrently and collect what succeeded.
        """
        articles, transcripts, images, thread = await asyncio.gather(
            self._fetch_articles(select_article_urls(triage)),
            self._fetch_transcripts(select_transcript_urls(triage)),
            self._describe_images(triage.needs_image_analysis),
            self._expand_thread(item, triage),
        )

        context = EnrichedContext(
            articles=articles,
            transcripts=transcripts,
            image_descriptions=images,
            thread_posts=thread,
        )
        if context.is_empty:
            logger.info(f"No extra context for {item.id}")
        else:
            logger.info(
                f"Enriched {item.id}: {len(articles)} article(s), {len(transcripts)} transcript(s), "
                f"{len(images)} image(s), {len(thread)} thread post(s)"
            )
        return context

    async def _settle(self, kind: str, urls: List[str], calls: List[Awaitable[Optional[T]]]) -> List[T]:
        results = await asyncio.gather(*calls, return_exceptions=True)
        collected: List[T] = []

        for url, result in zip(urls, results):
            if isinstance(result, BaseException):
                logger.warning(f"{kind} fetch failed for {url}: {result}")
                continue
            if result is None:
                logger.debug(f"{kind} fetch returned nothing for {url}")
                continue
            collected.append(result)

        return collected

    async def _fetch_articles(self, urls: List[str]) -> List[ArticleContent]:
        if not urls or self.articles is None:
            return []

        logger.info(f"Scraping {len(urls)} article(s)")
        return await self._settle("Article", urls, [self.articles.fetch(url) for url in urls])

    async def _fetch_transcripts(self, urls: List[str]) -> List[Transcript]:
        if not urls or self.transcripts is None:
            return []

        async def fetch(url: str) -> Optional[Transcript]:
            text = await self.transcripts.fetch(url)
            return Transcript(url=url, text=text) if text else None

        logger.info(f"Fetching {len(urls)} transcript(s)")
        return await self._settle("Transcript", urls, [fetch(url) for url in urls])

    async def _describe_images(self, requests: List[ImageRequest]) -> List[ImageDescription]:
        if not requests or self.images is None:
            return []

        async def describe(request: ImageRequest) -> Optional[ImageDescription]:
            description = await self.images.describe_image(request.url, request.expected_content)
            return ImageDescription(url=request.url, description=description) if description else None

        logger.info(f"Analyzing {len(requests)} image(s)")
        return await self._settle(
            "Image",
            [r.url for r in requests],
            [describe(r) for r in requests],
        )

    async def _expand_thread(self, item: Item, triage: TriageDecision) -> List[ThreadPost]:
        if not (triage.needs_thread_expansion or item.is_thread):
            return []

        try:
            thread = await self.source.fetch_thread(item.id)
        except Exception as e:
            logger.warning(f"Thread expansion failed for {item.id}: {e}")
            return []

        return [ThreadPost(id=t.id, text=t.text) for t in thread if t.id != item.id]
