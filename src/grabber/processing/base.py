"""
Interfaces for the providers the pipeline calls while processing an item.
"""
from abc import ABC, abstractmethod
from typing import Optional

from grabber.core.entities import ArticleContent, EnrichedContext, WeeklyStats
from grabber.core.schemas import AnalysisResult, TriageDecision
from grabber.ingestion.base import Item


class ArticleFetcher(ABC):
    @abstractmethod
    async def fetch(self, url: str) -> Optional[ArticleContent]:
        """
        Return the article body, or None when nothing usable came back.
        """
        raise NotImplementedError


class TranscriptFetcher(ABC):
    @abstractmethod
    async def fetch(self, url: str) -> Optional[str]:
        raise NotImplementedError


class ImageDescriber(ABC):
    @abstractmethod
    async def describe_image(self, url: str, hint: str = "") -> Optional[str]:
        raise NotImplementedError


class AnalysisAgent(ImageDescriber):
    """
    The model-backed decision maker: triage before enrichment,
    analysis after it, and the weekly digest.
    """

    @abstractmethod
    async def triage(self, item: Item) -> TriageDecision:
        raise NotImplementedError

    @abstractmethod
    async def analyze(
        self,
        item: Item,
        triage: TriageDecision,
        context: EnrichedContext,
    ) -> AnalysisResult:
        raise NotImplementedError

    @abstractmethod
    async def write_digest(self, stats: WeeklyStats) -> str:
        """
        Render the weekly digest as markdown. Must raise on failure.
        """
        raise NotImplementedError
