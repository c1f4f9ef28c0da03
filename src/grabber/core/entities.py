from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class ProcessingStatus(str, Enum):
    """
    Lifecycle state of a ledger record.
    A missing record means the item is still unseen.
    """
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class LedgerRecord:
    """
    One row of the durable ledger.
    `status` is None for rows written before the lifecycle column existed.
    """
    item_id: str
    status: Optional[ProcessingStatus]
    processed_at: str
    category: str
    destination_ref: Optional[str]
    payload: str


@dataclass(frozen=True)
class ArticleContent:
    url: str
    title: str
    content: str


@dataclass(frozen=True)
class Transcript:
    url: str
    text: str


@dataclass(frozen=True)
class ImageDescription:
    url: str
    description: str


@dataclass(frozen=True)
class ThreadPost:
    id: str
    text: str


@dataclass
class EnrichedContext:
    """
    Extra context gathered for a single item. Never persisted.
    """
    articles: List[ArticleContent] = field(default_factory=list)
    transcripts: List[Transcript] = field(default_factory=list)
    image_descriptions: List[ImageDescription] = field(default_factory=list)
    thread_posts: List[ThreadPost] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.articles or self.transcripts or self.image_descriptions or self.thread_posts)


@dataclass(frozen=True)
class Highlight:
    item_id: str
    summary: str
    category: str


@dataclass(frozen=True)
class TagCount:
    tag: str
    count: int


@dataclass
class LedgerStats:
    total: int
    by_category: Dict[str, int] = field(default_factory=dict)


@dataclass
class WeeklyStats:
    total_processed: int
    by_category: Dict[str, int] = field(default_factory=dict)
    top_tags: List[TagCount] = field(default_factory=list)
    highlights: List[Highlight] = field(default_factory=list)


class ItemOutcome(str, Enum):
    ALREADY_HANDLED = "already_handled"
    CLAIMED_ELSEWHERE = "claimed_elsewhere"
    SKIPPED = "skipped"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PassResult:
    """
    Counters for one orchestrator pass over a batch.
    """
    fetched: int = 0
    completed: int = 0
    low_value: int = 0
    skipped: int = 0
    failed: int = 0
    paused: bool = False
    outcomes: Dict[str, ItemOutcome] = field(default_factory=dict)

    def record(self, item_id: str, outcome: ItemOutcome) -> None:
        self.outcomes[item_id] = outcome
        if outcome is ItemOutcome.COMPLETED:
            self.completed += 1
        elif outcome is ItemOutcome.SKIPPED:
            self.low_value += 1
        elif outcome is ItemOutcome.FAILED:
            self.failed += 1
        else:
            self.skipped += 1


@dataclass
class RunState:
    """
    Mutable flags shared between the scheduler and the pipeline.
    """
    pass_in_progress: bool = False
    credentials_valid: bool = True
    first_run: bool = True
    stop_requested: bool = False
