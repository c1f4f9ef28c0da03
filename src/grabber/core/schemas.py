"""
Pydantic schemas for everything the model produces: triage decisions,
analysis results and digest drafts.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Category = Literal[
    "review",
    "try",
    "knowledge",
    "podcast",
    "video",
    "article",
    "tool",
    "project",
    "fun",
]

DEFAULT_CATEGORY: Category = "review"

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


class ArticleRequest(BaseModel):
    url: str
    reason: str = ""
    priority: Literal["high", "medium", "low"] = "medium"


class TranscriptRequest(BaseModel):
    url: str
    reason: str = ""


class ImageRequest(BaseModel):
    url: str
    expected_content: str = ""


class TriageDecision(BaseModel):
    """
    What extra context the pipeline should fetch before the final analysis.
    """
    needs_article_scrape: List[ArticleRequest] = []
    needs_transcript: List[TranscriptRequest] = []
    needs_image_analysis: List[ImageRequest] = []
    needs_thread_expansion: bool = False
    content_type: Literal[
        "tweet",
        "thread",
        "article_share",
        "video_share",
        "image_post",
        "tool_announcement",
        "discussion",
    ] = "tweet"
    estimated_value: Literal["high", "medium", "low", "skip"]
    skip_reason: Optional[str] = None

    @property
    def should_skip(self) -> bool:
        return self.estimated_value == "skip"


class ExtractedLink(BaseModel):
    url: str
    title: str = ""
    type: Literal["article", "tool", "repo", "video", "docs", "other"] = "other"
    description: str = ""


class ActionItem(BaseModel):
    action: str
    priority: Literal["now", "this-week", "someday"] = "someday"
    context: Optional[str] = None


class AnalysisResult(BaseModel):
    """
    Final structured judgment about one bookmark.
    """
    category: Category
    topic: str
    summary: str
    tldr: str = ""
    for_you: str = ""
    top_action: Optional[str] = None
    primary_link: Optional[str] = None
    has_article: bool = False
    has_video: bool = False
    has_thread: bool = False
    key_insights: List[str] = []
    quotes: List[str] = []
    extracted_links: List[ExtractedLink] = []
    tags: List[str] = []
    relevance_score: float = Field(..., ge=1, le=10)
    action_items: List[ActionItem] = []
    connections: List[str] = []

    # Filled from the enrichment results, never by the model
    article_content: Optional[str] = None
    transcript: Optional[str] = None
    image_analysis: List[str] = []


class TopPick(BaseModel):
    summary: str
    why: str = ""


class DigestDraft(BaseModel):
    digest: str
    patterns: List[str] = []
    recommendations: List[str] = []
    top_picks: List[TopPick] = []

    @field_validator("top_picks")
    @classmethod
    def _keep_top_three(cls, value: List[TopPick]) -> List[TopPick]:
        return value[:3]


class ImageAnalysis(BaseModel):
    description: str
    has_text: bool = False
    extracted_text: Optional[str] = None
    content_type: str = "other"
    key_elements: List[str] = []
