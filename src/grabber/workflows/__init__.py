"""
Workflows module - Pipeline orchestration for bookmark processing.
"""
from grabber.workflows.base import Pipeline
from grabber.workflows.bookmarks import BookmarkPipeline, apply_enrichment_evidence

__all__ = [
    "Pipeline",
    "BookmarkPipeline",
    "apply_enrichment_evidence",
]
