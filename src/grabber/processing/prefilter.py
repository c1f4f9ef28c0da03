import re
from typing import Iterable, List, Optional
from urllib.parse import urlparse

NON_ARTICLE_PATTERNS = [
    re.compile(r"youtube\.com"),
    re.compile(r"youtu\.be"),
    re.compile(r"twitter\.com"),
    re.compile(r"(^|[/.])x\.com"),
    re.compile(r"github\.com/.*/(blob|tree|commit)"),
    re.compile(r"\.(png|jpg|jpeg|gif|webp|svg|mp4|mp3|pdf)$", re.IGNORECASE),
]

YOUTUBE_PATTERN = re.compile(
    r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/shorts/)([a-zA-Z0-9_-]{11})"
)


def is_scrapable_url(url: str) -> bool:
    """Worth sending to the article scraper: not video, social, code-view or a binary file."""
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False

    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False

    target = f"{parsed.netloc.lower()}{parsed.path}"
    return not any(pattern.search(target) for pattern in NON_ARTICLE_PATTERNS)


def is_youtube_url(url: str) -> bool:
    return YOUTUBE_PATTERN.search(url) is not None


def extract_video_id(url: str) -> Optional[str]:
    match = YOUTUBE_PATTERN.search(url)
    return match.group(1) if match else None


def unique(urls: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for url in urls:
        if url in seen:
            continue
        seen.add(url)
        result.append(url)
    return result
