"""
Notion destination store - mirrors processed bookmarks into a Notion database
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from grabber.core.errors import ErrorKind, GrabberError
from grabber.core.schemas import AnalysisResult
from grabber.delivery.base import DestinationStore
from grabber.ingestion.base import Item

logger = logging.getLogger(__name__)

NOTION_API_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
DATABASE_TITLE = "Grabber Bookmarks"

CATEGORY_COLORS = {
    "review": "blue",
    "try": "green",
    "knowledge": "yellow",
    "podcast": "purple",
    "video": "red",
    "article": "orange",
    "tool": "pink",
    "project": "gray",
    "fun": "brown",
}

LINK_EMOJI = {"tool": "🛠️", "repo": "📦", "video": "🎬", "docs": "📚"}


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def _rich_text(content: str, limit: int = 2000) -> List[Dict[str, Any]]:
    return [{"type": "text", "text": {"content": truncate(content, limit)}}]


def _paragraph(content: str) -> Dict[str, Any]:
    return {"object": "block", "type": "paragraph", "paragraph": {"rich_text": _rich_text(content)}}


def _bullet(content: str, url: Optional[str] = None) -> Dict[str, Any]:
    text: Dict[str, Any] = {"content": truncate(content, 2000)}
    if url:
        text["link"] = {"url": url}
    return {
        "object": "block",
        "type": "bulleted_list_item",
        "bulleted_list_item": {"rich_text": [{"type": "text", "text": text}]},
    }


def score_visual(score: float) -> str:
    if score >= 9:
        return "🔥🔥🔥"
    if score >= 7:
        return "🔥🔥"
    if score >= 4:
        return "🔥"
    return ""


def database_schema() -> Dict[str, Any]:
    return {
        "Topic": {"title": {}},
        "Score": {"number": {}},
        "Author": {"rich_text": {}},
        "Category": {
            "select": {"options": [{"name": name, "color": color} for name, color in CATEGORY_COLORS.items()]}
        },
        "For You": {"rich_text": {}},
        "Priority": {
            "select": {
                "options": [
                    {"name": "now", "color": "red"},
                    {"name": "this-week", "color": "yellow"},
                    {"name": "someday", "color": "gray"},
                ]
            }
        },
        "Top Action": {"rich_text": {}},
        "Primary Link": {"url": {}},
        "Has Article": {"checkbox": {}},
        "Has Video": {"checkbox": {}},
        "Has Thread": {"checkbox": {}},
        "TL;DR": {"rich_text": {}},
        "Summary": {"rich_text": {}},
        "Tags": {"multi_select": {"options": []}},
        "Item URL": {"url": {}},
        "Processed At": {"date": {}},
    }


def page_properties(item: Item, analysis: AnalysisResult) -> Dict[str, Any]:
    priority = analysis.action_items[0].priority if analysis.action_items else "someday"
    return {
        "Topic": {"title": _rich_text(analysis.topic or analysis.tldr or analysis.summary, 50)},
        "Score": {"number": analysis.relevance_score},
        "Author": {"rich_text": _rich_text(f"@{item.author_username}")},
        "Category": {"select": {"name": analysis.category}},
        "For You": {"rich_text": _rich_text(analysis.for_you, 250)},
        "Priority": {"select": {"name": priority}},
        "Top Action": {"rich_text": _rich_text(analysis.top_action or "", 100)},
        "Primary Link": {"url": analysis.primary_link},
        "Has Article": {"checkbox": analysis.has_article},
        "Has Video": {"checkbox": analysis.has_video},
        "Has Thread": {"checkbox": analysis.has_thread},
        "TL;DR": {"rich_text": _rich_text(analysis.tldr, 280)},
        "Summary": {"rich_text": _rich_text(analysis.summary)},
        "Tags": {"multi_select": [{"name": tag[:100]} for tag in analysis.tags[:7]]},
        "Item URL": {"url": item.url},
        "Processed At": {"date": {"start": datetime.now(timezone.utc).isoformat()}},
    }


def page_blocks(item: Item, analysis: AnalysisResult) -> List[Dict[str, Any]]:
    blocks: List[Dict[str, Any]] = [
        _paragraph(
            f"{score_visual(analysis.relevance_score)} {analysis.relevance_score:g}/10 • "
            f"@{item.author_username} • {analysis.category}".strip()
        ),
        _paragraph(analysis.summary),
    ]
    if analysis.for_you:
        blocks.append(_paragraph(f"💡 {analysis.for_you}"))

    blocks.append({"object": "block", "type": "divider", "divider": {}})
    blocks.append({"object": "block", "type": "quote", "quote": {"rich_text": _rich_text(item.text)}})

    for image_url in item.images[:4]:
        blocks.append({"object": "block", "type": "image", "image": {"type": "external", "external": {"url": image_url}}})

    if analysis.primary_link:
        blocks.append(_bullet(f"🔗 {analysis.primary_link}", analysis.primary_link))

    for insight in analysis.key_insights[:5]:
        blocks.append(_bullet(insight))

    for link in analysis.extracted_links[:5]:
        blocks.append(_bullet(f"{LINK_EMOJI.get(link.type, '🔗')} {link.title or link.url}", link.url))

    extras = []
    if analysis.quotes:
        extras.append(("💎 Quotes", "\n\n".join(analysis.quotes)))
    if analysis.transcript:
        extras.append(("🎬 Transcript", analysis.transcript))
    if analysis.article_content:
        extras.append(("📄 Article", analysis.article_content))

    for label, content in extras:
        blocks.append({
            "object": "block",
            "type": "toggle",
            "toggle": {"rich_text": _rich_text(label), "children": [_paragraph(content)]},
        })

    return blocks


class NotionStore(DestinationStore):
    name = "notion"

    def __init__(
        self,
        token: str,
        parent_page_id: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.parent_page_id = parent_page_id
        self.database_id: Optional[str] = None
        self.client = httpx.AsyncClient(
            base_url=NOTION_API_URL,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {token}",
                "Notion-Version": NOTION_VERSION,
                "Content-Type": "application/json",
            },
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        resp = await self.client.request(method, path, **kwargs)
        resp.raise_for_status()
        return resp.json()

    async def ensure_database(self) -> str:
        if self.database_id:
            return self.database_id

        existing = await self._find_existing_database()
        if existing:
            self.database_id = existing
        else:
            self.database_id = await self._create_database()
            logger.info(f"Created Notion database {self.database_id}")
        return self.database_id

    async def _find_existing_database(self) -> Optional[str]:
        data = await self._request("GET", f"/blocks/{self.parent_page_id}/children", params={"page_size": 100})
        for block in data.get("results", []):
            if block.get("type") == "child_database" and block.get("child_database", {}).get("title") == DATABASE_TITLE:
                return block["id"]
        return None

    async def _create_database(self) -> str:
        try:
            data = await self._request("POST", "/databases", json={
                "parent": {"type": "page_id", "page_id": self.parent_page_id},
                "title": [{"type": "text", "text": {"content": DATABASE_TITLE}}],
                "properties": database_schema(),
            })
        except httpx.HTTPError as e:
            raise GrabberError(f"Failed to create Notion database: {e}", ErrorKind.DESTINATION_WRITE_FAILED) from e
        return data["id"]

    async def exists(self, item_id: str) -> bool:
        database_id = await self.ensure_database()
        data = await self._request("POST", f"/databases/{database_id}/query", json={
            "filter": {"property": "Item URL", "url": {"contains": item_id}},
            "page_size": 1,
        })
        return len(data.get("results", [])) > 0

    async def create(self, item: Item, analysis: AnalysisResult) -> str:
        database_id = await self.ensure_database()
        try:
            data = await self._request("POST", "/pages", json={
                "parent": {"database_id": database_id},
                "properties": page_properties(item, analysis),
                "children": page_blocks(item, analysis),
            })
        except httpx.HTTPError as e:
            raise GrabberError(f"Failed to create Notion page: {e}", ErrorKind.DESTINATION_WRITE_FAILED) from e
        return data["id"]

    async def close(self) -> None:
        await self.client.aclose()
