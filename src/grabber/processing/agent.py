import logging
import re
from typing import List, Optional

from grabber.core.entities import EnrichedContext, WeeklyStats
from grabber.core.schemas import AnalysisResult, DigestDraft, ImageAnalysis, TriageDecision
from grabber.ingestion.base import Item
from grabber.processing.base import AnalysisAgent
from grabber.services.llm import OllamaClient

logger = logging.getLogger(__name__)

ARTICLE_CHAR_LIMIT = 8000
TRANSCRIPT_CHAR_LIMIT = 6000

DEFAULT_USER_PROFILE = """\
You are scoring content for a senior software engineer with these interests:
- AI/LLM integrations and coding agents
- Type safety, developer experience tools, performance optimization
- Clean architecture, refactoring patterns, backend and web stacks

HIGH relevance: AI tools, coding agents, tooling, performance tips, new dev tools
MEDIUM relevance: general programming wisdom, interesting tech, case studies
LOW relevance: non-technical content, marketing fluff, generic advice"""

CATEGORY_GUIDE = """\
Categories:
- review: read/review later (articles, threads)
- try: tools/products to try
- knowledge: info for the knowledge base
- podcast: audio content
- video: video content
- article: long-form articles
- tool: dev tools, libraries, repos
- project: ideas, inspiration, case studies
- fun: memes, entertainment, personal posts not relevant to dev work"""


def _extract_json(content: str) -> str:
    """
    Extract JSON from LLM response, stripping markdown code blocks if present.
    """
    content = content.strip()

    # Remove markdown code blocks (```json ... ``` or ``` ... ```)
    pattern = r'^```(?:json)?\s*\n?(.*?)\n?```$'
    match = re.match(pattern, content, re.DOTALL)
    if match:
        return match.group(1).strip()

    # Try to find a JSON object in the content
    object_match = re.search(r'\{.*\}', content, re.DOTALL)
    if object_match:
        return object_match.group(0)

    return content


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n\n[...truncated]"


def build_triage_prompt(item: Item) -> str:
    links = "\n".join(f"{i}. {url}" for i, url in enumerate(item.urls, start=1))
    sections = [
        "You are a bookmark triage agent. Decide what additional context must be fetched "
        "to properly understand and categorize this post.",
        f"POST by @{item.author_username} ({item.author_name}):\n{item.text}",
        f"LINKS FOUND:\n{links}" if item.urls else "No links found.",
    ]
    if item.images:
        sections.append("IMAGES:\n" + "\n".join(item.images))
    if item.is_thread:
        sections.append("NOTE: This appears to be part of a thread.")

    sections.append("""Return ONLY a JSON object with:
- needs_article_scrape: list of {"url", "reason", "priority": "high"|"medium"|"low"} for blogs, articles, docs
- needs_transcript: list of {"url", "reason"} for YouTube videos
- needs_image_analysis: list of {"url", "expected_content"} for images worth looking at
- needs_thread_expansion: true if the whole thread should be fetched
- content_type: "tweet"|"thread"|"article_share"|"video_share"|"image_post"|"tool_announcement"|"discussion"
- estimated_value: "high"|"medium"|"low"|"skip"
- skip_reason: why, when estimated_value is "skip"

Be strategic: only fetch what adds real value.
Skip low-effort reposts, memes without substance, or spam.

JSON object:""")
    return "\n\n".join(sections)


def build_analysis_prompt(
    item: Item,
    triage: TriageDecision,
    context: EnrichedContext,
    user_profile: str,
) -> str:
    sections = [
        f"## USER CONTEXT (for personalized scoring)\n{user_profile}",
        f"## ORIGINAL POST\n**@{item.author_username}** ({item.author_name})\n\n{item.text}\n\n"
        f"_Content type identified: {triage.content_type}_\n_Estimated value: {triage.estimated_value}_",
    ]

    if context.thread_posts:
        posts = "\n\n".join(f"[{i}] {post.text}" for i, post in enumerate(context.thread_posts, start=2))
        sections.append(f"## THREAD CONTINUATION ({len(context.thread_posts)} more posts)\n{posts}")

    if context.articles:
        articles = "\n\n---\n\n".join(
            f"### {a.title or a.url}\n{_truncate(a.content, ARTICLE_CHAR_LIMIT)}" for a in context.articles
        )
        sections.append(f"## ARTICLE CONTENT\n{articles}")

    if context.transcripts:
        transcripts = "\n\n---\n\n".join(
            f"### {t.url}\n{_truncate(t.text, TRANSCRIPT_CHAR_LIMIT)}" for t in context.transcripts
        )
        sections.append(f"## VIDEO TRANSCRIPTS\n{transcripts}")

    if context.image_descriptions:
        images = "\n\n".join(
            f"### Image {i}\n{d.description}" for i, d in enumerate(context.image_descriptions, start=1)
        )
        sections.append(f"## IMAGE ANALYSIS\n{images}")

    sections.append(f"""## YOUR TASK
Analyze all the content above. Use the USER CONTEXT to score relevance for THIS user.

Return ONLY a JSON object with:
- category: one of the categories below
- topic: short noun phrase, at most 50 characters
- summary: 2-3 sentences on WHY this matters
- tldr: post-length summary
- for_you: why THIS user should care, referencing their interests
- top_action: single most important action, as a verb phrase
- primary_link: the most actionable URL (repo > docs > article > video)
- has_article, has_video, has_thread: booleans
- key_insights: up to 5 takeaways
- quotes: notable verbatim quotes
- extracted_links: list of {{"url", "title", "type": "article"|"tool"|"repo"|"video"|"docs"|"other", "description"}}
- tags: up to 7 specific tags
- relevance_score: 1-10 (9-10 must act now, 7-8 very valuable, 4-6 interesting, 1-3 low value)
- action_items: list of {{"action", "priority": "now"|"this-week"|"someday", "context"}}
- connections: how this connects to other knowledge areas

{CATEGORY_GUIDE}

JSON object:""")

    return "\n\n---\n\n".join(sections)


def build_digest_prompt(stats: WeeklyStats) -> str:
    by_category = "\n".join(f"- {category}: {count}" for category, count in stats.by_category.items())
    tags = ", ".join(f"{t.tag} ({t.count})" for t in stats.top_tags) or "none"
    highlights = "\n".join(f"- [{h.category}] {h.summary}" for h in stats.highlights) or "- none"

    return f"""Generate a weekly digest for bookmarked content.

STATS:
- Total processed: {stats.total_processed}
{by_category}

TOP TAGS: {tags}

TOP HIGHLIGHTS:
{highlights}

Create an actionable weekly summary: themes, priorities, interest patterns, next actions.

Return ONLY a JSON object with:
- digest: the weekly digest in markdown
- patterns: list of patterns noticed
- recommendations: list of actionable recommendations
- top_picks: up to 3 {{"summary", "why"}} items to prioritize

JSON object:"""


def format_digest(draft: DigestDraft) -> str:
    parts = [f"# 📚 Weekly Bookmark Digest\n\n{draft.digest}"]

    if draft.top_picks:
        picks = "\n".join(f"- **{p.summary}**\n  _{p.why}_" for p in draft.top_picks)
        parts.append(f"## 🎯 Top Picks This Week\n{picks}")

    if draft.patterns:
        parts.append("## 📊 Patterns Noticed\n" + "\n".join(f"- {p}" for p in draft.patterns))

    if draft.recommendations:
        parts.append("## 💡 Recommendations\n" + "\n".join(f"- {r}" for r in draft.recommendations))

    return "\n\n".join(parts)


class Agent(AnalysisAgent):
    """
    Ollama-backed triage, analysis, vision and digest provider.
    """

    def __init__(self, llm: OllamaClient, user_profile: str = DEFAULT_USER_PROFILE):
        self.llm = llm
        self.user_profile = user_profile

    async def triage(self, item: Item) -> TriageDecision:
        response = await self.llm.evaluate(build_triage_prompt(item))
        triage = TriageDecision.model_validate_json(_extract_json(response["content"]))

        logger.info(
            f"Triage {item.id}: {triage.content_type}, value={triage.estimated_value} "
            f"(latency: {response['latency_ms']}ms)"
        )
        return triage

    async def analyze(
        self,
        item: Item,
        triage: TriageDecision,
        context: EnrichedContext,
    ) -> AnalysisResult:
        prompt = build_analysis_prompt(item, triage, context, self.user_profile)
        response = await self.llm.evaluate(prompt)
        logger.debug(f"Raw analysis response: {response['content'][:500]}...")

        return AnalysisResult.model_validate_json(_extract_json(response["content"]))

    async def describe_image(self, url: str, hint: str = "") -> Optional[str]:
        prompt = (
            "Analyze this image thoroughly. Extract all text, describe diagrams, identify key information."
        )
        if hint:
            prompt += f"\nExpected content: {hint}"
        prompt += (
            '\n\nReturn ONLY a JSON object with: description, has_text, extracted_text, '
            'content_type ("screenshot"|"diagram"|"photo"|"meme"|"chart"|"code"|"other"), key_elements.'
        )

        response = await self.llm.describe_image(url, prompt)
        analysis = ImageAnalysis.model_validate_json(_extract_json(response["content"]))

        parts: List[str] = [analysis.description]
        if analysis.extracted_text:
            parts.append(f"📝 Text: {analysis.extracted_text}")
        if analysis.key_elements:
            parts.append(f"🔑 Key elements: {', '.join(analysis.key_elements)}")

        text = "\n".join(p for p in parts if p).strip()
        return text or None

    async def write_digest(self, stats: WeeklyStats) -> str:
        response = await self.llm.evaluate(build_digest_prompt(stats))
        draft = DigestDraft.model_validate_json(_extract_json(response["content"]))
        return format_digest(draft)
