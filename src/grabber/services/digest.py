"""
Weekly digest - aggregates the last seven days of the ledger and sends a summary
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from grabber.core.entities import WeeklyStats
from grabber.delivery.base import Notifier
from grabber.processing.base import AnalysisAgent
from grabber.services.ledger import Ledger, utc_now

logger = logging.getLogger(__name__)

DIGEST_WINDOW = timedelta(days=7)


def render_stats_digest(stats: WeeklyStats) -> str:
    """Plain rendering of the weekly stats, used when the model is unavailable."""
    lines = [
        "# 📚 Weekly Bookmark Digest",
        "",
        f"**{stats.total_processed}** bookmarks processed this week.",
    ]

    if stats.by_category:
        lines += ["", "## By Category"]
        for category, count in sorted(stats.by_category.items(), key=lambda kv: kv[1], reverse=True):
            lines.append(f"- {category}: {count}")

    if stats.top_tags:
        lines += ["", "## Top Tags", ", ".join(f"{t.tag} ({t.count})" for t in stats.top_tags)]

    if stats.highlights:
        lines += ["", "## 🔥 Highlights"]
        for highlight in stats.highlights:
            lines.append(f"- [{highlight.category}] {highlight.summary}")

    return "\n".join(lines)


class DigestReporter:
    def __init__(self, ledger: Ledger, agent: AnalysisAgent, notifier: Notifier):
        self.ledger = ledger
        self.agent = agent
        self.notifier = notifier

    async def send_weekly_digest(self, now: Optional[datetime] = None) -> bool:
        """
        Build and send the digest. Returns False when there was nothing to report.
        """
        since = (now or utc_now()) - DIGEST_WINDOW
        stats = await self.ledger.weekly_stats(since)

        if stats.total_processed == 0:
            logger.info("No bookmarks processed this week, skipping digest")
            return False

        try:
            digest = await self.agent.write_digest(stats)
        except Exception as e:
            logger.warning(f"Digest generation failed, sending plain stats instead: {e}")
            digest = render_stats_digest(stats)

        await self.notifier.send_digest(digest)
        logger.info(f"Weekly digest sent via {self.notifier.name} ({stats.total_processed} bookmarks)")
        return True
