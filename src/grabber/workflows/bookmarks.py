# src/grabber/workflows/bookmarks.py
import asyncio
import logging
from typing import Any, Awaitable, Dict, Optional, Tuple

from grabber.core.entities import (
    EnrichedContext,
    ItemOutcome,
    PassResult,
    ProcessingStatus,
    RunState,
)
from grabber.core.errors import ErrorKind, GrabberError, classify_error
from grabber.core.schemas import DEFAULT_CATEGORY, AnalysisResult
from grabber.delivery.base import DestinationStore, Notifier
from grabber.ingestion.base import CredentialStatus, Item, SourceClient
from grabber.processing.base import AnalysisAgent
from grabber.processing.enrichment import EnrichmentRouter
from grabber.services.ledger import Ledger
from grabber.workflows.base import Pipeline

logger = logging.getLogger(__name__)

# Outcomes that never touched an upstream API
_SHORT_CIRCUITS = (ItemOutcome.ALREADY_HANDLED, ItemOutcome.CLAIMED_ELSEWHERE)


def apply_enrichment_evidence(analysis: AnalysisResult, context: EnrichedContext) -> AnalysisResult:
    """
    Content the router actually fetched overrides the model's content flags.
    """
    return analysis.model_copy(update={
        "has_article": analysis.has_article or bool(context.articles),
        "has_video": analysis.has_video or bool(context.transcripts),
        "has_thread": analysis.has_thread or bool(context.thread_posts),
        "article_content": context.articles[0].content if context.articles else analysis.article_content,
        "transcript": context.transcripts[0].text if context.transcripts else analysis.transcript,
        "image_analysis": [d.description for d in context.image_descriptions],
    })


class BookmarkPipeline(Pipeline):
    """
    Claim → triage → enrich → analyze → persist, one item at a time.

    The ledger is the source of truth: an item is claimed before any work,
    committed as completed on success and released as failed on any error,
    so a later pass retries it.
    """

    name = "bookmarks"

    def __init__(
        self,
        *,
        source: SourceClient,
        ledger: Ledger,
        agent: AnalysisAgent,
        router: EnrichmentRouter,
        notifier: Notifier,
        destination: Optional[DestinationStore] = None,
        state: Optional[RunState] = None,
        first_run_limit: int = 200,
        batch_limit: int = 20,
        item_delay: float = 0.5,
    ):
        self.source = source
        self.ledger = ledger
        self.agent = agent
        self.router = router
        self.notifier = notifier
        self.destination = destination
        self.state = state or RunState()
        self.first_run_limit = first_run_limit
        self.batch_limit = batch_limit
        self.item_delay = item_delay

    async def run_pass(self) -> PassResult:
        result = PassResult()

        if not self.state.credentials_valid and not await self.refresh_credentials():
            logger.info("Credentials still invalid, skipping pass")
            result.paused = True
            return result

        limit = self.first_run_limit if self.state.first_run else self.batch_limit
        logger.info(f"Fetching {limit} bookmarks...")

        try:
            items = await self.source.fetch_batch(limit)
        except Exception as e:
            await self.handle_error(e)
            result.paused = not self.state.credentials_valid
            return result

        self.state.first_run = False
        result.fetched = len(items)
        logger.info(f"Got {len(items)} bookmarks")

        for item in items:
            if self.state.stop_requested:
                logger.info("Stop requested, ending pass before next item")
                break
            if not self.state.credentials_valid:
                logger.warning("Credentials expired mid-pass, no further items will be claimed")
                result.paused = True
                break

            outcome = await self.process_item(item)
            result.record(item.id, outcome)

            if outcome not in _SHORT_CIRCUITS:
                await asyncio.sleep(self.item_delay)

        if result.completed or result.low_value or result.failed:
            logger.info(
                f"Pass done: completed={result.completed}, low_value={result.low_value}, "
                f"failed={result.failed}, skipped={result.skipped}"
            )
        return result

    async def process_item(self, item: Item) -> ItemOutcome:
        """
        Run one item through the full lifecycle.
        Only storage errors from the ledger escape; everything else fails the item.
        """
        if await self.ledger.is_handled(item.id):
            return ItemOutcome.ALREADY_HANDLED

        if not await self.ledger.try_claim(item.id):
            logger.info(f"Item {item.id} is claimed by another pass, skipping")
            return ItemOutcome.CLAIMED_ELSEWHERE

        logger.info(f"Processing: {item.id} by @{item.author_username}")

        try:
            return await self._process_claimed(item)
        except Exception as e:
            await self.ledger.release(item.id, ProcessingStatus.FAILED)
            await self.handle_error(e, item_id=item.id)
            return ItemOutcome.FAILED

    async def _process_claimed(self, item: Item) -> ItemOutcome:
        # Phase 1: triage decides what enrichment is needed
        triage = await self.agent.triage(item)

        if triage.should_skip:
            logger.info(f"Skipped {item.id}: {triage.skip_reason or 'low value'}")
            await self.ledger.commit(
                item.id,
                ProcessingStatus.COMPLETED,
                DEFAULT_CATEGORY,
                None,
                {
                    "item": item.model_dump(mode="json"),
                    "triage": triage.model_dump(mode="json"),
                    "skipped": True,
                },
            )
            return ItemOutcome.SKIPPED

        # Phase 2: enrichment
        context = await self.router.gather(item, triage)

        # Phase 3: final analysis
        analysis = apply_enrichment_evidence(await self.agent.analyze(item, triage, context), context)
        logger.info(f"Analysis {item.id}: {analysis.category} (score: {analysis.relevance_score})")

        destination_ref, already_present = await self._write_destination(item, analysis)

        payload: Dict[str, Any] = {
            "item": item.model_dump(mode="json"),
            "triage": triage.model_dump(mode="json"),
            "analysis": analysis.model_dump(mode="json"),
        }
        if already_present:
            payload["already_in_destination"] = True

        await self.ledger.commit(
            item.id,
            ProcessingStatus.COMPLETED,
            analysis.category,
            destination_ref,
            payload,
        )
        return ItemOutcome.COMPLETED

    async def _write_destination(self, item: Item, analysis: AnalysisResult) -> Tuple[Optional[str], bool]:
        """
        Mirror the analysis to the destination store.
        Returns (reference, already_present). Failures never fail the item.
        """
        if self.destination is None:
            return None, False

        try:
            if await self.destination.exists(item.id):
                logger.info(f"Item {item.id} already in {self.destination.name}, skipping write")
                return None, True

            ref = await self.destination.create(item, analysis)
            logger.info(f"Created {self.destination.name} record {ref} for {item.id}")
            return ref, False
        except Exception as e:
            logger.error(f"[{ErrorKind.DESTINATION_WRITE_FAILED.value}] {self.destination.name} sync failed for {item.id}: {e}")
            return None, False

    async def handle_error(self, exc: BaseException, item_id: Optional[str] = None) -> GrabberError:
        error = classify_error(exc)
        where = f" (item {item_id})" if item_id else ""
        logger.error(f"Error{where}: [{error.kind.value}] {error.message}")

        if error.kind is ErrorKind.CREDENTIALS_EXPIRED:
            await self.refresh_credentials()
            return error

        await self._notify(self.notifier.notify_error(error, item_id=item_id))
        return error

    async def refresh_credentials(self) -> bool:
        """
        Re-check the source credentials. Alerts once per transition into the invalid state.
        """
        try:
            status = await self.source.check_credentials()
        except Exception as e:
            logger.warning(f"Credential check failed: {e}")
            status = CredentialStatus(valid=False)

        was_valid = self.state.credentials_valid
        self.state.credentials_valid = status.valid

        if status.valid:
            if not was_valid:
                logger.info("Credentials restored, resuming processing")
            if status.identity:
                logger.info(f"Authenticated as @{status.identity}")
        elif was_valid:
            logger.error("Credentials invalid, processing paused until they are restored")
            await self._notify(self.notifier.notify_credentials_expired())

        return status.valid

    async def recover(self) -> int:
        return await self.ledger.recover_stale_claims()

    async def _notify(self, send: Awaitable[None]) -> None:
        try:
            await send
        except Exception as e:
            logger.error(f"[{ErrorKind.NOTIFIER.value}] Failed to send alert via {self.notifier.name}: {e}")
