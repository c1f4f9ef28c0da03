import argparse
import asyncio
import logging
import os
import signal
import time

from grabber.delivery.base import Notifier
from grabber.delivery.file_delivery import FileNotifier
from grabber.delivery.notion_store import NotionStore
from grabber.delivery.telegram_delivery import TelegramNotifier
from grabber.ingestion.bird import BirdClient
from grabber.processing.agent import Agent
from grabber.processing.enrichment import EnrichmentRouter
from grabber.services.config import Config, load_config
from grabber.services.digest import DigestReporter
from grabber.services.ledger import Ledger
from grabber.services.llm import OllamaClient
from grabber.services.logging import setup_logging
from grabber.services.scheduler import CronSchedule, Scheduler
from grabber.services.scraper import FirecrawlScraper
from grabber.services.transcripts import YoutubeTranscriptFetcher
from grabber.workflows import BookmarkPipeline


def build_notifier(config: Config) -> Notifier:
    if config.TELEGRAM_ENABLED:
        return TelegramNotifier(
            bot_token=config.TELEGRAM_BOT_TOKEN,
            chat_id=config.TELEGRAM_CHAT_ID,
            min_interval=config.NOTIFY_MIN_INTERVAL_SECONDS,
        )
    return FileNotifier(output_dir=config.OUTPUT_DIR)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="grabber", description="Bookmark grabber service")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="run a single pass and exit")
    mode.add_argument("--digest", action="store_true", help="send the weekly digest now and exit")
    return parser.parse_args(argv)


async def main(argv=None) -> None:
    args = parse_args(argv)
    config = load_config()
    setup_logging(config.LOG_LEVEL)
    logger = logging.getLogger(__name__)

    logger.info("Starting bookmark grabber")

    # ----------------------------
    # Initialize shared services
    # ----------------------------
    db_dir = os.path.dirname(config.DATABASE_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    ledger = Ledger(config.DATABASE_PATH, claim_timeout=config.CLAIM_TIMEOUT_SECONDS)
    await ledger.init_tables()
    logger.info(f"Ledger ready: {await ledger.count()} records at {config.DATABASE_PATH}")

    llm = OllamaClient(
        base_url=config.OLLAMA_BASE_URL,
        model=config.OLLAMA_MODEL,
        vision_model=config.OLLAMA_VISION_MODEL,
        timeout=config.LLM_TIMEOUT_SECONDS,
    )
    if not await llm.health_check():
        logger.warning(f"Ollama not reachable at {config.OLLAMA_BASE_URL}, items will fail until it is")

    agent = Agent(llm, user_profile=config.USER_PROFILE)
    notifier = build_notifier(config)
    digest = DigestReporter(ledger, agent, notifier)

    if args.digest:
        await digest.send_weekly_digest()
        return

    source = BirdClient(
        command=config.BIRD_CMD,
        auth_token=config.TWITTER_AUTH_TOKEN,
        ct0=config.TWITTER_CT0,
        timeout=config.SOURCE_TIMEOUT_SECONDS,
    )
    router = EnrichmentRouter(
        source=source,
        articles=FirecrawlScraper(config.FIRECRAWL_API_KEY, timeout=config.SCRAPE_TIMEOUT_SECONDS),
        transcripts=YoutubeTranscriptFetcher(command=config.YT_DLP_CMD, timeout=config.TRANSCRIPT_TIMEOUT_SECONDS),
        images=agent,
    )

    destination = None
    if config.NOTION_ENABLED:
        destination = NotionStore(token=config.NOTION_TOKEN, parent_page_id=config.NOTION_PARENT_PAGE_ID)

    pipeline = BookmarkPipeline(
        source=source,
        ledger=ledger,
        agent=agent,
        router=router,
        notifier=notifier,
        destination=destination,
        first_run_limit=config.FIRST_RUN_LIMIT,
        batch_limit=config.BATCH_LIMIT,
        item_delay=config.ITEM_DELAY_SECONDS,
    )

    try:
        if args.once:
            start_time = time.perf_counter()
            await pipeline.recover()
            await pipeline.refresh_credentials()
            result = await pipeline.run_pass()
            logger.info(
                f"Single pass finished: fetched={result.fetched}, completed={result.completed}, "
                f"failed={result.failed} in {time.perf_counter() - start_time:.1f}s"
            )
            return

        scheduler = Scheduler(
            pipeline,
            digest=digest,
            poll_interval=config.POLL_INTERVAL_SECONDS,
            digest_schedule=CronSchedule.parse(config.DIGEST_CRON),
        )

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        await scheduler.start()
        await stop_event.wait()
        logger.info("Shutdown signal received")
        await scheduler.stop()
    finally:
        if destination is not None:
            await destination.close()

    logger.info("Bookmark grabber stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
