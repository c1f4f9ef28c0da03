"""
Ingest bookmarks through the bird CLI
"""
import asyncio
import json
import logging
import re
import shlex
from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from grabber.core.errors import ErrorKind, GrabberError
from grabber.ingestion.base import CredentialStatus, Item, SourceClient

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"https?://[^\s]+")
HANDLE_PATTERN = re.compile(r"@(\w+)")


class BirdAuthor(BaseModel):
    username: str
    name: str = ""


class BirdMedia(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["photo", "video", "animated_gif"]
    url: str
    video_url: Optional[str] = Field(default=None, alias="videoUrl")


class BirdTweet(BaseModel):
    """
    Raw record as printed by `bird ... --json`.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str
    created_at: str = Field(default="", alias="createdAt")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    author: BirdAuthor
    media: List[BirdMedia] = []


def to_item(tweet: BirdTweet) -> Item:
    urls = URL_PATTERN.findall(tweet.text)
    images: List[str] = []

    for media in tweet.media:
        # Videos contribute their thumbnail as an image and the stream as a link
        images.append(media.url)
        if media.type != "photo" and media.video_url:
            urls.append(media.video_url)

    return Item(
        id=tweet.id,
        text=tweet.text,
        author_username=tweet.author.username,
        author_name=tweet.author.name,
        created_at=tweet.created_at,
        urls=urls,
        images=images,
        is_thread=bool(tweet.conversation_id) and tweet.conversation_id != tweet.id,
    )


def parse_records(payload: Any) -> List[Item]:
    """
    Validate CLI output record by record. Malformed records are dropped.
    """
    raw_records = payload if isinstance(payload, list) else [payload]
    items: List[Item] = []

    for raw in raw_records:
        try:
            items.append(to_item(BirdTweet.model_validate(raw)))
        except ValidationError as e:
            record_id = raw.get("id") if isinstance(raw, dict) else None
            logger.warning(f"[{ErrorKind.PARSE.value}] Skipping malformed record {record_id}: {e.error_count()} error(s)")

    return items


def classify_cli_failure(message: str) -> GrabberError:
    lowered = message.lower()

    if "rate limit" in lowered or "429" in lowered:
        return GrabberError("X rate limit hit", ErrorKind.RATE_LIMITED)

    if "unknown command" in lowered:
        return GrabberError(
            "bird command not available, update the bird CLI",
            ErrorKind.UNKNOWN,
            retryable=False,
        )

    if "auth" in lowered or "cookie" in lowered or "401" in lowered:
        return GrabberError("X credentials expired or invalid", ErrorKind.CREDENTIALS_EXPIRED)

    return GrabberError(f"bird CLI error: {message.strip()[:500]}", ErrorKind.NETWORK)


class BirdClient(SourceClient):
    def __init__(
        self,
        command: str = "bird",
        auth_token: Optional[str] = None,
        ct0: Optional[str] = None,
        timeout: float = 120.0,
    ):
        self.command = shlex.split(command)
        self.auth_token = auth_token
        self.ct0 = ct0
        self.timeout = timeout

    def _auth_args(self) -> List[str]:
        args: List[str] = []
        if self.auth_token:
            args.extend(["--auth-token", self.auth_token])
        if self.ct0:
            args.extend(["--ct0", self.ct0])
        return args

    async def _run(self, *args: str, timeout: Optional[float] = None) -> Tuple[str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                *args,
                *self._auth_args(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise GrabberError(f"bird CLI not found: {self.command[0]}", ErrorKind.UNKNOWN, retryable=False)

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout or self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise GrabberError(f"bird {args[0]} timed out after {timeout or self.timeout}s", ErrorKind.NETWORK)

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")

        if proc.returncode != 0:
            raise classify_cli_failure(err or out or f"exit code {proc.returncode}")

        return out, err

    async def fetch_batch(self, limit: int) -> List[Item]:
        stdout, stderr = await self._run("bookmarks", "-n", str(limit), "--json", "--plain")

        if "auth" in stderr.lower() and "expired" in stderr.lower():
            raise GrabberError("X credentials expired", ErrorKind.CREDENTIALS_EXPIRED)

        try:
            payload = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise GrabberError(f"bird returned invalid JSON: {e}", ErrorKind.NETWORK)

        items = parse_records(payload)
        logger.debug(f"Parsed {len(items)} bookmarks from bird output")
        return items

    async def fetch_thread(self, item_id: str) -> List[Item]:
        try:
            stdout, _ = await self._run("thread", item_id, "--json", "--plain", timeout=30.0)
            return parse_records(json.loads(stdout))
        except (GrabberError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to expand thread {item_id}: {e}")
            return []

    async def check_credentials(self) -> CredentialStatus:
        try:
            stdout, _ = await self._run("whoami", "--plain", timeout=30.0)
        except GrabberError as e:
            logger.warning(f"Credential check failed: {e}")
            return CredentialStatus(valid=False)

        # Output looks like "@username (Name)"
        match = HANDLE_PATTERN.search(stdout)
        return CredentialStatus(valid=True, identity=match.group(1) if match else None)
