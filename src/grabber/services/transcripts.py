"""
YouTube transcripts through yt-dlp subtitles
"""
import asyncio
import logging
import re
import shlex
import tempfile
from pathlib import Path
from typing import List, Optional

from grabber.processing.base import TranscriptFetcher
from grabber.processing.prefilter import extract_video_id

logger = logging.getLogger(__name__)

TIMESTAMP_LINE = re.compile(r"^\d{2}:\d{2}")
NUMERIC_LINE = re.compile(r"^[\d:.,\s-]+$")
TAG = re.compile(r"<[^>]+>")


def clean_vtt(vtt: str) -> str:
    """Strip WebVTT headers, cue timings, inline tags and repeated caption lines."""
    text_lines: List[str] = []
    last_line = ""

    for line in vtt.split("\n"):
        if line.startswith(("WEBVTT", "Kind:", "Language:")):
            continue
        if TIMESTAMP_LINE.match(line) or NUMERIC_LINE.match(line) or not line.strip():
            continue

        clean_line = TAG.sub("", line).strip()
        if clean_line and clean_line != last_line:
            text_lines.append(clean_line)
            last_line = clean_line

    return re.sub(r"\s+", " ", " ".join(text_lines)).strip()


class YoutubeTranscriptFetcher(TranscriptFetcher):
    def __init__(self, command: str = "yt-dlp", timeout: float = 90.0, language: str = "en"):
        self.command = shlex.split(command)
        self.timeout = timeout
        self.language = language

    async def fetch(self, url: str) -> Optional[str]:
        video_id = extract_video_id(url) or url

        with tempfile.TemporaryDirectory(prefix="grabber-yt-") as tmpdir:
            output = Path(tmpdir) / video_id
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                "--write-sub",
                "--write-auto-sub",
                "--sub-lang", self.language,
                "--skip-download",
                "-o", str(output),
                f"https://www.youtube.com/watch?v={video_id}",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                logger.warning(f"yt-dlp timed out after {self.timeout}s for {video_id}")
                return None

            if proc.returncode != 0:
                logger.warning(f"yt-dlp failed for {video_id}: {stderr.decode(errors='replace')[:300]}")
                return None

            subtitles = sorted(Path(tmpdir).glob(f"{video_id}*.vtt"))
            if not subtitles:
                logger.info(f"No {self.language} subtitles for {video_id}")
                return None

            transcript = clean_vtt(subtitles[0].read_text(encoding="utf-8", errors="replace"))

        return transcript or None
