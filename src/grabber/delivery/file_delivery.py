"""
File notifier - appends alerts and digests to a local log when Telegram is disabled
"""
from datetime import datetime, timezone
from pathlib import Path

from grabber.delivery.base import Notifier


class FileNotifier(Notifier):
    name = "file"

    def __init__(self, output_dir: str = "output", filename: str = "notifications.md", min_interval: float = 0.0):
        super().__init__(min_interval=min_interval)
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.output_dir / filename

    async def _deliver(self, text: str, *, markdown: bool) -> None:
        stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(f"<!-- {stamp} -->\n{text}\n\n")
