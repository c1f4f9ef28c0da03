"""
Base classes for Ingestion
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class Item(BaseModel):
    """
    One bookmarked post, immutable once fetched from the source.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    author_username: str
    author_name: str = ""
    created_at: str = ""
    urls: List[str] = []
    images: List[str] = []
    is_thread: bool = False

    @property
    def url(self) -> str:
        return f"https://x.com/{self.author_username}/status/{self.id}"


@dataclass(frozen=True)
class CredentialStatus:
    valid: bool
    identity: Optional[str] = None


class SourceClient(ABC):
    """
    Base interface for the bookmark source.
    Every method may raise GrabberError(CREDENTIALS_EXPIRED).
    """

    @abstractmethod
    async def fetch_batch(self, limit: int) -> List[Item]:
        """
        Fetch up to `limit` bookmarks. Already-seen items may be returned again;
        deduplication is the ledger's job.
        """
        raise NotImplementedError

    @abstractmethod
    async def fetch_thread(self, item_id: str) -> List[Item]:
        raise NotImplementedError

    @abstractmethod
    async def check_credentials(self) -> CredentialStatus:
        raise NotImplementedError
