"""
Contains base class for pipelines
"""
from abc import ABC, abstractmethod

from grabber.core.entities import PassResult, RunState


class Pipeline(ABC):
    """
    Orchestrates ingestion → triage → enrichment → analysis → persistence
    for one batch of items.
    """

    name: str
    state: RunState

    @abstractmethod
    async def run_pass(self) -> PassResult:
        """
        Execute one pass over a fresh batch.
        Must never raise for a single item's failure.
        """
        raise NotImplementedError

    @abstractmethod
    async def refresh_credentials(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def recover(self) -> int:
        """
        Release work left in progress by a previous process.
        """
        raise NotImplementedError

    def request_stop(self) -> None:
        self.state.stop_requested = True
