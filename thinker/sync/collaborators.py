"""Confirmation and progress collaborators injected into the pipelines."""

import asyncio
import sys
from typing import Callable, Protocol, TextIO

import structlog

from thinker.sync.models import SyncProgress

log = structlog.stdlib.get_logger()


class ConfirmationProvider(Protocol):
    """Answers a yes/no question before destructive work."""

    def confirm(self, description: str) -> bool: ...


class ProgressObserver(Protocol):
    """Receives per-table counters at batch boundaries. Must return quickly."""

    def report(self, table: str, progress: SyncProgress) -> None: ...


class StaticConfirmation:
    """Always gives the same answer. Useful for --yes and tests."""

    def __init__(self, answer: bool):
        self.answer = answer
        self.questions: list[str] = []

    def confirm(self, description: str) -> bool:
        self.questions.append(description)
        return self.answer


class ConsoleConfirmation:
    """Asks on the terminal. Anything other than y/yes is a no."""

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output: TextIO | None = None,
    ):
        self._input = input_func
        self._output = output or sys.stderr

    def confirm(self, description: str) -> bool:
        print(description, file=self._output)
        try:
            answer = self._input("Continue? [y/N] ")
        except EOFError:
            return False
        return answer.strip().lower() in ("y", "yes")


class NullProgressObserver:
    """Discards progress reports (--no-progress)."""

    def report(self, table: str, progress: SyncProgress) -> None:
        pass


class LoggingProgressObserver:
    """Emits one structured log event per batch."""

    def report(self, table: str, progress: SyncProgress) -> None:
        log.info("table_progress", table=table, **progress.model_dump())


class DeleteGate:
    """Asks for delete confirmation at most once per invocation.

    Shared by every table of a run. The first table that needs to delete asks;
    every later table reuses the answer.
    """

    def __init__(self, provider: ConfirmationProvider, assume_yes: bool = False):
        self._provider = provider
        self._decision: bool | None = True if assume_yes else None
        self._lock = asyncio.Lock()

    @property
    def decided(self) -> bool:
        return self._decision is not None

    async def allowed(self, description: str) -> bool:
        """Return whether deletes may run, asking the provider on first use."""
        if self._decision is not None:
            return self._decision
        async with self._lock:
            if self._decision is None:
                # Interactive providers block on input; keep the loop free
                decision = await asyncio.to_thread(self._provider.confirm, description)
                self._decision = bool(decision)
                log.info("delete_confirmation", confirmed=self._decision)
        return self._decision
