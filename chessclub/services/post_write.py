"""
Post-write side effects.

Cache invalidation after a ledger write, auxiliary-table updates during a
merge and audit logging are modelled as lists of independent tasks. Each
task runs on its own; a failing task is logged and never reaches the
caller whose write triggered it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PostWriteTask:
    """A named, zero-argument coroutine factory."""
    name: str
    run: Callable[[], Awaitable[object]]


@dataclass
class PostWriteOutcome:
    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class PostWriteRunner:
    """Runs post-write task lists inline or in the background."""
    
    def __init__(self):
        # Background task tracking for proper lifecycle management
        self._background_tasks: set = set()
    
    async def run(self, tasks: Sequence[PostWriteTask]) -> PostWriteOutcome:
        """Run every task in order, isolating failures from each other and from the caller."""
        outcome = PostWriteOutcome()
        for task in tasks:
            try:
                await task.run()
                outcome.completed.append(task.name)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Post-write task '{task.name}' failed: {e}")
                outcome.failed.append(task.name)
        return outcome
    
    def dispatch(self, tasks: Sequence[PostWriteTask]) -> "asyncio.Task":
        """Schedule ``tasks`` without waiting for them."""
        task = asyncio.create_task(self.run(list(tasks)))
        self._background_tasks.add(task)
        # Remove task from set when it completes to prevent memory leaks
        task.add_done_callback(self._background_tasks.discard)
        return task
    
    @property
    def pending(self) -> int:
        return len(self._background_tasks)
    
    async def drain(self):
        """Wait for every dispatched task list to finish."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
    
    async def cleanup(self):
        """Cancel background tasks for graceful shutdown."""
        if self._background_tasks:
            logger.info(f"Cancelling {len(self._background_tasks)} post-write task(s)...")
            for task in self._background_tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
            self._background_tasks.clear()
            logger.info("All post-write tasks cleaned up.")
