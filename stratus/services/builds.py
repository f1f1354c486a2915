"""Build registry — tracks in-flight deployment uploads per remote name.

Owned by the application (``app.state.builds``) rather than living in a
module global. Starting a build for a name that still has one running
cancels the old one first.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)

BUILD_RUNNING = "running"
BUILD_SUCCEEDED = "succeeded"
BUILD_FAILED = "failed"
BUILD_CANCELLED = "cancelled"


@dataclass
class BuildRecord:
    remote_name: str
    task: asyncio.Task
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    state: str = BUILD_RUNNING
    output: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "output": self.output,
        }


class BuildRegistry:
    def __init__(self) -> None:
        self._builds: dict[str, BuildRecord] = {}

    def start(self, remote_name: str, coro: Coroutine[Any, Any, Any]) -> BuildRecord:
        """Run *coro* as the current build for *remote_name*."""
        previous = self._builds.get(remote_name)
        if previous is not None and previous.state == BUILD_RUNNING:
            logger.info("Cancelling previous build for %s", remote_name)
            previous.task.cancel()

        record = BuildRecord(remote_name=remote_name, task=asyncio.ensure_future(coro))
        record.task.add_done_callback(lambda task: self._finish(record, task))
        self._builds[remote_name] = record
        return record

    def _finish(self, record: BuildRecord, task: asyncio.Task) -> None:
        record.finished_at = datetime.now(timezone.utc)
        if task.cancelled():
            record.state = BUILD_CANCELLED
        elif task.exception() is not None:
            record.state = BUILD_FAILED
            record.output = str(task.exception())
        else:
            record.state = BUILD_SUCCEEDED
            record.output = str(task.result())
        logger.info("Build for %s finished: %s", record.remote_name, record.state)

    def get(self, remote_name: str) -> Optional[BuildRecord]:
        return self._builds.get(remote_name)

    def cleanup(self, remote_name: str) -> None:
        """Cancel (if running) and forget the build for *remote_name*."""
        record = self._builds.pop(remote_name, None)
        if record is not None and record.state == BUILD_RUNNING:
            record.task.cancel()

    async def shutdown(self) -> None:
        running = [r.task for r in self._builds.values() if r.state == BUILD_RUNNING]
        for task in running:
            task.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        self._builds.clear()

    def __len__(self) -> int:
        return len(self._builds)
