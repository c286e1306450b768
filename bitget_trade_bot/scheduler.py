from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Tuple

log = logging.getLogger("scheduler")

Job = Callable[[], Awaitable[None]]


class Scheduler:
    """Owns one periodic asyncio task per job name.

    A job runs immediately, then every ``interval_s`` seconds measured from
    the start of the previous run. Runs never overlap for the same name.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Tuple[float, Job]] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def every(self, name: str, interval_s: float, job: Job) -> None:
        if interval_s <= 0:
            raise ValueError(f"interval must be > 0 for job {name}")
        self._jobs[name] = (float(interval_s), job)
        if self._running:
            self._restart(name)

    def jobs(self):
        return sorted(self._jobs)

    def start(self) -> None:
        self._running = True
        for name in self._jobs:
            self._restart(name)
        log.info("scheduler_started jobs=%s", self.jobs())

    def _restart(self, name: str) -> None:
        old = self._tasks.pop(name, None)
        if old is not None:
            old.cancel()
        interval_s, job = self._jobs[name]
        self._tasks[name] = asyncio.create_task(self._loop(name, interval_s, job), name=f"job:{name}")

    async def _loop(self, name: str, interval_s: float, job: Job) -> None:
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            try:
                await job()
            except Exception as e:
                log.exception("job_failed name=%s err=%s", name, e)
            delay = max(0.0, interval_s - (loop.time() - started))
            await asyncio.sleep(delay)

    async def stop(self) -> None:
        self._running = False
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        log.info("scheduler_stopped")
