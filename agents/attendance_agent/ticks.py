import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional


JobHandler = Callable[[], Awaitable[Any]]


@dataclass
class TickJob:
    name: str
    interval_seconds: float
    handler: JobHandler
    run_on_start: bool = False
    running: bool = field(default=False, init=False)
    runs: int = field(default=0, init=False)
    skipped: int = field(default=0, init=False)
    last_error: str = field(default="", init=False)


class TickSource:
    """Periodic trigger consumed by independent job handlers."""

    def register(self, name: str, interval_seconds: float, handler: JobHandler, *, run_on_start: bool = False) -> None:
        raise NotImplementedError

    async def start(self) -> None:
        raise NotImplementedError

    async def stop(self) -> None:
        raise NotImplementedError


class AsyncioTickSource(TickSource):
    """Runs every registered job on its own cadence inside the current event loop.

    A job whose previous invocation has not finished skips the tick instead of
    overlapping with itself.
    """

    def __init__(self, logger, *, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> None:
        self.logger = logger
        self._sleep = sleep
        self._jobs: Dict[str, TickJob] = {}
        self._tasks: List[asyncio.Task] = []
        self._inflight: Dict[str, asyncio.Task] = {}

    def register(self, name: str, interval_seconds: float, handler: JobHandler, *, run_on_start: bool = False) -> None:
        if name in self._jobs:
            raise RuntimeError(f"Job already registered: {name}")
        if interval_seconds <= 0:
            raise RuntimeError("interval_seconds must be positive")
        self._jobs[name] = TickJob(name=name, interval_seconds=float(interval_seconds), handler=handler, run_on_start=run_on_start)
        self.logger.info("Job registered: %s every %ss", name, interval_seconds)

    def jobs(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: {
                "interval_seconds": job.interval_seconds,
                "running": job.running,
                "runs": job.runs,
                "skipped": job.skipped,
                "last_error": job.last_error,
            }
            for name, job in self._jobs.items()
        }

    async def _invoke(self, job: TickJob) -> None:
        job.running = True
        try:
            await job.handler()
            job.last_error = ""
        except Exception as exc:
            job.last_error = str(exc)
            self.logger.exception("Job %s failed", job.name)
        finally:
            job.runs += 1
            job.running = False

    def fire(self, name: str) -> Optional[asyncio.Task]:
        """Start one invocation of a job unless it is still running from a previous tick."""
        job = self._jobs[name]
        if job.running:
            job.skipped += 1
            self.logger.warning("Job %s still running; tick skipped", name)
            return None
        # Mark before scheduling so a second fire() in the same loop turn is skipped too.
        job.running = True
        task = asyncio.get_running_loop().create_task(self._invoke(job))
        self._inflight[name] = task
        return task

    async def _loop(self, job: TickJob) -> None:
        if not job.run_on_start:
            await self._sleep(job.interval_seconds)
        while True:
            self.fire(job.name)
            await self._sleep(job.interval_seconds)

    async def start(self) -> None:
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        for job in self._jobs.values():
            self._tasks.append(loop.create_task(self._loop(job), name=f"tick:{job.name}"))
        self.logger.info("Tick source started with %s jobs", len(self._jobs))

    async def stop(self) -> None:
        tasks = self._tasks + list(self._inflight.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._inflight = {}
        for job in self._jobs.values():
            job.running = False
        self.logger.info("Tick source stopped")
