import asyncio
import logging
import secrets
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from ..config import utcnow

logger = logging.getLogger(__name__)

Worker = Callable[[Dict[str, Any]], Awaitable[None]]


class JobNotReady(Exception):
    """Worker asks to be run again later; does not count as a retry"""

    def __init__(self, message: str, retry_at: Optional[datetime] = None):
        super().__init__(message)
        self.retry_at = retry_at


class PermanentJobError(Exception):
    """Worker failed in a way retrying cannot fix"""


@dataclass
class Job:
    id: str
    type: str
    data: Dict[str, Any]
    priority: int
    max_retries: int
    created_at: datetime
    process_at: datetime
    retries: int = 0
    key: Optional[str] = None
    last_error: Optional[str] = field(default=None, repr=False)


class JobQueue:
    """In-memory, interval-polled job queue.

    Fire-and-forget with bounded retries: jobs live only in this process,
    nothing is persisted, and a job may be lost on restart. Failed attempts
    are re-enqueued at now + 2**retries seconds until `max_retries`.
    """

    def __init__(self, poll_interval: float = 1.0, concurrency: int = 5,
                 clock: Callable[[], datetime] = utcnow):
        self.poll_interval = poll_interval
        self.concurrency = concurrency
        self._clock = clock
        self._workers: Dict[str, Worker] = {}
        self._jobs: Dict[str, Job] = {}
        self._processing: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False
        self.failed: Deque[Dict[str, Any]] = deque(maxlen=50)

    def register_worker(self, job_type: str, worker: Worker):
        self._workers[job_type] = worker
        logger.info(f"Worker registered for job type: {job_type}")

    def add_job(self, job_type: str, data: Dict[str, Any], priority: int = 0,
                delay: float = 0.0, max_retries: int = 3, key: Optional[str] = None) -> str:
        now = self._clock()
        process_at = now + timedelta(seconds=max(delay, 0))

        if key is not None:
            existing = self.find_by_key(key)
            if existing is not None:
                # one job per key; the earlier run time wins
                if process_at < existing.process_at:
                    existing.process_at = process_at
                return existing.id

        job = Job(
            id=f"{job_type}_{int(now.timestamp() * 1000)}_{secrets.token_hex(4)}",
            type=job_type,
            data=data,
            priority=priority,
            max_retries=max_retries,
            created_at=now,
            process_at=process_at,
            key=key,
        )
        self._jobs[job.id] = job
        logger.debug(f"Job added to queue: {job.id} (run at {job.process_at.isoformat()})")
        return job.id

    def find_by_key(self, key: str) -> Optional[Job]:
        for job in self._jobs.values():
            if job.key == key:
                return job
        return None

    def remove_by_key(self, key: str) -> bool:
        job = self.find_by_key(key)
        if job is None:
            return False
        self._jobs.pop(job.id, None)
        logger.info(f"Job {job.id} removed from queue")
        return True

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def _ready_jobs(self) -> List[Job]:
        now = self._clock()
        ready = [
            job for job in self._jobs.values()
            if job.id not in self._processing and job.process_at <= now
        ]
        # Higher priority first, then older jobs first
        ready.sort(key=lambda j: (-j.priority, j.created_at))
        return ready

    async def _process(self, job: Job):
        worker = self._workers.get(job.type)
        if worker is None:
            logger.error(f"No worker registered for job type: {job.type}")
            self._jobs.pop(job.id, None)
            self._processing.discard(job.id)
            return

        self._processing.add(job.id)
        try:
            await worker(job.data)
            self._jobs.pop(job.id, None)
            logger.info(f"Job {job.id} completed")
        except JobNotReady as e:
            job.process_at = e.retry_at or (self._clock() + timedelta(seconds=self.poll_interval))
            logger.info(f"Job {job.id} not ready ({e}), rescheduled for {job.process_at.isoformat()}")
        except PermanentJobError as e:
            self._fail(job, e)
        except Exception as e:
            job.retries += 1
            job.last_error = str(e)
            if job.retries >= job.max_retries:
                self._fail(job, e)
            else:
                delay = 2 ** job.retries
                job.process_at = self._clock() + timedelta(seconds=delay)
                logger.warning(f"Job {job.id} failed ({e}), retry {job.retries}/{job.max_retries} in {delay}s")
        finally:
            self._processing.discard(job.id)

    def _fail(self, job: Job, error: Exception):
        self._jobs.pop(job.id, None)
        self.failed.append({
            "id": job.id,
            "type": job.type,
            "data": job.data,
            "retries": job.retries,
            "error": str(error),
            "failed_at": self._clock().isoformat(),
        })
        logger.error(f"Job {job.id} permanently failed after {job.retries} retries: {error}")

    def dispatch(self) -> List[asyncio.Task]:
        """Start as many ready jobs as free slots allow"""
        free = self.concurrency - len(self._processing)
        started = []
        for job in self._ready_jobs()[:max(free, 0)]:
            # mark before the task runs so the next tick does not pick it again
            self._processing.add(job.id)
            task = asyncio.create_task(self._process(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(task)
        return started

    async def run_once(self) -> int:
        """Dispatch ready jobs and wait for them to finish"""
        tasks = self.dispatch()
        if tasks:
            await asyncio.gather(*tasks)
        return len(tasks)

    async def _loop(self):
        while self._running:
            try:
                self.dispatch()
            except Exception:
                logger.exception("Unexpected error dispatching jobs")
            await asyncio.sleep(self.poll_interval)

    def start(self):
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._loop())
        logger.info("Job queue started")

    async def stop(self):
        if not self._running:
            return
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Job queue stopped")

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        jobs = list(self._jobs.values())
        by_type: Dict[str, int] = {}
        for job in jobs:
            by_type[job.type] = by_type.get(job.type, 0) + 1
        return {
            "total": len(jobs),
            "processing": len(self._processing),
            "waiting": len([j for j in jobs if j.id not in self._processing and j.process_at <= now]),
            "scheduled": len([j for j in jobs if j.process_at > now]),
            "failed": len(self.failed),
            "by_type": by_type,
            "recent_failures": list(self.failed)[-10:],
        }
