"""
Generation job tracking.

Each generation request (single image, batch images, single video, batch
videos, sound effect, voiceover script/audio, music) becomes a GenerationJob
keyed by a stable job key. A job owns:
- the submission request, sent once
- a polling task that re-fetches the project every interval and probes each
  outstanding item until it completes, fails, or the poll ceiling is reached
- a future resolved with a JobResult when the job reaches a terminal state

Re-submitting a key whose job is still active is a no-op.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import structlog
from pydantic import BaseModel, Field

from ambient_studio.config import settings
from ambient_studio.pipeline.error_handler import ErrorCode, GenerationFailure

logger = structlog.get_logger(__name__)


class JobStatus:
    """Constants for generation job states"""
    IDLE = "idle"
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"

    ACTIVE = (SUBMITTED, POLLING)
    TERMINAL = (COMPLETED, FAILED)


class ItemStatus:
    """Constants for what a probe observes about one item"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class JobKind:
    """Constants for generation job kinds"""
    IMAGE = "image"
    BATCH_IMAGES = "batch-images"
    VIDEO = "video"
    BATCH_VIDEOS = "batch-videos"
    SOUND_EFFECT = "sfx"
    VOICEOVER_SCRIPT = "voiceover-script"
    VOICEOVER_AUDIO = "voiceover-audio"
    MUSIC = "music"

    @staticmethod
    def key(kind: str, item_id: Optional[str] = None) -> str:
        """Job key: one per kind for batch and project-wide jobs, one per shot otherwise."""
        return f"{kind}:{item_id}" if item_id else kind


class JobResult(BaseModel):
    """Typed completion value delivered through a job's future"""
    key: str
    kind: str
    status: str
    total: int
    completed: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    outstanding: List[str] = Field(default_factory=list)
    timed_out: bool = False
    response: Any = None
    error: Optional[str] = None


# probe(project, item_id) -> ItemStatus
Probe = Callable[[Any, str], str]
ItemCallback = Callable[[str, str, Any], None]
ResponseCallback = Callable[["GenerationJob", Any], None]


class GenerationJob:
    """
    One tracked generation job.

    Items are shot ids for shot-scoped jobs, or the job key itself for
    project-wide jobs (voiceover, music).
    """

    def __init__(self, kind: str, key: str, item_ids: Iterable[str], probe: Probe, on_item: ItemCallback = None):
        self.kind = kind
        self.key = key
        self.item_ids = list(dict.fromkeys(item_ids))
        self.outstanding = set(self.item_ids)
        self.completed: List[str] = []
        self.failed: List[str] = []
        self.probe = probe
        self.on_item = on_item
        self.status = JobStatus.IDLE
        self.response: Any = None
        self.error: Optional[str] = None
        self.timed_out = False
        self.started_at: Optional[float] = None
        self.task: Optional[asyncio.Task] = None
        self.future: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def total(self) -> int:
        return len(self.item_ids)

    @property
    def failure_code(self) -> ErrorCode:
        if self.kind in (JobKind.IMAGE, JobKind.BATCH_IMAGES):
            return ErrorCode.IMAGE_GENERATION_FAILED
        if self.kind in (JobKind.VIDEO, JobKind.BATCH_VIDEOS):
            return ErrorCode.VIDEO_GENERATION_FAILED
        return ErrorCode.AUDIO_GENERATION_FAILED

    @property
    def progress(self) -> str:
        """UI-facing progress label, e.g. "3 of 5"."""
        return f"{len(self.completed)} of {self.total}"

    @property
    def is_active(self) -> bool:
        return self.status in JobStatus.ACTIVE and self.task is not None and not self.task.done()

    def observe(self, item_id: str, status: str, project: Any = None) -> bool:
        """
        Record a probe observation for one item.

        Returns:
            True if the item left the outstanding set
        """
        if item_id not in self.outstanding or status == ItemStatus.PENDING:
            return False
        self.outstanding.discard(item_id)
        if status == ItemStatus.COMPLETED:
            self.completed.append(item_id)
        else:
            self.failed.append(item_id)
        if self.on_item is not None:
            self.on_item(item_id, status, project)
        return True

    def result(self) -> JobResult:
        return JobResult(
            key=self.key,
            kind=self.kind,
            status=self.status,
            total=self.total,
            completed=list(self.completed),
            failed=list(self.failed),
            outstanding=sorted(self.outstanding, key=self.item_ids.index),
            timed_out=self.timed_out,
            response=self.response,
            error=self.error,
        )

    def resolve(self) -> None:
        if not self.future.done():
            self.future.set_result(self.result())


class GenerationJobTracker:
    """
    Tracks outstanding generation jobs and polls for their completion.

    Usage:
        tracker = GenerationJobTracker(fetch_project=load_snapshots)
        job = await tracker.submit(
            JobKind.BATCH_IMAGES,
            "batch-images",
            shot_ids,
            request=lambda: client.generate_all_images(video_id),
            probe=image_ready,
        )
        result = await job.future
    """

    def __init__(
        self,
        fetch_project: Callable[[], Awaitable[Any]],
        poll_interval: float = None,
        poll_timeout: float = None,
    ):
        """
        Args:
            fetch_project: Coroutine returning the latest persisted project state
            poll_interval: Seconds between polls (default: JOB_POLL_INTERVAL)
            poll_timeout: Poll ceiling in seconds (default: JOB_POLL_TIMEOUT)
        """
        self.fetch_project = fetch_project
        self.poll_interval = poll_interval or settings.JOB_POLL_INTERVAL
        self.poll_timeout = poll_timeout or settings.JOB_POLL_TIMEOUT
        self.jobs: Dict[str, GenerationJob] = {}

    def get(self, key: str) -> Optional[GenerationJob]:
        return self.jobs.get(key)

    def is_active(self, key: str) -> bool:
        job = self.jobs.get(key)
        return job is not None and job.is_active

    def outstanding(self, key: str) -> List[str]:
        job = self.jobs.get(key)
        if job is None:
            return []
        return sorted(job.outstanding, key=job.item_ids.index)

    async def submit(
        self,
        kind: str,
        key: str,
        item_ids: Iterable[str],
        request: Callable[[], Awaitable[Any]],
        probe: Probe,
        on_item: ItemCallback = None,
        on_response: ResponseCallback = None,
    ) -> GenerationJob:
        """
        Submit a job and start tracking it.

        The request is sent in the background while the project is polled, so
        batch items are observed as soon as their artifacts are persisted.

        Args:
            kind: JobKind constant
            key: Idempotency key (see JobKind.key)
            item_ids: Items whose completion is tracked
            request: Coroutine factory sending the submission
            probe: Classifies one item against a fetched project
            on_item: Called when an item completes or fails
            on_response: Called with the job and the submission response

        Returns:
            The tracked job; the existing one when the key is already active
        """
        existing = self.jobs.get(key)
        if existing is not None and existing.is_active:
            logger.info("job_submit_ignored", job_key=key, status=existing.status)
            return existing

        job = GenerationJob(kind, key, item_ids, probe, on_item)
        self.jobs[key] = job
        job.status = JobStatus.SUBMITTED
        job.started_at = time.monotonic()
        logger.info("job_submitted", job_key=key, kind=kind, total=job.total)

        job.task = asyncio.create_task(self._run(job, request, on_response))
        return job

    async def _run(
        self,
        job: GenerationJob,
        request: Callable[[], Awaitable[Any]],
        on_response: Optional[ResponseCallback],
    ) -> None:
        log = logger.bind(job_key=job.key)
        request_task = asyncio.ensure_future(request())
        job.status = JobStatus.POLLING
        try:
            while True:
                if not request_task.done():
                    await asyncio.wait({request_task}, timeout=self.poll_interval)
                    if request_task.done():
                        if not self._handle_response(job, request_task, on_response):
                            return
                else:
                    await asyncio.sleep(self.poll_interval)

                if not job.outstanding:
                    break
                if time.monotonic() - job.started_at >= self.poll_timeout:
                    # Job keeps its last observed state
                    job.timed_out = True
                    log.warning(
                        "job_poll_ceiling_reached",
                        progress=job.progress,
                        outstanding=len(job.outstanding),
                    )
                    request_task.cancel()
                    job.resolve()
                    return
                await self.poll_once(job)
                if not job.outstanding:
                    break

            if not request_task.done():
                await request_task
                if not self._handle_response(job, request_task, on_response):
                    return
            if job.status not in JobStatus.TERMINAL:
                self._finish(job)
        except asyncio.CancelledError:
            request_task.cancel()
            raise
        except Exception as e:
            request_task.cancel()
            job.status = JobStatus.FAILED
            job.error = str(e)
            log.error(
                "job_failed",
                error=str(e),
                error_type=type(e).__name__,
                progress=job.progress,
            )
            job.resolve()

    def _handle_response(
        self,
        job: GenerationJob,
        request_task: asyncio.Future,
        on_response: Optional[ResponseCallback],
    ) -> bool:
        """
        Record the submission outcome.

        Returns:
            False when the submission failed and the job was closed
        """
        error = request_task.exception()
        if error is not None:
            job.status = JobStatus.FAILED
            job.error = str(error)
            logger.error(
                "job_submission_failed",
                job_key=job.key,
                error=str(error),
                error_type=type(error).__name__,
            )
            for item_id in sorted(job.outstanding, key=job.item_ids.index):
                job.observe(item_id, ItemStatus.FAILED)
            job.resolve()
            return False

        job.response = request_task.result()
        logger.info("job_response_received", job_key=job.key)
        if on_response is not None:
            on_response(job, job.response)
        return True

    async def poll_once(self, job: GenerationJob) -> int:
        """
        Run one poll cycle: fetch the project and probe every outstanding item.

        Returns:
            Number of items that left the outstanding set
        """
        log = logger.bind(job_key=job.key)
        try:
            project = await self.fetch_project()
        except Exception as e:
            # At-least-once polling: the next cycle retries
            log.warning("job_poll_fetch_failed", error=str(e))
            return 0

        observed = 0
        for item_id in sorted(job.outstanding, key=job.item_ids.index):
            if job.observe(item_id, job.probe(project, item_id), project):
                observed += 1
        if observed:
            log.info("job_progress", progress=job.progress, outstanding=len(job.outstanding))
        return observed

    def _finish(self, job: GenerationJob) -> None:
        if job.item_ids and len(job.failed) == job.total:
            job.status = JobStatus.FAILED
            job.error = job.error or "All items failed"
        else:
            job.status = JobStatus.COMPLETED
        logger.info(
            "job_finished",
            job_key=job.key,
            status=job.status,
            completed=len(job.completed),
            failed=len(job.failed),
        )
        job.resolve()

    async def wait(self, job: GenerationJob) -> JobResult:
        """
        Wait for a job's result.

        Raises:
            GenerationFailure: If the job failed
        """
        result = await asyncio.shield(job.future)
        if result.status == JobStatus.FAILED:
            raise GenerationFailure(job.key, result.error or "Generation failed", code=job.failure_code)
        return result

    async def shutdown(self) -> None:
        """Cancel every polling task; abandoned jobs keep their last state."""
        tasks = [job.task for job in self.jobs.values() if job.task and not job.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for job in self.jobs.values():
            if not job.future.done():
                job.future.cancel()
        logger.info("job_tracker_shutdown", cancelled=len(tasks))
