"""
Asynchronous grading job manager.

Submitting an answer returns a job id at once; grading runs as a
background task and the persisted job is the only handle a caller has on
it. Status is read back from the store, so a poller in another process
sees the same state as one in this process.
"""

import asyncio
import logging
import traceback
import uuid
from typing import Any, Callable

from essay_grader.config import Settings, get_settings
from essay_grader.grading.analysis import count_words
from essay_grader.grading.engine import GradingEngine
from essay_grader.models import (
    JOB_TRANSITIONS,
    GradingJob,
    JobError,
    JobStatus,
    JobStatusView,
    JobSummary,
    utcnow,
)
from essay_grader.store import GradingStore, StoreError

logger = logging.getLogger(__name__)

STATUS_PROGRESS: dict[JobStatus, int] = {
    JobStatus.PENDING: 10,
    JobStatus.PROCESSING: 50,
    JobStatus.COMPLETED: 100,
    JobStatus.ERROR: 0,
}

STATUS_MESSAGES: dict[JobStatus, str] = {
    JobStatus.PENDING: "等待处理中...",
    JobStatus.PROCESSING: "AI 正在批改中...",
    JobStatus.COMPLETED: "批改完成",
    JobStatus.ERROR: "批改出错",
}

NOT_FOUND_MESSAGE = "找不到该批改记录"
INTERRUPTED_MESSAGE = "Grading was interrupted before it finished"
CANCELLED_MESSAGE = "Grading was cancelled"


class InvalidTransitionError(Exception):
    """Raised when a job is moved along an edge the state machine lacks."""

    def __init__(self, job_id: str, current: JobStatus, target: JobStatus):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id}: invalid transition {current.value} -> {target.value}")


class AsyncGradingJobManager:
    """
    Owns the job state machine.

    ``pending -> processing -> completed | error``, plus ``pending -> error``
    for runs that fail before they start. Terminal states are final.
    Identical submissions are never deduplicated.
    """

    def __init__(
        self,
        engine: GradingEngine,
        store: GradingStore,
        settings: Settings | None = None,
    ):
        self._engine = engine
        self._store = store
        self._settings = settings or get_settings()
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._lock = asyncio.Lock()

    async def submit(
        self,
        question_id: str,
        content: str,
        time_spent: int | None = None,
        user_id: str | None = None,
    ) -> str:
        """
        Create a pending job and schedule its grading run.

        Returns as soon as the job is persisted; the run itself is not awaited.

        Returns:
            The new job id.
        """
        job = GradingJob(
            id=str(uuid.uuid4()),
            question_id=question_id,
            content=content,
            word_count=count_words(content),
            time_spent=time_spent,
            user_id=user_id,
        )
        await self._store.insert_job(job)
        logger.info("Job %s submitted for question %s", job.id, question_id)

        self._dispatch(job)
        return job.id

    async def status(self, job_id: str) -> JobStatusView:
        """
        Report a job's state to a poller.

        Never raises: unknown ids and unreadable records are reported as
        an error status.
        """
        try:
            job = await self._store.get_job(job_id)
        except Exception as e:
            logger.warning("Cannot read job %s: %s", job_id, e)
            job = None

        if job is None:
            return JobStatusView(
                status=JobStatus.ERROR,
                progress=STATUS_PROGRESS[JobStatus.ERROR],
                message=NOT_FOUND_MESSAGE,
                error="Not found",
            )

        return JobStatusView(
            status=job.status,
            progress=STATUS_PROGRESS[job.status],
            message=STATUS_MESSAGES[job.status],
            result=job.result if job.status is JobStatus.COMPLETED else None,
            error=job.error.message if job.status is JobStatus.ERROR and job.error else None,
        )

    async def wait(
        self,
        job_id: str,
        poll_interval: float | None = None,
        max_polls: int | None = None,
        on_poll: Callable[[JobStatusView], None] | None = None,
    ) -> JobStatusView:
        """
        Poll until the job is terminal or the poll budget runs out.

        Args:
            job_id: The job to watch.
            poll_interval: Seconds between polls; defaults to the configured value.
            max_polls: Poll budget; defaults to the configured value.
            on_poll: Called with every non-terminal view, e.g. to update a spinner.

        Returns:
            The last status view seen, terminal or not.
        """
        interval = self._settings.poll_interval_seconds if poll_interval is None else poll_interval
        budget = self._settings.max_polls if max_polls is None else max_polls

        view = await self.status(job_id)
        polls = 1
        while not view.status.is_terminal and polls < budget:
            if on_poll is not None:
                on_poll(view)
            await asyncio.sleep(interval)
            view = await self.status(job_id)
            polls += 1

        if not view.status.is_terminal:
            logger.warning("Gave up waiting for job %s after %d polls", job_id, polls)
        return view

    async def history(
        self,
        question_id: str | None = None,
        user_id: str | None = None,
        limit: int = 20,
    ) -> list[JobSummary]:
        """Newest-first summaries of past jobs."""
        jobs = await self._store.list_jobs(question_id=question_id, user_id=user_id, limit=limit)
        return [self._summarize(job) for job in jobs]

    async def resume(self) -> int:
        """
        Recover job state from the store after a restart.

        Pending jobs are dispatched again; jobs left in processing by a dead
        process cannot be trusted and are failed. Jobs this manager is still
        running are left alone.

        Returns:
            Number of jobs re-dispatched.
        """
        # Stale runs must be failed before any new run can flip to processing
        for job in await self._store.list_jobs(status=JobStatus.PROCESSING, limit=10_000):
            if job.id not in self._tasks:
                await self._fail(job, INTERRUPTED_MESSAGE, "")

        resumed = 0
        for job in await self._store.list_jobs(status=JobStatus.PENDING, limit=10_000):
            if job.id in self._tasks:
                continue
            self._dispatch(job)
            resumed += 1

        if resumed:
            logger.info("Resumed %d pending jobs", resumed)
        return resumed

    async def join(self) -> None:
        """Wait for every in-flight grading run to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    @property
    def running(self) -> int:
        return len(self._tasks)

    def _dispatch(self, job: GradingJob) -> None:
        task = asyncio.create_task(self._run(job), name=f"grade-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))

    async def _run(self, job: GradingJob) -> None:
        try:
            job = await self._transition(job, JobStatus.PROCESSING)
            result = await self._engine.grade_question(job.question_id, job.content)
            # Result and terminal status are written together
            await self._transition(
                job,
                JobStatus.COMPLETED,
                result=result,
                completed_at=utcnow(),
            )
            logger.info(
                "Job %s completed: %s/%s", job.id, result.total_score, result.max_score
            )
        except InvalidTransitionError as e:
            # Someone else already settled the job; its stored state wins
            logger.warning("Job %s stopped: %s", job.id, e)
        except asyncio.CancelledError:
            await self._fail(job, CANCELLED_MESSAGE, traceback.format_exc())
            raise
        except Exception as e:
            logger.exception("Job %s failed", job.id)
            await self._fail(job, str(e) or type(e).__name__, traceback.format_exc())

    async def _fail(self, job: GradingJob, message: str, trace: str) -> None:
        try:
            await self._transition(
                job,
                JobStatus.ERROR,
                error=JobError(message=message, trace=trace),
                completed_at=utcnow(),
            )
        except InvalidTransitionError:
            pass  # already terminal
        except Exception:
            logger.exception("Could not record failure of job %s", job.id)

    async def _transition(self, job: GradingJob, target: JobStatus, **fields: Any) -> GradingJob:
        """
        Move a job along one edge of the state machine.

        The edge is checked against the stored status, not the caller's
        copy, so a run cannot overwrite a state another actor has settled.
        """
        async with self._lock:
            current = await self._store.get_job(job.id)
            if current is None:
                raise StoreError(f"Job not found: {job.id}")
            if target not in JOB_TRANSITIONS[current.status]:
                raise InvalidTransitionError(job.id, current.status, target)
            updated = await self._store.update_job(job.id, status=target, **fields)
        logger.info("Job %s: %s -> %s", job.id, current.status.value, target.value)
        return updated

    @staticmethod
    def _summarize(job: GradingJob) -> JobSummary:
        return JobSummary(
            id=job.id,
            question_id=job.question_id,
            user_id=job.user_id,
            status=job.status,
            progress=STATUS_PROGRESS[job.status],
            word_count=job.word_count,
            total_score=job.result.total_score if job.result else None,
            max_score=job.result.max_score if job.result else None,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )
