"""
Persistence for questions, rubrics and grading jobs.

The grading pipeline needs only point lookups, inserts, updates by id and
an ordered range query over jobs. Two implementations are provided: an
in-memory store for tests and embedding, and a JSON file store that keeps
job state recoverable across process restarts.
"""

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from essay_grader.models import GradingJob, JobStatus, Question, Rubric

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

SAFE_KEY = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


class StoreError(Exception):
    """Raised when a record cannot be read or written."""


class GradingStore(Protocol):
    """What the grading pipeline requires from persistence."""

    async def get_question(self, question_id: str) -> Question | None: ...

    async def get_rubric(self, question_id: str) -> Rubric | None: ...

    async def insert_job(self, job: GradingJob) -> None: ...

    async def update_job(self, job_id: str, **fields: Any) -> GradingJob: ...

    async def get_job(self, job_id: str) -> GradingJob | None: ...

    async def list_jobs(
        self,
        question_id: str | None = None,
        user_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 20,
    ) -> list[GradingJob]: ...


def _select_jobs(
    jobs: list[GradingJob],
    question_id: str | None,
    user_id: str | None,
    status: JobStatus | None,
    limit: int,
) -> list[GradingJob]:
    """Filter jobs and order them newest first."""
    selected = [
        job
        for job in jobs
        if (question_id is None or job.question_id == question_id)
        and (user_id is None or job.user_id == user_id)
        and (status is None or job.status is status)
    ]
    selected.sort(key=lambda job: job.created_at, reverse=True)
    return selected[: max(0, limit)]


class InMemoryStore:
    """Dictionary-backed store. State is lost when the process exits."""

    def __init__(self) -> None:
        self._questions: dict[str, Question] = {}
        self._rubrics: dict[str, Rubric] = {}
        self._jobs: dict[str, GradingJob] = {}

    def add_question(self, question: Question) -> None:
        self._questions[question.id] = question

    def add_rubric(self, rubric: Rubric) -> None:
        self._rubrics[rubric.question_id] = rubric

    async def get_question(self, question_id: str) -> Question | None:
        return self._questions.get(question_id)

    async def get_rubric(self, question_id: str) -> Rubric | None:
        return self._rubrics.get(question_id)

    async def insert_job(self, job: GradingJob) -> None:
        if job.id in self._jobs:
            raise StoreError(f"Job already exists: {job.id}")
        self._jobs[job.id] = job

    async def update_job(self, job_id: str, **fields: Any) -> GradingJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise StoreError(f"Job not found: {job_id}")
        updated = job.model_copy(update=fields)
        self._jobs[job_id] = updated
        return updated

    async def get_job(self, job_id: str) -> GradingJob | None:
        return self._jobs.get(job_id)

    async def list_jobs(
        self,
        question_id: str | None = None,
        user_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 20,
    ) -> list[GradingJob]:
        return _select_jobs(list(self._jobs.values()), question_id, user_id, status, limit)

    async def delete_job(self, job_id: str) -> bool:
        """Administrative removal; the pipeline itself never deletes jobs."""
        return self._jobs.pop(job_id, None) is not None


class JsonFileStore:
    """
    One JSON document per record under a root directory.

    Layout: ``questions/<id>.json``, ``rubrics/<question_id>.json`` and
    ``jobs/<id>.json``. Writes go to a temporary file first and are moved
    into place atomically, so a reader never sees a half-written record.
    """

    def __init__(self, root: Path):
        self._root = Path(root)
        for kind in ("questions", "rubrics", "jobs"):
            (self._root / kind).mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    async def save_question(self, question: Question) -> None:
        await asyncio.to_thread(self._write, self._path("questions", question.id), question)

    async def save_rubric(self, rubric: Rubric) -> None:
        await asyncio.to_thread(self._write, self._path("rubrics", rubric.question_id), rubric)

    async def get_question(self, question_id: str) -> Question | None:
        return await asyncio.to_thread(self._read, "questions", question_id, Question)

    async def get_rubric(self, question_id: str) -> Rubric | None:
        return await asyncio.to_thread(self._read, "rubrics", question_id, Rubric)

    async def insert_job(self, job: GradingJob) -> None:
        path = self._path("jobs", job.id)
        if path.exists():
            raise StoreError(f"Job already exists: {job.id}")
        await asyncio.to_thread(self._write, path, job)

    async def update_job(self, job_id: str, **fields: Any) -> GradingJob:
        job = await self.get_job(job_id)
        if job is None:
            raise StoreError(f"Job not found: {job_id}")
        updated = job.model_copy(update=fields)
        await asyncio.to_thread(self._write, self._path("jobs", job_id), updated)
        return updated

    async def get_job(self, job_id: str) -> GradingJob | None:
        if not SAFE_KEY.match(job_id):
            return None
        return await asyncio.to_thread(self._read, "jobs", job_id, GradingJob)

    async def list_jobs(
        self,
        question_id: str | None = None,
        user_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 20,
    ) -> list[GradingJob]:
        jobs = await asyncio.to_thread(self._read_all_jobs)
        return _select_jobs(jobs, question_id, user_id, status, limit)

    async def delete_job(self, job_id: str) -> bool:
        """Administrative removal; the pipeline itself never deletes jobs."""
        if not SAFE_KEY.match(job_id):
            return False
        path = self._root / "jobs" / f"{job_id}.json"
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def _path(self, kind: str, key: str) -> Path:
        if not SAFE_KEY.match(key):
            raise StoreError(f"Invalid {kind} key: {key!r}")
        return self._root / kind / f"{key}.json"

    def _read(self, kind: str, key: str, model: type[M]) -> M | None:
        if not SAFE_KEY.match(key):
            return None
        path = self._root / kind / f"{key}.json"
        try:
            return model.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as e:
            raise StoreError(f"Cannot read {path}: {e}") from e

    def _read_all_jobs(self) -> list[GradingJob]:
        jobs: list[GradingJob] = []
        for path in (self._root / "jobs").glob("*.json"):
            try:
                jobs.append(GradingJob.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, ValidationError) as e:
                logger.warning("Skipping unreadable job file %s: %s", path, e)
        return jobs

    def _write(self, path: Path, record: BaseModel) -> None:
        tmp_path = path.with_suffix(".json.tmp")
        try:
            tmp_path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise StoreError(f"Cannot write {path}: {e}") from e
