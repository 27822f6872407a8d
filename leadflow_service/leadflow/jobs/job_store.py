from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from leadflow.models import JobStatus, Lead, ScrapeJob, utc_now

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class JobStore(Protocol):
    async def create_job(self, job: ScrapeJob) -> ScrapeJob: ...

    async def get_job(self, job_id: str) -> ScrapeJob | None: ...

    async def update_job(self, job_id: str, **fields: Any) -> bool: ...

    async def insert_result_records(self, job_id: str, records: list[Lead]) -> int: ...

    async def list_jobs(self, owner_id: str | None = None, status: JobStatus | None = None) -> list[ScrapeJob]: ...

    async def list_result_records(self, job_id: str) -> list[Lead]: ...


def guarded_changes(job: ScrapeJob, fields: dict[str, Any]) -> dict[str, Any] | None:
    """Return the subset of ``fields`` that may be applied to ``job``.

    ``None`` means the job is terminal and must not change at all. A
    ``provider_run_id`` that is already set is never replaced.
    """
    if job.status.is_terminal:
        return None

    changes = dict(fields)
    run_id = changes.get('provider_run_id')
    if run_id is not None and job.provider_run_id is not None and run_id != job.provider_run_id:
        logger.warning('Job %s already has provider run %s, ignoring %s', job.id, job.provider_run_id, run_id)
        changes.pop('provider_run_id')
    return changes


class InMemoryJobStore:
    def __init__(self) -> None:
        self._jobs: dict[str, ScrapeJob] = {}
        self._leads: dict[str, list[Lead]] = {}
        self._lock = asyncio.Lock()

    async def create_job(self, job: ScrapeJob) -> ScrapeJob:
        async with self._lock:
            self._jobs[job.id] = job.model_copy()
        return job

    async def get_job(self, job_id: str) -> ScrapeJob | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy() if job else None

    async def update_job(self, job_id: str, **fields: Any) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            changes = guarded_changes(job, fields)
            if changes is None:
                logger.info('Job %s is %s, ignoring update %s', job_id, job.status.value, sorted(fields))
                return False
            changes['updated_at'] = utc_now()
            self._jobs[job_id] = job.model_copy(update=changes)
            return True

    async def insert_result_records(self, job_id: str, records: list[Lead]) -> int:
        async with self._lock:
            self._leads.setdefault(job_id, []).extend(records)
        return len(records)

    async def list_jobs(self, owner_id: str | None = None, status: JobStatus | None = None) -> list[ScrapeJob]:
        async with self._lock:
            jobs = [job.model_copy() for job in self._jobs.values()]

        if owner_id is not None:
            jobs = [job for job in jobs if job.owner_id == owner_id]
        if status is not None:
            jobs = [job for job in jobs if job.status == status]
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)

    async def list_result_records(self, job_id: str) -> list[Lead]:
        async with self._lock:
            return list(self._leads.get(job_id, []))
