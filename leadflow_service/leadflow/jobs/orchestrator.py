"""Scrape job lifecycle: submit to the provider, poll, export, persist.

``submit_job`` persists a ``pending`` job and hands the rest of the lifecycle to
a background task that the orchestrator owns. Every exit from that task leaves
the job in a terminal state; the retry ceilings of the submit and poll loops
together bound how long a job can stay active (see ``max_runtime_seconds``).
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable

import httpx

from leadflow.config import Settings
from leadflow.errors import (
    ExportFailure,
    JobNotCancellable,
    JobNotFound,
    LeadflowError,
    NetworkError,
    OverloadExceeded,
    PollTimeout,
    ProviderError,
    ProviderOverloaded,
    ProviderRunFailed,
    ValidationError,
)
from leadflow.jobs.job_store import JobStore
from leadflow.models import FileFormat, JobStatus, ScrapeJob, utc_now
from leadflow.services.backoff import RetryPolicy
from leadflow.services.scrape_client import ScrapeProviderClient
from leadflow.utils.normalizers import normalize_lead
from leadflow.utils.validators import clamp, is_allowed_source_url

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

CANCELLED_MESSAGE = 'Job was cancelled'
UNEXPECTED_MESSAGE = 'Scraping failed due to an unexpected error'
INTERRUPTED_MESSAGE = 'Scrape run was interrupted by a service restart'


class ScrapeOrchestrator:
    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        sleep: Sleep = asyncio.sleep,
        client_factory: Callable[[], httpx.AsyncClient] = httpx.AsyncClient,
    ) -> None:
        self.settings = settings
        self.store = store
        self._sleep = sleep
        self._client_factory = client_factory
        self._tasks: dict[str, asyncio.Task] = {}
        self.submit_policy = RetryPolicy(
            base=settings.submit_base_delay_seconds,
            factor=2.0,
            max_attempts=settings.submit_max_attempts,
            jitter_low=settings.jitter_low,
            jitter_high=settings.jitter_high,
        )
        self.poll_policy = RetryPolicy(
            base=settings.poll_interval_seconds,
            factor=settings.poll_backoff_factor,
            max_attempts=settings.poll_max_attempts,
            max_delay=settings.poll_max_interval_seconds,
            jitter_low=settings.jitter_low,
            jitter_high=settings.jitter_high,
        )

    def max_runtime_seconds(self) -> float:
        timeout = self.settings.request_timeout_seconds
        return (
            self.submit_policy.total_max_delay()
            + self.submit_policy.max_attempts * timeout
            + self.poll_policy.total_max_delay()
            + self.poll_policy.max_attempts * timeout
            + timeout
        )

    def validate_request(
        self,
        source_url: str | None,
        requested_count: int | None,
        owner_id: str | None = None,
        require_owner: bool = False,
    ) -> int:
        if not source_url or requested_count is None:
            raise ValidationError('Missing required fields: sourceUrl or requestedCount')
        if require_owner and not (owner_id or '').strip():
            raise ValidationError('Missing required fields: ownerId')
        if not is_allowed_source_url(source_url, self.settings.source_url_pattern):
            raise ValidationError(
                'Please provide a valid Apollo.io People search URL starting with: https://app.apollo.io/#/people'
            )
        if requested_count < 1 or requested_count > self.settings.max_requested_count:
            raise ValidationError(f'Leads count must be between 1 and {self.settings.max_requested_count:,}')
        return clamp(requested_count, self.settings.provider_min_count, self.settings.provider_max_count)

    async def submit_job(
        self,
        source_url: str | None,
        requested_count: int | None,
        file_format: str | FileFormat | None = None,
        file_name: str | None = None,
        owner_id: str | None = None,
        require_owner: bool = False,
    ) -> ScrapeJob:
        provider_count = self.validate_request(source_url, requested_count, owner_id, require_owner)
        fmt = FileFormat.coerce(file_format)
        job = ScrapeJob(
            id=str(uuid.uuid4()),
            source_url=source_url.strip(),
            requested_count=requested_count,
            provider_count=provider_count,
            file_format=fmt,
            file_name=(file_name or '').strip() or f'apollo_leads_{int(time.time() * 1000)}.{fmt.value}',
            owner_id=owner_id,
            credits=requested_count,
        )
        job = await self.store.create_job(job)
        logger.info('Created scrape job %s (requested=%s, provider_count=%s)', job.id, requested_count, provider_count)
        self._spawn(job)
        return job

    def _spawn(self, job: ScrapeJob, run_id: str | None = None) -> None:
        task = asyncio.create_task(self.run_job(job, run_id), name=f'scrape-job-{job.id}')
        self._tasks[job.id] = task
        task.add_done_callback(lambda t, job_id=job.id: self._forget(job_id, t))

    async def recover_jobs(self) -> int:
        """Pick up jobs left active by a previous process.

        Pending jobs are submitted again, processing jobs resume polling their run.
        A processing job without a run id cannot be resumed and is failed.
        """
        active = await self.store.list_jobs(status=JobStatus.PENDING)
        active += await self.store.list_jobs(status=JobStatus.PROCESSING)
        resumed = 0
        for job in active:
            if job.id in self._tasks:
                continue
            if job.status == JobStatus.PROCESSING and not job.provider_run_id:
                logger.warning('Job %s was processing without a run id, marking failed', job.id)
                await self._fail(job.id, INTERRUPTED_MESSAGE)
                continue
            logger.info('Recovering scrape job %s (%s)', job.id, job.status.value)
            self._spawn(job, job.provider_run_id if job.status == JobStatus.PROCESSING else None)
            resumed += 1
        return resumed

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error('Scrape job %s task ended with an error', job_id, exc_info=task.exception())

    async def wait_for(self, job_id: str) -> None:
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def run_job(self, job: ScrapeJob, run_id: str | None = None) -> None:
        """Drive a job to a terminal state. With ``run_id`` the submit step is skipped."""
        try:
            async with self._client_factory() as client:
                provider = ScrapeProviderClient(self.settings, client)
                if run_id is None:
                    run_id = await self.submit_to_provider(provider, job)
                    moved = await self.store.update_job(
                        job.id, status=JobStatus.PROCESSING, provider_run_id=run_id
                    )
                    if not moved:
                        logger.info('Job %s became terminal before run %s started polling', job.id, run_id)
                        return
                finished = await self.poll_until_done(provider, job.id, run_id)
                if finished:
                    await self.finalize_job(provider, job, run_id)
        except asyncio.CancelledError:
            logger.info('Scrape job %s cancelled', job.id)
            await self._fail(job.id, CANCELLED_MESSAGE)
            raise
        except LeadflowError as exc:
            logger.warning('Scrape job %s failed: %s', job.id, exc)
            await self._fail(job.id, str(exc))
        except Exception:
            logger.exception('Scrape job %s crashed', job.id)
            await self._fail(job.id, UNEXPECTED_MESSAGE)
        finally:
            current = await self.store.get_job(job.id)
            if current is not None and not current.status.is_terminal:
                logger.error('Scrape job %s left in %s, marking failed', job.id, current.status.value)
                await self._fail(job.id, UNEXPECTED_MESSAGE)

    async def _fail(self, job_id: str, message: str) -> None:
        await self.store.update_job(job_id, status=JobStatus.FAILED, error_message=message, completed_at=utc_now())

    async def submit_to_provider(self, provider: ScrapeProviderClient, job: ScrapeJob) -> str:
        policy = self.submit_policy
        for attempt in range(policy.max_attempts):
            try:
                logger.info('Starting scrape run for job %s (attempt %d/%d)', job.id, attempt + 1, policy.max_attempts)
                return await provider.start_run(job.source_url, job.provider_count, job.file_format.value)
            except ProviderOverloaded:
                if policy.is_last(attempt):
                    raise OverloadExceeded(policy.max_attempts) from None
                delay = policy.delay(attempt)
                logger.info('Scrape provider overloaded, retrying job %s in %.1fs', job.id, delay)
            except (ProviderError, NetworkError) as exc:
                if policy.is_last(attempt):
                    raise
                delay = policy.delay(attempt)
                logger.warning('Scrape submit for job %s failed (%s), retrying in %.1fs', job.id, exc, delay)
            await self._sleep(delay)

        raise OverloadExceeded(policy.max_attempts)

    async def poll_until_done(self, provider: ScrapeProviderClient, job_id: str, run_id: str) -> bool:
        """Poll the run until it completes. Returns False if the job went terminal meanwhile."""
        policy = self.poll_policy
        for attempt in range(policy.max_attempts):
            current = await self.store.get_job(job_id)
            if current is None or current.status.is_terminal:
                logger.info('Job %s is no longer active, stopping poll of run %s', job_id, run_id)
                return False

            try:
                status = await provider.get_status(run_id)
            except (ProviderError, NetworkError) as exc:
                logger.warning('Status check %d for run %s failed: %s', attempt + 1, run_id, exc)
            else:
                if status == 'completed':
                    return True
                if status == 'failed':
                    raise ProviderRunFailed('Scrape run failed')
                logger.debug(
                    'Run %s is %s (check %d/%d)', run_id, status or 'unknown', attempt + 1, policy.max_attempts
                )

            if not policy.is_last(attempt):
                await self._sleep(policy.delay(attempt))

        raise PollTimeout(policy.max_attempts)

    async def finalize_job(self, provider: ScrapeProviderClient, job: ScrapeJob, run_id: str) -> None:
        export = await provider.export(run_id)
        download_url = export.get('download_url') or export.get('downloadUrl')
        if not download_url:
            raise ExportFailure('Scrape export did not include a download link')

        raw_leads = export.get('leads') or []
        if not isinstance(raw_leads, list):
            raise ExportFailure('Scrape export had an unexpected leads payload')
        leads = [normalize_lead(raw, job.id) for raw in raw_leads if isinstance(raw, dict)]

        try:
            await self.store.insert_result_records(job.id, leads)
        except Exception as exc:
            logger.exception('Persisting %d leads for job %s failed', len(leads), job.id)
            raise ExportFailure(f'Failed to save scraped leads: {exc}') from exc

        await self.store.update_job(
            job.id,
            status=JobStatus.COMPLETED,
            extracted_count=len(leads),
            download_link=str(download_url),
            error_message=None,
            completed_at=utc_now(),
        )
        logger.info('Scrape job %s completed with %d leads', job.id, len(leads))

    async def cancel_job(self, job_id: str) -> ScrapeJob:
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFound(f'Job {job_id} not found')
        if job.status.is_terminal:
            raise JobNotCancellable(f'Job {job_id} is already {job.status.value}')

        await self._fail(job_id, CANCELLED_MESSAGE)
        task = self._tasks.get(job_id)
        if task is not None:
            task.cancel()
            await self.wait_for(job_id)
        return await self.store.get_job(job_id) or job

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
