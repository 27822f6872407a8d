from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import httpx

from leadflow.config import Settings
from leadflow.models import JobStatus, Lead, ScrapeJob, utc_now

logger = logging.getLogger(__name__)

# model field -> scraper_requests column, where they differ
COLUMN_NAMES = {
    'owner_id': 'user_id',
    'source_url': 'url',
    'requested_count': 'requested',
    'extracted_count': 'extracted',
}
FIELD_NAMES = {column: field for field, column in COLUMN_NAMES.items()}
ACTIVE_FILTER = f'in.({JobStatus.PENDING.value},{JobStatus.PROCESSING.value})'


def _to_column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return value


def job_to_row(fields: dict[str, Any]) -> dict[str, Any]:
    return {COLUMN_NAMES.get(name, name): _to_column_value(value) for name, value in fields.items()}


def row_to_job(row: dict[str, Any]) -> ScrapeJob:
    data = {FIELD_NAMES.get(column, column): value for column, value in row.items()}
    data.setdefault('provider_count', data.get('requested_count'))
    return ScrapeJob.model_validate({key: value for key, value in data.items() if key in ScrapeJob.model_fields})


class SupabaseJobStore:
    """Job store backed by Supabase's PostgREST API.

    Terminal-state and set-once guarantees are pushed into the PATCH filters so
    concurrent writers cannot race past them.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.rest_url = f"{(settings.supabase_url or '').rstrip('/')}/rest/v1"
        key = settings.supabase_service_role_key or ''
        self.headers = {
            'apikey': key,
            'Authorization': f'Bearer {key}',
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.rest_url,
            headers=self.headers,
            timeout=self.settings.request_timeout_seconds,
        )

    async def create_job(self, job: ScrapeJob) -> ScrapeJob:
        row = job_to_row(job.model_dump())
        row['leads_count'] = job.requested_count
        async with self._client() as client:
            response = await client.post(
                f'/{self.settings.jobs_table}', json=row, headers={'Prefer': 'return=representation'}
            )
            response.raise_for_status()
            rows = response.json()
        return row_to_job(rows[0]) if rows else job

    async def get_job(self, job_id: str) -> ScrapeJob | None:
        async with self._client() as client:
            response = await client.get(f'/{self.settings.jobs_table}', params={'id': f'eq.{job_id}', 'select': '*'})
            response.raise_for_status()
            rows = response.json()
        return row_to_job(rows[0]) if rows else None

    async def update_job(self, job_id: str, **fields: Any) -> bool:
        params: dict[str, str] = {'id': f'eq.{job_id}', 'status': ACTIVE_FILTER}
        run_id = fields.get('provider_run_id')
        if run_id is not None:
            params['or'] = f'(provider_run_id.is.null,provider_run_id.eq.{run_id})'

        row = job_to_row({**fields, 'updated_at': utc_now()})
        async with self._client() as client:
            response = await client.patch(
                f'/{self.settings.jobs_table}',
                params=params,
                json=row,
                headers={'Prefer': 'return=representation'},
            )
            response.raise_for_status()
            updated = response.json()

        if not updated:
            logger.info('Job %s not updated (terminal, missing, or run id already set)', job_id)
            return False
        return True

    async def insert_result_records(self, job_id: str, records: list[Lead]) -> int:
        if not records:
            return 0
        rows = [record.model_dump() | {'job_id': job_id} for record in records]
        async with self._client() as client:
            response = await client.post(
                f'/{self.settings.leads_table}', json=rows, headers={'Prefer': 'return=minimal'}
            )
            response.raise_for_status()
        return len(rows)

    async def list_jobs(self, owner_id: str | None = None, status: JobStatus | None = None) -> list[ScrapeJob]:
        params = {'select': '*', 'order': 'created_at.desc'}
        if owner_id is not None:
            params['user_id'] = f'eq.{owner_id}'
        if status is not None:
            params['status'] = f'eq.{status.value}'

        async with self._client() as client:
            response = await client.get(f'/{self.settings.jobs_table}', params=params)
            response.raise_for_status()
            return [row_to_job(row) for row in response.json()]

    async def list_result_records(self, job_id: str) -> list[Lead]:
        async with self._client() as client:
            response = await client.get(
                f'/{self.settings.leads_table}', params={'job_id': f'eq.{job_id}', 'select': '*'}
            )
            response.raise_for_status()
            return [Lead.model_validate(row) for row in response.json()]
