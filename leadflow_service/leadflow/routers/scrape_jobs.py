from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from leadflow.config import Settings, get_settings
from leadflow.dependencies import get_job_store, get_orchestrator
from leadflow.errors import JobNotCancellable, JobNotFound, ValidationError
from leadflow.jobs.job_store import JobStore
from leadflow.jobs.orchestrator import ScrapeOrchestrator
from leadflow.models import JobStatus, Lead, ScrapeJob, ScrapeRequest, SubmitResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post('/scrape-leads', response_model=SubmitResponse)
async def submit_scrape(
    payload: ScrapeRequest,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
) -> SubmitResponse:
    if not settings.scrape_api_key:
        logger.error('SCRAPE_API_KEY is not set')
        raise HTTPException(status_code=500, detail='API service is not properly configured. Please contact support.')

    try:
        job = await orchestrator.submit_job(
            source_url=payload.source_url,
            requested_count=payload.requested_count,
            file_format=payload.file_format,
            file_name=payload.file_name,
            owner_id=payload.owner_id,
            require_owner=True,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception('Failed to create scrape request')
        raise HTTPException(status_code=500, detail='Failed to create scrape request') from exc

    return SubmitResponse(
        id=job.id,
        status=job.status,
        message='Scraping started successfully. This may take a few minutes due to high demand.',
    )


@router.get('/scrape-leads', response_model=list[ScrapeJob])
@router.get('/fetch-scrape-requests', response_model=list[ScrapeJob])
async def list_scrape_jobs(
    owner_id: str | None = None,
    status: JobStatus | None = None,
    store: JobStore = Depends(get_job_store),
) -> list[ScrapeJob]:
    return await store.list_jobs(owner_id=owner_id, status=status)


@router.get('/scrape-leads/{job_id}', response_model=ScrapeJob)
async def get_scrape_job(job_id: str, store: JobStore = Depends(get_job_store)) -> ScrapeJob:
    job = await store.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail='Job not found')
    return job


@router.get('/scrape-leads/{job_id}/leads', response_model=list[Lead])
async def get_scrape_leads(job_id: str, store: JobStore = Depends(get_job_store)) -> list[Lead]:
    if not await store.get_job(job_id):
        raise HTTPException(status_code=404, detail='Job not found')
    return await store.list_result_records(job_id)


@router.post('/scrape-leads/{job_id}/cancel', response_model=ScrapeJob)
async def cancel_scrape_job(
    job_id: str, orchestrator: ScrapeOrchestrator = Depends(get_orchestrator)
) -> ScrapeJob:
    try:
        return await orchestrator.cancel_job(job_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=404, detail='Job not found') from exc
    except JobNotCancellable as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
