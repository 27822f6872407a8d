import asyncio
from functools import lru_cache

from leadflow.config import get_settings
from leadflow.jobs.batch_verifier import BatchVerifier
from leadflow.jobs.job_store import InMemoryJobStore, JobStore
from leadflow.jobs.orchestrator import ScrapeOrchestrator
from leadflow.jobs.supabase_store import SupabaseJobStore
from leadflow.services.rate_limiter import AsyncRateLimiter
from leadflow.services.token_provider import TokenProvider
from leadflow.services.verifier_client import NinjaVerifierClient


@lru_cache
def get_job_store() -> JobStore:
    settings = get_settings()
    if settings.uses_supabase:
        return SupabaseJobStore(settings)
    return InMemoryJobStore()


@lru_cache
def get_orchestrator() -> ScrapeOrchestrator:
    return ScrapeOrchestrator(settings=get_settings(), store=get_job_store())


@lru_cache
def get_token_provider() -> TokenProvider:
    settings = get_settings()
    client_api = NinjaVerifierClient(settings)
    return TokenProvider(client_api.fetch_token, ttl_seconds=settings.token_ttl_seconds)


@lru_cache
def get_verify_limiter() -> AsyncRateLimiter:
    return AsyncRateLimiter(get_settings().verify_rate_per_second)


@lru_cache
def get_verify_semaphore() -> asyncio.Semaphore:
    return asyncio.Semaphore(get_settings().verify_max_concurrency)


def get_batch_verifier() -> BatchVerifier:
    return BatchVerifier(
        settings=get_settings(),
        token_provider=get_token_provider(),
        limiter=get_verify_limiter(),
        semaphore=get_verify_semaphore(),
    )
