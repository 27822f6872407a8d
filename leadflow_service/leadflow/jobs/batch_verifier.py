from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx

from leadflow.config import Settings
from leadflow.errors import (
    NetworkError,
    OperationCancelled,
    ProviderError,
    ProviderUnavailable,
    RateLimited,
    TokenRejected,
    TooManyRecords,
    ValidationError,
)
from leadflow.models import VerificationRecord, VerificationStatus
from leadflow.services.rate_limiter import AsyncRateLimiter, ChunkPacer
from leadflow.services.token_provider import TokenProvider
from leadflow.services.verifier_client import NinjaVerifierClient
from leadflow.utils.normalizers import classify_response, failed_record, make_record
from leadflow.utils.validators import prepare_emails

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class BatchVerifier:
    def __init__(
        self,
        settings: Settings,
        token_provider: TokenProvider,
        client_api: NinjaVerifierClient | None = None,
        sleep: Sleep = asyncio.sleep,
        client_factory: Callable[[], httpx.AsyncClient] = httpx.AsyncClient,
        limiter: AsyncRateLimiter | None = None,
        semaphore: asyncio.Semaphore | None = None,
    ) -> None:
        self.settings = settings
        self.token_provider = token_provider
        self.client_api = client_api or NinjaVerifierClient(settings)
        self._sleep = sleep
        self._client_factory = client_factory
        # Shared across batches when given, so concurrent requests split one budget.
        self.limiter = limiter
        self.semaphore = semaphore

    async def verify_batch(
        self, emails: list[str], cancel_event: asyncio.Event | None = None
    ) -> list[VerificationRecord]:
        if not emails:
            raise ValidationError('No emails provided')

        prepared = prepare_emails(emails)
        if len(prepared) > self.settings.verify_max_batch:
            raise TooManyRecords(len(prepared), self.settings.verify_max_batch)

        results: dict[str, VerificationRecord] = {
            email: make_record(email, VerificationStatus.REJECTED, 'invalid_format')
            for email, valid in prepared
            if not valid
        }
        valid_emails = [email for email, valid in prepared if valid]
        logger.info('Verifying %d emails (%d rejected on syntax)', len(valid_emails), len(results))

        if valid_emails:
            async with self._client_factory() as client:
                token = await self.token_provider.get_token(client)
                results.update(await self._run_chunks(client, valid_emails, token, cancel_event))

        return [results.get(email) or failed_record(email) for email, _ in prepared]

    async def _run_chunks(
        self,
        client: httpx.AsyncClient,
        emails: list[str],
        token: str,
        cancel_event: asyncio.Event | None,
    ) -> dict[str, VerificationRecord]:
        settings = self.settings
        pacer = ChunkPacer(
            chunk_size=settings.verify_chunk_size,
            min_chunk_size=settings.verify_min_chunk_size,
            max_chunk_size=settings.verify_max_chunk_size,
            delay=settings.verify_chunk_delay_seconds,
            max_delay=settings.verify_max_chunk_delay_seconds,
            recovery_chunks=settings.verify_recovery_chunks,
        )
        limiter = self.limiter or AsyncRateLimiter(settings.verify_rate_per_second)
        semaphore = self.semaphore or asyncio.Semaphore(settings.verify_max_concurrency)
        results: dict[str, VerificationRecord] = {}

        index = 0
        while index < len(emails):
            self._check_cancelled(cancel_event)
            chunk = emails[index:index + pacer.chunk_size]
            index += len(chunk)

            outcomes = await asyncio.gather(
                *[self._verify_record(client, email, token, semaphore, limiter, cancel_event) for email in chunk],
                return_exceptions=True,
            )

            throttled = False
            for email, outcome in zip(chunk, outcomes):
                if isinstance(outcome, OperationCancelled) or not isinstance(outcome, (tuple, Exception)):
                    raise outcome
                if isinstance(outcome, Exception):
                    logger.error('Verification of %s failed, marking it unverified', email, exc_info=outcome)
                    results[email] = failed_record(email)
                    continue
                record, hit = outcome
                results[record.email] = record
                throttled = throttled or hit
            pacer.record(throttled)
            if throttled:
                limiter.slow_down()
                logger.warning('Rate limited, chunk size now %d, delay %.2fs', pacer.chunk_size, pacer.delay)
            else:
                limiter.recover()

            if index < len(emails) and pacer.delay > 0:
                await self._sleep(pacer.delay)

        return results

    async def _verify_record(
        self,
        client: httpx.AsyncClient,
        email: str,
        token: str,
        semaphore: asyncio.Semaphore,
        limiter: AsyncRateLimiter,
        cancel_event: asyncio.Event | None,
    ) -> tuple[VerificationRecord, bool]:
        throttled = False
        stale_token = False
        detail = 'api_error'
        attempts = self.settings.verify_record_retries + 1

        async with semaphore:
            for attempt in range(1, attempts + 1):
                self._check_cancelled(cancel_event)
                await limiter.wait()
                try:
                    if stale_token:
                        token = await self.token_provider.get_token(client)
                        stale_token = False
                    raw = await self.client_api.verify(client, email, token)
                    status, reason = classify_response(raw)
                    return make_record(email, status, reason), throttled
                except RateLimited:
                    throttled = True
                    detail = 'api_error'
                except TokenRejected:
                    detail = 'api_error'
                    self.token_provider.invalidate(token)
                    stale_token = True
                except NetworkError as exc:
                    detail = 'timeout' if exc.timeout else 'api_error'
                except (ProviderError, ProviderUnavailable) as exc:
                    detail = 'api_error'
                    logger.debug('Verification of %s failed: %s', email, exc)
                except Exception:
                    detail = 'api_error'
                    logger.exception('Unexpected error verifying %s', email)

                if attempt < attempts:
                    await self._sleep(self.settings.verify_retry_delay_seconds * attempt)

        logger.warning('Giving up on %s after %d attempts (%s)', email, attempts, detail)
        return make_record(email, VerificationStatus.UNKNOWN, detail), throttled

    @staticmethod
    def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled('Verification was cancelled')
