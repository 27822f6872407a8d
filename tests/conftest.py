from __future__ import annotations

import asyncio

import pytest

from leadflow.config import Settings

SCRAPE_BASE = 'https://scrape.test/v1/apollo'
TOKEN_URL = 'https://token.test/token'
VERIFY_URL = 'https://verify.test/ninja'
SUPABASE_URL = 'https://db.test'
APOLLO_URL = 'https://app.apollo.io/#/people?x=1'


def make_settings(**overrides) -> Settings:
    values = {
        'scrape_api_base_url': SCRAPE_BASE,
        'scrape_api_key': 'scrape-key',
        'verifier_token_url': TOKEN_URL,
        'verifier_url': VERIFY_URL,
        'verifier_api_key': 'verify-key',
        'supabase_url': None,
        'supabase_service_role_key': None,
        'verify_rate_per_second': 10_000,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays and only yields."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class ParkingSleep:
    """Stand-in for asyncio.sleep that never returns, for cancellation tests."""

    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self, delay: float) -> None:
        self.calls += 1
        await asyncio.Event().wait()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


class FakeVerifierAPI:
    """In-process verifier; ``behaviour`` maps an email to a callable or payload."""

    def __init__(self, behaviour=None, latency: float = 0.0, token_error: Exception | None = None) -> None:
        self.behaviour = behaviour or {}
        self.latency = latency
        self.token_error = token_error
        self.calls: list[str] = []
        self.token_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_token(self, client) -> str:
        self.token_calls += 1
        if self.token_error is not None:
            raise self.token_error
        return 'tok'

    async def verify(self, client, email, token):
        self.calls.append(email)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            outcome = self.behaviour.get(email, {'code': 'ok', 'message': 'Accepted'})
            if callable(outcome):
                return outcome(email)
            return outcome
        finally:
            self.in_flight -= 1
