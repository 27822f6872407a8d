import asyncio

import httpx
import pytest
import respx
from httpx import Response

from leadflow.errors import (
    NetworkError,
    OperationCancelled,
    ProviderError,
    ProviderUnavailable,
    RateLimited,
    TooManyRecords,
    ValidationError,
)
from leadflow.jobs.batch_verifier import BatchVerifier
from leadflow.models import VerificationStatus
from leadflow.services.rate_limiter import AsyncRateLimiter
from leadflow.services.token_provider import TokenProvider
from leadflow.services.verifier_client import NinjaVerifierClient

from conftest import TOKEN_URL, VERIFY_URL, FakeVerifierAPI, make_settings


def _verifier(api, sleep, **overrides) -> BatchVerifier:
    settings = make_settings(**overrides)
    return BatchVerifier(settings, TokenProvider(api.fetch_token, ttl_seconds=60), client_api=api, sleep=sleep)


def _raise(exc):
    def outcome(email):
        raise exc

    return outcome


def test_duplicates_are_verified_once(sleep):
    api = FakeVerifierAPI()
    records = asyncio.run(_verifier(api, sleep).verify_batch(['a@x.com', 'A@X.com ', 'a@x.com']))

    assert api.calls == ['a@x.com']
    assert len(records) == 1
    assert records[0].email == 'a@x.com'
    assert records[0].status == VerificationStatus.ACCEPTED
    assert records[0].first_name == 'a'


def test_invalid_format_never_reaches_provider(sleep):
    api = FakeVerifierAPI()
    records = asyncio.run(_verifier(api, sleep).verify_batch(['not-an-email', 'b.c@x.com', '']))

    assert api.calls == ['b.c@x.com']
    assert [(r.email, r.status, r.details) for r in records] == [
        ('not-an-email', VerificationStatus.REJECTED, 'invalid_format'),
        ('b.c@x.com', VerificationStatus.ACCEPTED, 'accepted'),
        ('', VerificationStatus.REJECTED, 'invalid_format'),
    ]


def test_only_invalid_input_skips_token_fetch(sleep):
    api = FakeVerifierAPI()
    records = asyncio.run(_verifier(api, sleep).verify_batch(['nope', 'still nope']))

    assert api.token_calls == 0
    assert {r.details for r in records} == {'invalid_format'}


def test_every_email_gets_a_record_under_partial_failure(sleep):
    emails = [f'user{i}@x.com' for i in range(20)]
    behaviour = {}
    for i, email in enumerate(emails):
        if i % 3 == 0:
            behaviour[email] = _raise(NetworkError('slow', timeout=True))
        elif i % 3 == 1:
            behaviour[email] = _raise(ProviderError('HTTP 500', 500))
    api = FakeVerifierAPI(behaviour)

    records = asyncio.run(_verifier(api, sleep, verify_record_retries=1).verify_batch(emails))

    assert [r.email for r in records] == emails
    for i, record in enumerate(records):
        assert record.status is not None and record.details
        if i % 3 == 0:
            assert (record.status, record.details) == (VerificationStatus.UNKNOWN, 'timeout')
        elif i % 3 == 1:
            assert (record.status, record.details) == (VerificationStatus.UNKNOWN, 'api_error')
        else:
            assert record.status == VerificationStatus.ACCEPTED
    # two attempts for each failing email, one for the rest
    assert len(api.calls) == 20 + 14


def test_unexpected_error_stays_with_its_own_record(sleep):
    emails = ['a@x.com', 'b@x.com', 'c@x.com', 'd@x.com', 'e@x.com']
    api = FakeVerifierAPI({'c@x.com': _raise(RuntimeError('boom'))})

    records = asyncio.run(
        _verifier(api, sleep, verify_chunk_size=2, verify_min_chunk_size=1).verify_batch(emails)
    )

    outcome = {r.email: (r.status, r.details) for r in records}
    assert len(records) == 5
    assert outcome['c@x.com'] == (VerificationStatus.UNKNOWN, 'api_error')
    for email in ('a@x.com', 'b@x.com', 'd@x.com', 'e@x.com'):
        assert outcome[email][0] == VerificationStatus.ACCEPTED


def test_undecodable_response_does_not_leak_sibling_requests(sleep):
    request = httpx.Request('GET', VERIFY_URL)
    api = FakeVerifierAPI({'c@x.com': _raise(httpx.DecodingError('bad gzip', request=request))}, latency=0.05)

    records = asyncio.run(
        _verifier(api, sleep, verify_record_retries=0).verify_batch(['a@x.com', 'b@x.com', 'c@x.com'])
    )

    assert [(r.email, r.status, r.details) for r in records] == [
        ('a@x.com', VerificationStatus.ACCEPTED, 'accepted'),
        ('b@x.com', VerificationStatus.ACCEPTED, 'accepted'),
        ('c@x.com', VerificationStatus.UNKNOWN, 'api_error'),
    ]
    assert api.in_flight == 0


def test_record_that_escapes_handling_is_marked_unverified_alone(sleep):
    class BrokenRecordVerifier(BatchVerifier):
        async def _verify_record(self, client, email, *args):
            if email == 'b@x.com':
                raise KeyError(email)
            return await super()._verify_record(client, email, *args)

    api = FakeVerifierAPI()
    verifier = BrokenRecordVerifier(make_settings(), TokenProvider(api.fetch_token, 60), client_api=api, sleep=sleep)

    records = asyncio.run(verifier.verify_batch(['a@x.com', 'b@x.com', 'c@x.com']))

    assert [(r.email, r.details) for r in records] == [
        ('a@x.com', 'accepted'),
        ('b@x.com', 'verification_failed'),
        ('c@x.com', 'accepted'),
    ]


def test_chunks_are_spaced_by_delay(sleep):
    emails = [f'u{i}@x.com' for i in range(25)]
    api = FakeVerifierAPI()

    asyncio.run(_verifier(api, sleep, verify_chunk_size=10).verify_batch(emails))

    assert sleep.delays == [0.5, 0.5]


def test_rate_limiting_shrinks_chunks_and_widens_delay(sleep):
    seen: set[str] = set()

    def throttle_once(email):
        if email not in seen:
            seen.add(email)
            raise RateLimited('slow down', 429)
        return {'code': 'ok'}

    emails = [f'u{i}@x.com' for i in range(6)]
    api = FakeVerifierAPI({email: throttle_once for email in emails[:4]})

    records = asyncio.run(
        _verifier(api, sleep, verify_chunk_size=4, verify_min_chunk_size=2, verify_retry_delay_seconds=0).verify_batch(
            emails
        )
    )

    assert all(r.status == VerificationStatus.ACCEPTED for r in records)
    assert [d for d in sleep.delays if d > 0] == [1.0]
    assert len(api.calls) == 4 * 2 + 2


def test_concurrency_is_capped(sleep):
    api = FakeVerifierAPI(latency=0.01)
    emails = [f'u{i}@x.com' for i in range(10)]

    asyncio.run(_verifier(api, sleep, verify_chunk_size=10, verify_max_concurrency=3).verify_batch(emails))

    assert api.max_in_flight == 3


def test_batches_sharing_a_semaphore_share_the_concurrency_cap(sleep):
    api = FakeVerifierAPI(latency=0.01)
    settings = make_settings(verify_chunk_size=10, verify_max_concurrency=10)
    tokens = TokenProvider(api.fetch_token, ttl_seconds=60)
    limiter = AsyncRateLimiter(settings.verify_rate_per_second)

    async def scenario():
        semaphore = asyncio.Semaphore(2)
        verifiers = [
            BatchVerifier(settings, tokens, client_api=api, sleep=sleep, limiter=limiter, semaphore=semaphore)
            for _ in range(2)
        ]
        return await asyncio.gather(
            verifiers[0].verify_batch([f'a{i}@x.com' for i in range(5)]),
            verifiers[1].verify_batch([f'b{i}@x.com' for i in range(5)]),
        )

    first, second = asyncio.run(scenario())

    assert len(first) == len(second) == 5
    assert api.max_in_flight == 2
    assert api.token_calls == 1


def test_empty_batch_is_rejected(sleep):
    with pytest.raises(ValidationError, match='No emails provided'):
        asyncio.run(_verifier(FakeVerifierAPI(), sleep).verify_batch([]))


def test_oversized_batch_is_rejected_before_any_call(sleep):
    api = FakeVerifierAPI()
    with pytest.raises(TooManyRecords):
        asyncio.run(_verifier(api, sleep, verify_max_batch=2).verify_batch(['a@x.com', 'b@x.com', 'c@x.com']))
    assert api.token_calls == 0
    assert api.calls == []


def test_duplicates_do_not_count_against_batch_limit(sleep):
    api = FakeVerifierAPI()
    records = asyncio.run(
        _verifier(api, sleep, verify_max_batch=2).verify_batch(['a@x.com', 'A@x.com', 'b@x.com'])
    )
    assert len(records) == 2


def test_cancel_event_stops_between_chunks(sleep):
    event = asyncio.Event()

    def cancel_after_first(email):
        event.set()
        return {'code': 'ok'}

    api = FakeVerifierAPI({'a@x.com': cancel_after_first})
    verifier = _verifier(api, sleep, verify_chunk_size=1, verify_min_chunk_size=1)

    with pytest.raises(OperationCancelled):
        asyncio.run(verifier.verify_batch(['a@x.com', 'b@x.com'], cancel_event=event))
    assert api.calls == ['a@x.com']


@respx.mock(assert_all_called=False)
def test_token_failure_fails_batch_up_front(sleep, respx_mock):
    respx_mock.get(TOKEN_URL).mock(return_value=Response(500))
    verify_route = respx_mock.get(VERIFY_URL).mock(return_value=Response(200, json={'code': 'ok'}))
    settings = make_settings()
    client_api = NinjaVerifierClient(settings)
    verifier = BatchVerifier(settings, TokenProvider(client_api.fetch_token, 60), client_api=client_api, sleep=sleep)

    with pytest.raises(ProviderUnavailable):
        asyncio.run(verifier.verify_batch(['a@x.com']))
    assert verify_route.call_count == 0


@respx.mock(assert_all_called=False)
def test_missing_api_key_is_provider_unavailable(sleep):
    settings = make_settings(verifier_api_key=None)
    client_api = NinjaVerifierClient(settings)
    verifier = BatchVerifier(settings, TokenProvider(client_api.fetch_token, 60), client_api=client_api, sleep=sleep)

    with pytest.raises(ProviderUnavailable, match='not configured'):
        asyncio.run(verifier.verify_batch(['a@x.com']))


@respx.mock
def test_http_round_trip_against_provider(sleep):
    token_route = respx.get(TOKEN_URL).mock(return_value=Response(200, json={'token': 'tok-1'}))

    def answer(request: httpx.Request) -> Response:
        email = request.url.params['email']
        if email.startswith('slow'):
            raise httpx.ReadTimeout('timed out', request=request)
        if email.startswith('busy'):
            return Response(429)
        return Response(200, json={'code': 'ko', 'message': 'Rejected'})

    verify_route = respx.get(VERIFY_URL).mock(side_effect=answer)
    settings = make_settings(verify_record_retries=1, verify_retry_delay_seconds=0)
    client_api = NinjaVerifierClient(settings)
    verifier = BatchVerifier(settings, TokenProvider(client_api.fetch_token, 60), client_api=client_api, sleep=sleep)

    records = asyncio.run(verifier.verify_batch(['gone@x.com', 'slow@x.com', 'busy@x.com']))

    assert token_route.call_count == 1
    assert token_route.calls[0].request.url.params['key'] == 'verify-key'
    assert verify_route.calls[0].request.url.params['token'] == 'tok-1'
    assert [(r.status, r.details) for r in records] == [
        (VerificationStatus.REJECTED, 'rejected'),
        (VerificationStatus.UNKNOWN, 'timeout'),
        (VerificationStatus.UNKNOWN, 'api_error'),
    ]


@respx.mock
def test_rejected_token_is_refreshed_once_for_the_batch(sleep):
    token_route = respx.get(TOKEN_URL).mock(
        side_effect=[Response(200, json={'token': 'old'}), Response(200, json={'token': 'new'})]
    )

    def answer(request: httpx.Request) -> Response:
        if request.url.params['token'] == 'old':
            return Response(401)
        return Response(200, json={'code': 'ok'})

    respx.get(VERIFY_URL).mock(side_effect=answer)
    settings = make_settings(verify_retry_delay_seconds=0)
    client_api = NinjaVerifierClient(settings)
    tokens = TokenProvider(client_api.fetch_token, 60)
    verifier = BatchVerifier(settings, tokens, client_api=client_api, sleep=sleep)

    records = asyncio.run(verifier.verify_batch(['a@x.com', 'b@x.com']))

    assert [(r.status, r.details) for r in records] == [(VerificationStatus.ACCEPTED, 'valid')] * 2
    assert token_route.call_count == 2
