from __future__ import annotations

from typing import Any

import httpx

from leadflow.config import Settings
from leadflow.errors import NetworkError, ProviderError, ProviderUnavailable, RateLimited, TokenRejected


class NinjaVerifierClient:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def fetch_token(self, client: httpx.AsyncClient) -> str:
        if not self.settings.verifier_api_key:
            raise ProviderUnavailable('VERIFIER_API_KEY is not configured')

        try:
            response = await client.get(
                self.settings.verifier_token_url,
                params={'key': self.settings.verifier_api_key},
                timeout=self.settings.verify_timeout_seconds,
            )
            response.raise_for_status()
            token = response.json().get('token')
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            raise ProviderUnavailable(f'Failed to get verification token: {exc}') from exc

        if not token:
            raise ProviderUnavailable('No token received from verification API')
        return str(token)

    async def verify(self, client: httpx.AsyncClient, email: str, token: str) -> Any:
        try:
            response = await client.get(
                self.settings.verifier_url,
                params={'email': email, 'token': token},
                headers={'Accept': 'application/json', 'Cache-Control': 'no-cache'},
                timeout=self.settings.verify_timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(f'Verification timed out for {email}', timeout=True) from exc
        except httpx.RequestError as exc:
            raise NetworkError(f'Verification request failed for {email}: {exc}') from exc

        if response.status_code == 429:
            raise RateLimited('Verification provider rate limit hit', 429)
        if response.status_code in (401, 403):
            raise TokenRejected('Verification token was rejected', response.status_code)
        if not response.is_success:
            raise ProviderError(f'HTTP {response.status_code}', response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError('Verification provider returned invalid JSON', response.status_code) from exc
