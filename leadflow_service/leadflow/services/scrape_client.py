from __future__ import annotations

import logging
from typing import Any

import httpx

from leadflow.config import Settings
from leadflow.errors import ExportFailure, NetworkError, ProviderError, ProviderOverloaded

logger = logging.getLogger(__name__)


class ScrapeProviderClient:
    """Thin wrapper over the scrape provider's submit / status / export endpoints."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient) -> None:
        self.settings = settings
        self.client = client
        self.base_url = settings.scrape_api_base_url.rstrip('/')

    async def start_run(self, query_url: str, fetch_count: int, file_format: str) -> str:
        payload = {'query_url': query_url, 'fetch_count': fetch_count, 'file_format': file_format}
        response = await self._request('POST', '/scrape', json=payload)

        if response.is_success:
            data = self._json(response)
            run_id = data.get('run_id') if isinstance(data, dict) else None
            if not run_id:
                raise ProviderError('No run ID received from scrape provider', response.status_code)
            return str(run_id)

        error_code, message = self._error_fields(response)
        if error_code in self.settings.overload_error_codes:
            raise ProviderOverloaded(message or 'Scrape provider is overloaded', response.status_code)
        raise ProviderError(f'HTTP {response.status_code}: {response.text[:500]}', response.status_code)

    async def get_status(self, run_id: str) -> str:
        response = await self._request('GET', f'/status/{run_id}')
        if not response.is_success:
            raise ProviderError(
                f'Failed to get run status: {response.status_code} {response.text[:500]}', response.status_code
            )
        data = self._json(response)
        status = data.get('status') if isinstance(data, dict) else None
        return str(status or '').strip().lower()

    async def export(self, run_id: str) -> dict[str, Any]:
        try:
            response = await self._request('GET', f'/export/{run_id}')
        except NetworkError as exc:
            raise ExportFailure(f'Failed to export scrape results: {exc}') from exc

        if not response.is_success:
            raise ExportFailure(f'Failed to export scrape results: {response.status_code} {response.text[:500]}')
        try:
            data = response.json()
        except ValueError as exc:
            raise ExportFailure('Scrape export was not valid JSON') from exc
        if not isinstance(data, dict):
            raise ExportFailure('Scrape export had an unexpected shape')
        return data

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        params = {'api_key': self.settings.scrape_api_key or ''}
        try:
            return await self.client.request(
                method,
                f'{self.base_url}{path}',
                params=params,
                headers={'Accept': 'application/json'},
                timeout=self.settings.request_timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(f'Scrape provider timed out on {method} {path}', timeout=True) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f'Scrape provider unreachable on {method} {path}: {exc}') from exc

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError('Scrape provider returned invalid JSON', response.status_code) from exc

    @staticmethod
    def _error_fields(response: httpx.Response) -> tuple[str | None, str | None]:
        try:
            data = response.json()
        except ValueError:
            return None, response.text
        if not isinstance(data, dict):
            return None, response.text
        logger.warning('Scrape provider error %s: %s', response.status_code, data)
        return data.get('error'), data.get('message')
