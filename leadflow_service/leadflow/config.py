from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    app_name: str = 'leadflow'
    app_version: str = '1.0.0'
    log_level: str = 'INFO'

    request_timeout_seconds: float = Field(default=30.0, gt=0)
    jitter_low: float = Field(default=0.85, gt=0, le=1)
    jitter_high: float = Field(default=1.15, ge=1)

    # Scrape provider (AmpleLeads Apollo actor)
    scrape_api_base_url: str = 'https://api.ampleleads.io/v1/apollo'
    scrape_api_key: str | None = None
    source_url_pattern: str = r'^https://(app\.)?apollo\.io/#/people'
    overload_error_codes: tuple[str, ...] = ('overloaded', 'apollo_scraper_overloaded')

    max_requested_count: int = Field(default=50_000, ge=1)
    provider_min_count: int = Field(default=1, ge=1)
    provider_max_count: int = Field(default=50_000, ge=1)

    submit_max_attempts: int = Field(default=5, ge=1, le=20)
    submit_base_delay_seconds: float = Field(default=10.0, ge=0)

    poll_interval_seconds: float = Field(default=5.0, ge=0)
    poll_backoff_factor: float = Field(default=1.5, ge=1)
    poll_max_interval_seconds: float = Field(default=10.0, ge=0)
    poll_max_attempts: int = Field(default=30, ge=1, le=200)

    # Email verifier (mailtester ninja)
    verifier_token_url: str = 'https://token.mailtester.ninja/token'
    verifier_url: str = 'https://happy.mailtester.ninja/ninja'
    verifier_api_key: str | None = None
    token_ttl_seconds: float = Field(default=23 * 60 * 60, gt=0)

    verify_max_batch: int = Field(default=1000, ge=1, le=50_000)
    verify_chunk_size: int = Field(default=10, ge=1)
    verify_min_chunk_size: int = Field(default=2, ge=1)
    verify_max_chunk_size: int = Field(default=25, ge=1)
    verify_max_concurrency: int = Field(default=10, ge=1)
    verify_rate_per_second: float = Field(default=20.0, gt=0)
    verify_chunk_delay_seconds: float = Field(default=0.5, ge=0)
    verify_max_chunk_delay_seconds: float = Field(default=3.0, ge=0)
    verify_recovery_chunks: int = Field(default=3, ge=1)
    verify_record_retries: int = Field(default=2, ge=0)
    verify_retry_delay_seconds: float = Field(default=0.5, ge=0)
    verify_timeout_seconds: float = Field(default=10.0, gt=0)

    # Job store (Supabase PostgREST); in-memory when unset
    supabase_url: str | None = None
    supabase_service_role_key: str | None = None
    jobs_table: str = 'scraper_requests'
    leads_table: str = 'scraper_leads'

    @model_validator(mode='after')
    def _check_ranges(self) -> 'Settings':
        if self.provider_min_count > self.provider_max_count:
            raise ValueError('provider_min_count must not exceed provider_max_count')
        if not self.verify_min_chunk_size <= self.verify_chunk_size <= self.verify_max_chunk_size:
            raise ValueError('verify_chunk_size must lie within [verify_min_chunk_size, verify_max_chunk_size]')
        if self.verify_chunk_delay_seconds > self.verify_max_chunk_delay_seconds:
            raise ValueError('verify_chunk_delay_seconds must not exceed verify_max_chunk_delay_seconds')
        if self.log_level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f'log_level must be a valid logging level, got {self.log_level!r}')
        return self

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()
