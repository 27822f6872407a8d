from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class FileFormat(str, Enum):
    CSV = 'csv'
    XLSX = 'xlsx'

    @classmethod
    def coerce(cls, value: str | FileFormat | None) -> FileFormat:
        if isinstance(value, FileFormat):
            return value
        return cls.XLSX if (value or '').strip().lower() == 'xlsx' else cls.CSV


class VerificationStatus(str, Enum):
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'
    UNKNOWN = 'unknown'


class ScrapeJob(BaseModel):
    id: str
    source_url: str
    requested_count: int
    provider_count: int
    file_format: FileFormat = FileFormat.CSV
    file_name: str
    owner_id: str | None = None
    credits: int = 0
    status: JobStatus = JobStatus.PENDING
    extracted_count: int = 0
    download_link: str | None = None
    error_message: str | None = None
    provider_run_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None


class Lead(BaseModel):
    job_id: str
    name: str | None = None
    title: str | None = None
    company: str | None = None
    email: str | None = None
    phone: str | None = None
    location: str | None = None
    linkedin_url: str | None = None
    company_website: str | None = None
    industry: str | None = None
    company_size: str | None = None


class VerificationRecord(BaseModel):
    email: str
    first_name: str
    status: VerificationStatus
    details: str


class ScrapeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_url: str | None = Field(default=None, validation_alias=AliasChoices('sourceUrl', 'source_url', 'url'))
    requested_count: int | None = Field(
        default=None, validation_alias=AliasChoices('requestedCount', 'requested_count', 'leadsCount')
    )
    file_name: str | None = Field(default=None, validation_alias=AliasChoices('fileName', 'file_name'))
    file_format: str | None = Field(default=None, validation_alias=AliasChoices('fileFormat', 'file_format'))
    owner_id: str | None = Field(default=None, validation_alias=AliasChoices('ownerId', 'owner_id', 'user_id'))


class SubmitResponse(BaseModel):
    id: str
    status: JobStatus
    message: str
