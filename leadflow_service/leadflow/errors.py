from __future__ import annotations


class LeadflowError(Exception):
    """Base class for every error the service raises on purpose."""


class ValidationError(LeadflowError):
    """Caller input was rejected; never retried."""


class TooManyRecords(ValidationError):
    def __init__(self, count: int, limit: int) -> None:
        super().__init__(f'Maximum {limit} emails allowed per request, got {count}')
        self.count = count
        self.limit = limit


class ProviderError(LeadflowError):
    """The provider answered, but not with something usable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderOverloaded(ProviderError):
    pass


class RateLimited(ProviderError):
    pass


class TokenRejected(ProviderError):
    """The verifier refused the access token (401/403)."""


class NetworkError(LeadflowError):
    def __init__(self, message: str, timeout: bool = False) -> None:
        super().__init__(message)
        self.timeout = timeout


class OverloadExceeded(LeadflowError):
    def __init__(self, attempts: int) -> None:
        super().__init__(
            f'Scrape service is currently overloaded (gave up after {attempts} attempts). '
            'Please try again in a few minutes.'
        )
        self.attempts = attempts


class ProviderRunFailed(LeadflowError):
    pass


class PollTimeout(LeadflowError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f'Scrape run did not finish after {attempts} status checks')
        self.attempts = attempts


class ExportFailure(LeadflowError):
    """The run succeeded but its results could not be delivered."""


class ProviderUnavailable(LeadflowError):
    pass


class JobNotFound(LeadflowError):
    pass


class JobNotCancellable(LeadflowError):
    pass


class OperationCancelled(LeadflowError):
    pass
