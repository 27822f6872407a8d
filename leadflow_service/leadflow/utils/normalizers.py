"""Pure mapping functions from provider payloads to the service's own shapes.

Verification responses arrive in several competing vocabularies (``code``
ok/ko/mb, boolean ``valid``/``is_valid``, ``status``/``result`` words, risk
levels and assorted flags). ``classify_response`` walks an ordered rule list and
always lands on some ``(status, detail)`` pair.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any, NamedTuple

from leadflow.models import Lead, VerificationRecord, VerificationStatus

POSITIVE_WORDS = {'valid', 'deliverable', 'accepted', 'ok'}
NEGATIVE_WORDS = {'invalid', 'undeliverable', 'rejected', 'ko'}

LEAD_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    'name': ('name', 'full_name', 'fullName'),
    'title': ('title', 'job_title', 'jobTitle'),
    'company': ('company', 'company_name', 'companyName', 'organization_name'),
    'email': ('email', 'email_address', 'emailAddress'),
    'phone': ('phone', 'phone_number', 'phoneNumber'),
    'location': ('location', 'city'),
    'linkedin_url': ('linkedinUrl', 'linkedin_url'),
    'company_website': ('companyWebsite', 'company_website', 'website'),
    'industry': ('industry',),
    'company_size': ('companySize', 'company_size', 'employees'),
}


def slug(value: Any) -> str | None:
    if value is None:
        return None
    text = re.sub(r'\s+', '_', str(value).strip().lower())
    return text or None


def _word(data: dict, key: str) -> str:
    value = data.get(key)
    return value.strip().lower() if isinstance(value, str) else ''


def _flag(data: dict, *keys: str) -> bool:
    return any(data.get(key) is True for key in keys)


def _message(data: dict, default: str) -> str:
    return slug(data.get('message')) or default


class Rule(NamedTuple):
    matches: Callable[[dict], bool]
    status: VerificationStatus
    detail: Callable[[dict], str]


def _fixed(detail: str) -> Callable[[dict], str]:
    return lambda data: detail


def _is_positive(data: dict) -> bool:
    return (
        _word(data, 'code') == 'ok'
        or data.get('valid') is True
        or data.get('is_valid') is True
        or _word(data, 'status') in POSITIVE_WORDS
        or _word(data, 'result') in POSITIVE_WORDS
    )


def _is_negative(data: dict) -> bool:
    return (
        _word(data, 'code') == 'ko'
        or data.get('valid') is False
        or data.get('is_valid') is False
        or _word(data, 'status') in NEGATIVE_WORDS
        or _word(data, 'result') in NEGATIVE_WORDS
    )


def _is_spam_block(data: dict) -> bool:
    return _flag(data, 'spam', 'is_spam', 'spam_block') or 'spam' in _word(data, 'message')


RULES: tuple[Rule, ...] = (
    Rule(lambda d: bool(d.get('error')), VerificationStatus.UNKNOWN, _fixed('api_error')),
    Rule(lambda d: _flag(d, 'disposable', 'is_disposable'), VerificationStatus.REJECTED, _fixed('disposable')),
    Rule(_is_spam_block, VerificationStatus.REJECTED, _fixed('spam_block')),
    Rule(
        lambda d: _flag(d, 'catch_all', 'is_catch_all', 'catchall', 'accept_all'),
        VerificationStatus.UNKNOWN,
        _fixed('catch_all'),
    ),
    Rule(lambda d: _word(d, 'code') == 'mb', VerificationStatus.UNKNOWN, lambda d: _message(d, 'catch_all')),
    Rule(_is_positive, VerificationStatus.ACCEPTED, lambda d: _message(d, 'valid')),
    Rule(_is_negative, VerificationStatus.REJECTED, lambda d: _message(d, 'invalid')),
    Rule(lambda d: _word(d, 'risk') == 'high', VerificationStatus.REJECTED, _fixed('high_risk')),
    Rule(lambda d: _word(d, 'risk') == 'medium', VerificationStatus.UNKNOWN, _fixed('medium_risk')),
    Rule(lambda d: _word(d, 'risk') == 'low', VerificationStatus.ACCEPTED, _fixed('low_risk')),
    Rule(lambda d: _flag(d, 'role', 'is_role', 'role_based'), VerificationStatus.UNKNOWN, _fixed('role_account')),
)


def classify_response(raw: Any) -> tuple[VerificationStatus, str]:
    if not isinstance(raw, dict):
        return VerificationStatus.UNKNOWN, 'unknown_response'
    for rule in RULES:
        if rule.matches(raw):
            return rule.status, rule.detail(raw)
    return VerificationStatus.UNKNOWN, _message(raw, 'unknown_response')


def first_name_from_email(email: str) -> str:
    local = email.split('@')[0]
    return re.split(r'[._]', local)[0] or 'unknown'


def make_record(email: str, status: VerificationStatus, details: str) -> VerificationRecord:
    return VerificationRecord(email=email, first_name=first_name_from_email(email), status=status, details=details)


def failed_record(email: str) -> VerificationRecord:
    return make_record(email, VerificationStatus.UNKNOWN, 'verification_failed')


def _first_present(raw: dict, keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ''):
            return str(value)
    return None


def normalize_lead(raw: dict, job_id: str) -> Lead:
    fields = {name: _first_present(raw, keys) for name, keys in LEAD_FIELD_ALIASES.items()}
    if not fields['name']:
        first = _first_present(raw, ('first_name', 'firstName'))
        last = _first_present(raw, ('last_name', 'lastName'))
        fields['name'] = ' '.join(part for part in (first, last) if part) or None
    return Lead(job_id=job_id, **fields)
