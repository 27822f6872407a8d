from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends, HTTPException, UploadFile
from fastapi.responses import Response

from leadflow.dependencies import get_batch_verifier
from leadflow.errors import ProviderUnavailable, ValidationError
from leadflow.jobs.batch_verifier import BatchVerifier
from leadflow.models import VerificationRecord, VerificationStatus
from leadflow.utils.csv_export import records_to_csv
from leadflow.utils.file_loader import load_email_list

logger = logging.getLogger(__name__)

router = APIRouter()


async def _run_verification(verifier: BatchVerifier, emails: list[str]) -> Response:
    try:
        records = await verifier.verify_batch(emails)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ProviderUnavailable as exc:
        logger.error('Verification provider unavailable: %s', exc)
        raise HTTPException(status_code=502, detail='Email verification service is unavailable') from exc
    except Exception as exc:
        logger.exception('Verification error')
        raise HTTPException(status_code=500, detail='Internal server error') from exc

    return _csv_response(records)


def _csv_response(records: list[VerificationRecord]) -> Response:
    valid_count = sum(1 for record in records if record.status == VerificationStatus.ACCEPTED)
    return Response(
        content=records_to_csv(records),
        media_type='text/csv; charset=utf-8',
        headers={
            'Content-Disposition': 'attachment; filename=verified_emails.csv',
            'X-Processed-Count': str(len(records)),
            'X-Valid-Count': str(valid_count),
        },
    )


@router.post('/verify-emails')
async def verify_emails(
    emails: list[str] = Body(...), verifier: BatchVerifier = Depends(get_batch_verifier)
) -> Response:
    return await _run_verification(verifier, emails)


@router.post('/verify-emails/upload')
async def verify_email_file(file: UploadFile, verifier: BatchVerifier = Depends(get_batch_verifier)) -> Response:
    emails = await load_email_list(file)
    return await _run_verification(verifier, emails)
