from __future__ import annotations

import csv
import io
from collections.abc import Iterable

from leadflow.models import VerificationRecord

REPORT_HEADER = ['email', 'firstName', 'status', 'details']


def records_to_csv(records: Iterable[VerificationRecord]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(REPORT_HEADER)

    for record in records:
        writer.writerow([record.email, record.first_name, record.status.value, record.details])

    return output.getvalue()
