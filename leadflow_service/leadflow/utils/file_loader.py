from __future__ import annotations

import csv
import io
import re

from fastapi import HTTPException, UploadFile
from openpyxl import load_workbook

ALLOWED_SUFFIXES = {'.csv', '.xlsx', '.txt'}


async def load_email_list(file: UploadFile) -> list[str]:
    suffix = None
    if file.filename and '.' in file.filename:
        suffix = file.filename[file.filename.rfind('.'):].lower()

    if suffix not in ALLOWED_SUFFIXES:
        raise HTTPException(status_code=400, detail='Only .csv, .xlsx and .txt files are supported')

    raw_bytes = await file.read()
    if not raw_bytes:
        raise HTTPException(status_code=400, detail='Uploaded file is empty')

    if suffix == '.csv':
        values = _parse_csv(raw_bytes)
    elif suffix == '.xlsx':
        values = _parse_xlsx(raw_bytes)
    else:
        values = _parse_text(raw_bytes)

    if not values:
        raise HTTPException(status_code=400, detail='No emails found in uploaded file')

    return values


def _parse_csv(raw_bytes: bytes) -> list[str]:
    decoded = raw_bytes.decode('utf-8-sig', errors='ignore')
    reader = csv.reader(io.StringIO(decoded))
    rows = [row[0].strip() for row in reader if row and row[0] and row[0].strip()]
    # Drop a header row such as "email" or "Email Address".
    if rows and '@' not in rows[0]:
        rows = rows[1:]
    return rows


def _parse_text(raw_bytes: bytes) -> list[str]:
    decoded = raw_bytes.decode('utf-8-sig', errors='ignore')
    return [item.strip() for item in re.split(r'\r?\n|,', decoded) if item.strip()]


def _parse_xlsx(raw_bytes: bytes) -> list[str]:
    buffer = io.BytesIO(raw_bytes)
    workbook = load_workbook(buffer, read_only=True, data_only=True)
    sheet = workbook.active
    rows: list[str] = []

    for row in sheet.iter_rows(min_col=1, max_col=1, values_only=True):
        if not row:
            continue
        value = row[0]
        if value is None:
            continue
        value_str = str(value).strip()
        if value_str:
            rows.append(value_str)

    workbook.close()
    if rows and '@' not in rows[0]:
        rows = rows[1:]
    return rows
