"""Roster ingestion: Google Sheets CSV exports and local CSV files."""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass
from typing import Iterable, Sequence
from urllib.parse import parse_qs, urlparse

import requests

from .errors import UpstreamError, ValidationError

_SPREADSHEET_ID_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
_GID_RE = re.compile(r"gid=(\d+)")
_WS_RE = re.compile(r"\s+")

NAME_ALIASES = ("Full Name", "Name")
FIRST_NAME_ALIASES = ("First Name", "First")
LAST_NAME_ALIASES = ("Last Name", "Last", "Surname")
EMAIL_ALIASES = ("Email Address", "Email")

EXPORT_URL = "https://docs.google.com/spreadsheets/d/{sheet_id}/export?format=csv&gid={gid}"
FETCH_TIMEOUT = 30


@dataclass(frozen=True)
class RecipientRow:
    full_name: str
    email: str | None = None

    def to_dict(self) -> dict:
        return {"fullName": self.full_name, "email": self.email}


def normalize_name(value: str | None) -> str:
    return _WS_RE.sub(" ", (value or "").strip())


def make_row(full_name: str | None, email: str | None = None) -> RecipientRow | None:
    """Build a row, or None when the name is blank after normalising."""
    name = normalize_name(full_name)
    if not name:
        return None
    cleaned_email = (email or "").strip() or None
    return RecipientRow(full_name=name, email=cleaned_email)


def parse_spreadsheet_id(url: str) -> str | None:
    match = _SPREADSHEET_ID_RE.search(url or "")
    return match.group(1) if match else None


def parse_gid(url: str) -> str:
    parsed = urlparse(url or "")
    query_gid = parse_qs(parsed.query).get("gid")
    if query_gid and query_gid[0]:
        return query_gid[0]
    match = _GID_RE.search(parsed.fragment) or _GID_RE.search(url or "")
    return match.group(1) if match else "0"


def parse_csv(text: str) -> list[list[str]]:
    cleaned = (text or "").lstrip("\ufeff")
    reader = csv.reader(io.StringIO(cleaned))
    return [record for record in reader if any(cell.strip() for cell in record)]


def _find_column(header: Sequence[str], aliases: Iterable[str]) -> int:
    lowered = [alias.lower() for alias in aliases]
    for idx, value in enumerate(header):
        if value.lower() in lowered:
            return idx
    return -1


def _cell(record: Sequence[str], idx: int) -> str:
    if idx < 0 or idx >= len(record):
        return ""
    return record[idx] or ""


def rows_from_records(records: list[list[str]]) -> list[RecipientRow]:
    """Map a header + data grid to recipient rows.

    Accepts a ``Full Name`` column or a ``First Name`` + ``Last Name`` pair, and
    an optional email column. Rows whose name is blank are dropped.
    """
    if not records:
        raise ValidationError("No rows found")
    header = [cell.strip().lstrip("\ufeff") for cell in records[0]]
    name_idx = _find_column(header, NAME_ALIASES)
    first_idx = _find_column(header, FIRST_NAME_ALIASES)
    last_idx = _find_column(header, LAST_NAME_ALIASES)
    email_idx = _find_column(header, EMAIL_ALIASES)
    if name_idx < 0 and (first_idx < 0 or last_idx < 0):
        raise ValidationError(
            "Missing 'Full Name' or 'First Name'+'Last Name' columns"
        )

    rows: list[RecipientRow] = []
    for record in records[1:]:
        if name_idx >= 0:
            full_name = _cell(record, name_idx)
        else:
            full_name = f"{_cell(record, first_idx)} {_cell(record, last_idx)}"
        row = make_row(full_name, _cell(record, email_idx))
        if row:
            rows.append(row)
    if not rows:
        raise ValidationError("No valid rows")
    return rows


def rows_from_payload(payload) -> list[RecipientRow]:
    """Rows supplied directly in a JSON request body.

    Every entry must yield a row, so results line up with the caller's list
    index for index; a blank ``fullName`` rejects the whole request.
    """
    if not isinstance(payload, list):
        raise ValidationError("rows must be a list")
    rows: list[RecipientRow] = []
    for idx, item in enumerate(payload):
        if not isinstance(item, dict):
            raise ValidationError(f"rows[{idx}] must be an object")
        full_name = item.get("fullName")
        email = item.get("email")
        if not isinstance(full_name, str) or (email is not None and not isinstance(email, str)):
            raise ValidationError(f"rows[{idx}] has a non-string fullName or email")
        row = make_row(full_name, email)
        if row is None:
            raise ValidationError(f"rows[{idx}].fullName required")
        rows.append(row)
    return rows


def fetch_sheet_rows(sheet_url: str, timeout: int = FETCH_TIMEOUT) -> list[RecipientRow]:
    sheet_id = parse_spreadsheet_id(sheet_url)
    if not sheet_id:
        raise ValidationError("Invalid Google Sheets URL")
    export_url = EXPORT_URL.format(sheet_id=sheet_id, gid=parse_gid(sheet_url))
    try:
        resp = requests.get(export_url, timeout=timeout)
    except requests.RequestException as exc:
        raise UpstreamError(f"CSV export error: {exc}") from exc
    if not resp.ok:
        raise UpstreamError(f"CSV export error: {resp.text}")
    return rows_from_records(parse_csv(resp.content.decode("utf-8-sig", errors="replace")))


def read_csv_rows(path: str) -> list[RecipientRow]:
    with open(path, "r", encoding="utf-8-sig", newline="") as fh:
        return rows_from_records(parse_csv(fh.read()))
