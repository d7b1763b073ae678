import pytest
import requests

from certbatch.shared import roster
from certbatch.shared.errors import UpstreamError, ValidationError
from certbatch.shared.roster import (
    RecipientRow,
    fetch_sheet_rows,
    parse_csv,
    parse_gid,
    parse_spreadsheet_id,
    read_csv_rows,
    rows_from_payload,
    rows_from_records,
)

SHEET = "https://docs.google.com/spreadsheets/d/1AbC-d_EF/edit"


def test_full_name_and_email_columns():
    rows = rows_from_records(
        [["Full Name", "Email Address"], ["  Jane   Doe ", " jane@x.com "], ["John Roe", ""]]
    )

    assert rows == [
        RecipientRow("Jane Doe", "jane@x.com"),
        RecipientRow("John Roe", None),
    ]


def test_first_and_last_name_columns_are_joined():
    rows = rows_from_records([["First Name", "Surname", "email"], ["Ada", "Lovelace", "a@x.com"]])

    assert rows == [RecipientRow("Ada Lovelace", "a@x.com")]


def test_blank_names_dropped():
    rows = rows_from_records([["Name"], ["  "], ["Grace Hopper"]])

    assert [row.full_name for row in rows] == ["Grace Hopper"]


def test_missing_name_columns_rejected():
    with pytest.raises(ValidationError) as excinfo:
        rows_from_records([["Email"], ["a@x.com"]])
    assert "Full Name" in str(excinfo.value)


def test_no_valid_rows_rejected():
    with pytest.raises(ValidationError):
        rows_from_records([["Full Name"], [""]])
    with pytest.raises(ValidationError):
        rows_from_records([])


def test_parse_csv_strips_bom_and_blank_lines():
    records = parse_csv("\ufeffFull Name,Email\r\n\r\nJane Doe,jane@x.com\r\n,\r\n")

    assert records == [["Full Name", "Email"], ["Jane Doe", "jane@x.com"]]


def test_sheet_url_parsing():
    assert parse_spreadsheet_id(SHEET) == "1AbC-d_EF"
    assert parse_spreadsheet_id("https://example.com/nope") is None
    assert parse_gid(SHEET) == "0"
    assert parse_gid(SHEET + "#gid=123") == "123"
    assert parse_gid(SHEET + "?gid=77#gid=123") == "77"


def test_rows_from_payload():
    rows = rows_from_payload(
        [{"fullName": " Jane  Doe", "email": "jane@x.com"}, {"fullName": "John Roe", "email": None}]
    )

    assert rows == [RecipientRow("Jane Doe", "jane@x.com"), RecipientRow("John Roe", None)]


@pytest.mark.parametrize(
    "payload, message",
    [
        ([{"fullName": "Ada"}, {"fullName": "  "}], "rows[1].fullName required"),
        ([{"email": "a@x.com"}], "rows[0] has a non-string fullName or email"),
        ([{"fullName": "Ada", "email": 7}], "rows[0] has a non-string fullName or email"),
    ],
)
def test_rows_from_payload_rejects_unusable_entries(payload, message):
    with pytest.raises(ValidationError) as excinfo:
        rows_from_payload(payload)
    assert str(excinfo.value) == message


def test_rows_from_payload_rejects_non_lists():
    with pytest.raises(ValidationError):
        rows_from_payload("nope")
    with pytest.raises(ValidationError):
        rows_from_payload(["nope"])


def test_read_csv_rows(tmp_path):
    path = tmp_path / "roster.csv"
    path.write_text("\ufeffName,Email\nJane Doe,jane@x.com\n", encoding="utf-8")

    assert read_csv_rows(str(path)) == [RecipientRow("Jane Doe", "jane@x.com")]


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self.content = body.encode("utf-8")
        self.text = body

    @property
    def ok(self):
        return self.status_code < 400


def test_fetch_sheet_rows_uses_export_url(monkeypatch):
    seen = {}

    def fake_get(url, timeout=None):
        seen["url"] = url
        seen["timeout"] = timeout
        return FakeResponse(200, "Full Name,Email\nJane Doe,jane@x.com\n")

    monkeypatch.setattr(roster.requests, "get", fake_get)

    rows = fetch_sheet_rows(SHEET + "#gid=5")

    assert rows == [RecipientRow("Jane Doe", "jane@x.com")]
    assert seen["url"] == (
        "https://docs.google.com/spreadsheets/d/1AbC-d_EF/export?format=csv&gid=5"
    )
    assert seen["timeout"] == roster.FETCH_TIMEOUT


def test_fetch_sheet_rows_upstream_failures(monkeypatch):
    monkeypatch.setattr(roster.requests, "get", lambda url, timeout=None: FakeResponse(403, "denied"))
    with pytest.raises(UpstreamError) as excinfo:
        fetch_sheet_rows(SHEET)
    assert "denied" in str(excinfo.value)

    def raising(url, timeout=None):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(roster.requests, "get", raising)
    with pytest.raises(UpstreamError):
        fetch_sheet_rows(SHEET)


def test_fetch_sheet_rows_rejects_bad_url():
    with pytest.raises(ValidationError):
        fetch_sheet_rows("https://example.com/sheet")
