from datetime import UTC, datetime

from ecpoll.models import CallRecord, extract_urls, parse_rfc2822_datetime, parse_rfc3339_datetime


def test_call_record_from_twilio_payload() -> None:
    record = CallRecord.from_twilio(
        {
            "sid": "CA1",
            "from": "+15550001111",
            "to": "+15551230000",
            "status": "completed",
            "start_time": "Tue, 10 Feb 2026 12:00:00 +0000",
            "end_time": "Tue, 10 Feb 2026 12:00:42 +0000",
            "duration": "42",
        }
    )
    assert record.start_time == datetime(2026, 2, 10, 12, 0, tzinfo=UTC)
    assert record.duration_seconds == 42
    d = record.to_json_dict()
    assert d["from"] == "+15550001111"
    assert d["end_time"] == "2026-02-10T12:00:42+00:00"


def test_call_record_tolerates_missing_fields() -> None:
    record = CallRecord.from_twilio({"sid": "CA2", "duration": "n/a", "start_time": "not a date"})
    assert record.start_time is None
    assert record.duration_seconds is None
    assert record.status == ""


def test_datetime_parsers() -> None:
    assert parse_rfc3339_datetime("2026-02-10T12:34:56Z") == datetime(2026, 2, 10, 12, 34, 56, tzinfo=UTC)
    assert parse_rfc2822_datetime(None) is None
    assert parse_rfc2822_datetime("Tue, 10 Feb 2026 12:34:56 -0000").tzinfo is not None


def test_extract_urls_dedupes_and_strips_punctuation() -> None:
    text = "Go to https://a.example.com/x, then (https://b.example.com/y) or https://a.example.com/x."
    assert extract_urls(text) == ("https://a.example.com/x", "https://b.example.com/y")
