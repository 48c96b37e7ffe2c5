"""Tests for client report validation and redaction."""

import pytest

from analyzer.errors import IngestionFailure
from analyzer.ingest import ClientLogIngestor, ReportValidator
from analyzer.log_store import CaptureLogStore
from analyzer.redaction import REDACTED, TRIMMED


@pytest.fixture
def validator():
    return ReportValidator()


@pytest.fixture
def ingestor():
    return ClientLogIngestor(CaptureLogStore(), preview_limit=50)


class TestReportValidator:
    def test_minimal_report_valid(self, validator):
        assert validator.validate({"event": "fetch"}) == (True, [])

    def test_monitor_reports_valid(self, validator):
        reports = [
            {"event": "fetch", "url": "https://a/", "method": "GET",
             "request": {"headers": [["accept", "*/*"]], "body": None},
             "response": {"status": 200, "bodyPreview": "ok"}, "stack": "Error\n at x"},
            {"event": "xhr-load", "url": "https://a/", "method": "GET", "status": 200,
             "responsePreview": "{}", "stack": None},
            {"event": "ws-message", "id": "ws-abc123", "url": "wss://a/", "dataPreview": "hi"},
            {"event": "crypto-getRandomValues", "length": 16, "sample": [1, 2, 3]},
            {"event": "crypto-digest-end", "alg": "SHA-256", "outputBytes": 32},
        ]
        for report in reports:
            is_valid, errors = validator.validate(report)
            assert is_valid, errors

    def test_missing_event(self, validator):
        is_valid, errors = validator.validate({"url": "x"})
        assert is_valid is False
        assert any("event" in e for e in errors)

    def test_too_many_console_args(self, validator):
        is_valid, _ = validator.validate({"event": "console", "args": ["a"] * 21})
        assert is_valid is False

    def test_console_args_must_be_strings(self, validator):
        assert validator.validate({"event": "console", "args": ["null", "{}"]})[0] is True
        is_valid, errors = validator.validate({"event": "console", "args": ["a", None]})
        assert is_valid is False
        assert errors[0].startswith("args.1: ")

    def test_stats(self, validator):
        validator.validate({"event": "a"})
        validator.validate({})
        stats = validator.get_stats()
        assert stats["total"] == 2
        assert stats["accepted"] == 1
        assert stats["rejected"] == 1
        assert stats["rejected_events"] == {"<missing>": 1}

    def test_rejections_counted_per_event_kind(self, validator):
        validator.validate({"event": "console", "args": ["a"] * 21})
        validator.validate({"event": "console", "args": ["a"] * 25})
        validator.validate({"event": "xhr-load", "status": "ok"})
        validator.validate({"event": "fetch"})
        stats = validator.get_stats()
        assert stats["rejected_events"] == {"console": 2, "xhr-load": 1}
        assert stats["rejected_fields"] == {"args": 2, "status": 1}

    def test_messages_name_the_field(self, validator):
        _, errors = validator.validate({"event": "xhr-load", "status": "ok"})
        assert errors and errors[0].startswith("status: ")


class TestClientLogIngestor:
    def test_non_object_rejected(self, ingestor):
        with pytest.raises(IngestionFailure):
            ingestor.ingest(["event"])

    def test_invalid_report_rejected(self, ingestor):
        with pytest.raises(IngestionFailure):
            ingestor.ingest({"event": 5})

    def test_entry_shape(self, ingestor):
        entry = ingestor.ingest({"event": "xhr-send", "url": "https://a/", "method": "PUT"})
        assert entry["source"] == "client"
        assert entry["kind"] == "client-event"
        assert entry["event"] == "xhr-send"
        assert entry["target"] == "https://a/"
        assert "timestamp" in entry

    def test_caller_report_not_mutated(self, ingestor):
        report = {"event": "fetch", "request": {"headers": {"Cookie": "a"}, "body": "x"}}
        ingestor.ingest(report)
        assert report["request"] == {"headers": {"Cookie": "a"}, "body": "x"}

    def test_response_headers_redacted(self, ingestor):
        entry = ingestor.ingest({"event": "fetch", "response": {"headers": {"Set-Cookie": "s"}}})
        assert entry["data"]["response"]["headers"]["Set-Cookie"] == REDACTED

    def test_structured_body_preview_is_json(self, ingestor):
        entry = ingestor.ingest({"event": "fetch", "request": {"body": {"pin": "1234"}}})
        request = entry["data"]["request"]
        assert request["bodyPreview"] == '{"pin": "1234"}'
        assert request["bodyRedacted"] == {"pin": REDACTED}

    def test_opaque_body_kept_as_text(self, ingestor):
        entry = ingestor.ingest({"event": "xhr-send", "request": {"body": "a=1&b=2"}})
        assert entry["data"]["request"]["bodyRedacted"] == "a=1&b=2"

    def test_empty_body_dropped(self, ingestor):
        entry = ingestor.ingest({"event": "fetch", "request": {"headers": {}, "body": None}})
        assert entry["data"]["request"] == {"headers": {}}

    def test_previews_bounded(self, ingestor):
        long = "z" * 200
        entry = ingestor.ingest({
            "event": "fetch",
            "request": {"body": long},
            "response": {"bodyPreview": long},
            "dataPreview": long,
        })
        data = entry["data"]
        assert data["request"]["bodyPreview"] == "z" * 50 + TRIMMED
        assert data["request"]["bodyRedacted"] == "z" * 50 + TRIMMED
        assert data["response"]["bodyPreview"] == "z" * 50 + TRIMMED
        assert data["dataPreview"] == "z" * 50 + TRIMMED
