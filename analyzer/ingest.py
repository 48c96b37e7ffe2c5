"""Validates, redacts and stores reports from the in-page monitor."""

import copy
import json
import os
from collections import defaultdict

import jsonschema

from analyzer.errors import IngestionFailure
from analyzer.models import LogEntry
from analyzer.redaction import (
    DEFAULT_PREVIEW_LIMIT,
    preview,
    redact_body,
    redact_headers,
    truncate,
)

DEFAULT_SCHEMA_PATH = os.path.join(
    os.path.dirname(os.path.abspath(__file__)), "schemas", "client_report.json"
)


MISSING_EVENT = "<missing>"


class ReportValidator:
    """Validates monitor reports against the client report schema.

    Besides the totals, rejections are counted per ``event`` kind so the
    health endpoint shows which hooks in the page send malformed reports.
    """

    def __init__(self, schema_path=DEFAULT_SCHEMA_PATH):
        with open(schema_path, "r") as f:
            schema = json.load(f)

        self._validator = jsonschema.Draft202012Validator(schema)
        self._stats = {
            "total": 0,
            "accepted": 0,
            "rejected": 0,
            "rejected_events": defaultdict(int),
            "rejected_fields": defaultdict(int),
        }

    def validate(self, report):
        """Validate a report against the schema.

        Returns:
            tuple: (is_valid: bool, errors: list[str])
        """
        self._stats["total"] += 1
        errors = list(self._validator.iter_errors(report))

        if not errors:
            self._stats["accepted"] += 1
            return True, []

        self._stats["rejected"] += 1
        self._stats["rejected_events"][self.event_kind(report)] += 1
        messages = []
        for error in errors:
            field = ".".join(str(p) for p in error.absolute_path) or "(report)"
            self._stats["rejected_fields"][field] += 1
            messages.append(f"{field}: {error.message}")
        return False, messages

    @staticmethod
    def event_kind(report):
        event = report.get("event") if isinstance(report, dict) else None
        if isinstance(event, str) and event:
            return event[:64]
        return MISSING_EVENT

    def get_stats(self):
        stats = dict(self._stats)
        stats["rejected_events"] = dict(stats["rejected_events"])
        stats["rejected_fields"] = dict(stats["rejected_fields"])
        return stats


class ClientLogIngestor:
    """Turns a raw report from the in-page monitor into a stored LogEntry.

    Headers are always redacted. A request body is replaced by a truncated
    preview plus a redacted structural copy; the raw body is discarded.
    """

    def __init__(self, store, validator=None, preview_limit=DEFAULT_PREVIEW_LIMIT,
                 extra_header_keys=(), extra_body_keys=()):
        self._store = store
        self._validator = validator or ReportValidator()
        self._preview_limit = preview_limit
        self._header_keys = tuple(extra_header_keys)
        self._body_keys = tuple(extra_body_keys)

    @property
    def validator(self):
        return self._validator

    def ingest(self, report) -> dict:
        """Validate, redact and append ``report``. Returns the stored entry."""
        if not isinstance(report, dict):
            raise IngestionFailure("report must be a JSON object")

        is_valid, errors = self._validator.validate(report)
        if not is_valid:
            raise IngestionFailure("; ".join(errors))

        data = self.redact_report(report)
        return self._store.append(LogEntry(
            source="client",
            kind="client-event",
            event=data.get("event") or "client-event",
            target=data.get("url"),
            method=data.get("method"),
            data=data,
        ))

    def redact_report(self, report: dict) -> dict:
        data = copy.deepcopy(report)

        request = data.get("request")
        if isinstance(request, dict):
            if "headers" in request:
                request["headers"] = redact_headers(request["headers"], self._header_keys)
            if request.get("body"):
                body = request.pop("body")
                request["bodyPreview"] = preview(body, self._preview_limit)
                request["bodyRedacted"] = truncate(
                    redact_body(body, self._body_keys), self._preview_limit
                )
            else:
                request.pop("body", None)

        response = data.get("response")
        if isinstance(response, dict):
            if "headers" in response:
                response["headers"] = redact_headers(response["headers"], self._header_keys)
            if isinstance(response.get("bodyPreview"), str):
                response["bodyPreview"] = truncate(response["bodyPreview"], self._preview_limit)

        for key in ("responsePreview", "dataPreview", "stack"):
            if isinstance(data.get(key), str):
                data[key] = truncate(data[key], self._preview_limit)

        return data
