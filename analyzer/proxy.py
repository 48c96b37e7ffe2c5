"""Proxy forwarding pipeline: forward, classify, log, inject."""

import codecs
import json
import logging
from dataclasses import dataclass

import requests

from analyzer.errors import BodyDecodeFailure, MissingTarget, UnparseableBody, UpstreamFailure
from analyzer.models import LogEntry
from analyzer.redaction import (
    DEFAULT_PREVIEW_LIMIT,
    UNPARSEABLE,
    redact_body,
    redact_headers,
    truncate,
)

logger = logging.getLogger(__name__)

BINARY_PLACEHOLDER = "[BINARY_OR_NON_TEXT_RESPONSE]"
READ_FAILURE_PLACEHOLDER = "[FAILED_TO_READ_BODY]"
DEFAULT_HTML_TYPE = "text/html; charset=utf-8"
DEFAULT_BINARY_TYPE = "application/octet-stream"

# host/origin would leak the proxy's identity; framing and content coding
# are negotiated by the outbound client, which must be able to decode the body
_DROPPED_REQUEST_HEADERS = (
    "host",
    "origin",
    "content-length",
    "transfer-encoding",
    "accept-encoding",
)
_BODYLESS_METHODS = ("GET", "HEAD")


@dataclass(frozen=True)
class ProxyResult:
    status: int
    body: bytes
    content_type: str
    injected: bool = False


def is_html(content_type: str) -> bool:
    return "text/html" in content_type.lower()


def is_json(content_type: str) -> bool:
    return "application/json" in content_type.lower()


def is_text_like(content_type: str) -> bool:
    ct = content_type.lower()
    return "text/html" in ct or "application/json" in ct or "text/" in ct


def build_outbound_headers(headers) -> dict:
    return {
        k: v for k, v in (headers or {}).items()
        if k.lower() not in _DROPPED_REQUEST_HEADERS
    }


def response_charset(response) -> str:
    """The charset a text body is written in: the declared one, else UTF-8.

    requests reports ISO-8859-1 for any ``text/*`` type without a charset
    parameter, so its guess is only trusted when the header names one.
    """
    content_type = response.headers.get("content-type", "")
    encoding = None
    if "charset" in content_type.lower():
        encoding = response.encoding
    if not encoding:
        return "utf-8"
    try:
        codecs.lookup(encoding)
    except LookupError:
        logger.debug("Unknown charset %r, decoding as utf-8", encoding)
        return "utf-8"
    return encoding


class ProxyPipeline:
    """Relays one request to its target origin and records the exchange.

    Every exchange that reaches the origin (or fails to) produces exactly
    one entry in the capture log: ``resource`` for binary responses,
    ``request`` for text-like ones and ``error`` for upstream failures.
    """

    def __init__(self, store, session=None, timeout=30.0,
                 preview_limit=DEFAULT_PREVIEW_LIMIT, injector=None,
                 extra_header_keys=(), extra_body_keys=()):
        self._store = store
        self._session = session or requests.Session()
        self._timeout = timeout
        self._preview_limit = preview_limit
        self._injector = injector
        self._header_keys = tuple(extra_header_keys)
        self._body_keys = tuple(extra_body_keys)

    def forward(self, method, target, headers=None, body=None) -> ProxyResult:
        """Forward ``method target`` and return what to send back to the caller.

        ``body`` is the already-parsed request body (dict/list) or None.
        Raises MissingTarget when ``target`` is empty and UpstreamFailure
        when the origin cannot be reached; the latter is logged first.
        """
        if not target:
            raise MissingTarget()

        method = method.upper()
        out_headers = build_outbound_headers(headers)
        data = None
        if method not in _BODYLESS_METHODS and body is not None:
            data = json.dumps(body)
            out_headers = {k: v for k, v in out_headers.items() if k.lower() != "content-type"}
            out_headers["content-type"] = "application/json"

        try:
            response = self._session.request(
                method,
                target,
                headers=out_headers,
                data=data,
                timeout=self._timeout,
                stream=True,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            self._record_failure(method, target, e)
            raise UpstreamFailure(str(e)) from e

        try:
            return self._handle_response(method, target, out_headers, data, response)
        finally:
            response.close()

    def _record_failure(self, method, target, exc):
        logger.warning("Upstream failure for %s %s: %s", method, target, exc)
        self._store.append(LogEntry(
            source="proxy",
            kind="error",
            target=target,
            method=method,
            error=str(exc),
        ))

    def _handle_response(self, method, target, out_headers, data, response):
        content_type = response.headers.get("content-type", "")
        response_headers = redact_headers(response.headers, self._header_keys)

        if not is_text_like(content_type):
            try:
                payload = response.content
            except requests.RequestException as e:
                self._record_failure(method, target, e)
                raise UpstreamFailure(str(e)) from e
            self._store.append(LogEntry(
                source="proxy",
                kind="resource",
                target=target,
                method=method,
                response={
                    "status": response.status_code,
                    "headers": response_headers,
                    "bodyPreview": BINARY_PLACEHOLDER,
                },
            ))
            return ProxyResult(response.status_code, payload,
                               content_type or DEFAULT_BINARY_TYPE)

        try:
            raw = self._read_body(response)
            encoding = response_charset(response)
        except BodyDecodeFailure as e:
            logger.warning("Could not read body from %s: %s", target, e)
            raw = READ_FAILURE_PLACEHOLDER.encode("utf-8")
            encoding = "utf-8"
        text = raw.decode(encoding, errors="replace")

        response_record = {
            "status": response.status_code,
            "headers": response_headers,
            "bodyPreview": truncate(text, self._preview_limit),
        }
        if is_json(content_type):
            response_record["bodyRedacted"] = truncate(
                redact_body(text, self._body_keys), self._preview_limit
            )

        self._store.append(LogEntry(
            source="proxy",
            kind="request",
            target=target,
            method=method,
            request={
                "headers": redact_headers(out_headers, self._header_keys),
                "bodyPreview": truncate(data, self._preview_limit),
                "bodyRedacted": self._redacted_request_body(data),
            },
            response=response_record,
        ))

        # the origin's bytes go back as-is; only the snippet is spliced in
        injected = False
        if is_html(content_type) and self._injector is not None:
            raw, injected = self._injector(raw, encoding)

        return ProxyResult(
            response.status_code,
            raw,
            content_type or DEFAULT_HTML_TYPE,
            injected,
        )

    @staticmethod
    def _read_body(response) -> bytes:
        try:
            return response.content
        except requests.RequestException as e:
            raise BodyDecodeFailure(str(e)) from e

    def _redacted_request_body(self, data):
        if data is None:
            return None
        try:
            return self._parse_and_redact(data)
        except UnparseableBody:
            return UNPARSEABLE

    def _parse_and_redact(self, data):
        try:
            parsed = json.loads(data)
        except ValueError as e:
            raise UnparseableBody(str(e)) from e
        return redact_body(parsed, self._body_keys)
