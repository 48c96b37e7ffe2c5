"""Renders the in-page monitoring script and splices it into HTML."""

import json
import logging
import os
import re

from analyzer.redaction import DEFAULT_PREVIEW_LIMIT

logger = logging.getLogger(__name__)

_SCRIPT_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "monitor.js")

BEGIN_MARKER = "<!-- INJECTED WEB-ANALYZER SCRIPT -->"
END_MARKER = "<!-- END INJECT -->"

_CLOSING_BODY = re.compile(r"</body\s*>", re.IGNORECASE)
_CLOSING_BODY_BYTES = re.compile(rb"</body\s*>", re.IGNORECASE)


def _js_literal(value) -> str:
    # "</" would end the surrounding <script> element early
    return json.dumps(value).replace("</", "<\\/")


def render_payload(endpoint="/client-log", preview_limit=DEFAULT_PREVIEW_LIMIT,
                   ws_preview_limit=2000) -> str:
    """Return the complete ``<script>`` snippet, wrapped in marker comments."""
    with open(_SCRIPT_PATH, "r", encoding="utf-8") as f:
        script = f.read()

    script = (
        script.replace("__ANALYZER_ENDPOINT__", _js_literal(endpoint))
        .replace("__ANALYZER_PREVIEW_LIMIT__", str(int(preview_limit)))
        .replace("__ANALYZER_WS_PREVIEW_LIMIT__", str(int(ws_preview_limit)))
    )
    return f"{BEGIN_MARKER}\n<script>\n{script}</script>\n{END_MARKER}\n"


def inject(html, snippet):
    """Insert ``snippet`` immediately before the last closing body tag.

    Works on ``str`` or on raw ``bytes`` (``snippet`` must be the same type).
    Returns ``(html, injected)``. A document with no closing body tag is
    returned untouched.
    """
    pattern = _CLOSING_BODY_BYTES if isinstance(html, bytes) else _CLOSING_BODY
    match = None
    for match in pattern.finditer(html):
        pass
    if match is None:
        return html, False
    pos = match.start()
    return html[:pos] + snippet + html[pos:], True


class PayloadInjector:
    """Caches the rendered snippet and applies it to HTML documents."""

    def __init__(self, endpoint="/client-log", preview_limit=DEFAULT_PREVIEW_LIMIT,
                 ws_preview_limit=2000):
        self.snippet = render_payload(endpoint, preview_limit, ws_preview_limit)

    def __call__(self, html, encoding="utf-8"):
        """Inject into ``html``; raw bytes get the snippet in ``encoding``.

        Bytes in an encoding that is not ASCII-compatible (UTF-16, say)
        never match the closing tag and pass through unmodified.
        """
        snippet = self.snippet
        if isinstance(html, bytes):
            snippet = snippet.encode(encoding, errors="xmlcharrefreplace")
        html, injected = inject(html, snippet)
        if not injected:
            logger.debug("No closing body tag, page forwarded without monitor")
        return html, injected
