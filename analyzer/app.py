import json
import logging
import os

from flask import Flask, Response, jsonify, render_template, request
from flask_sock import Sock

from analyzer.broadcast import BroadcastChannel
from analyzer.config import load_config
from analyzer.errors import IngestionFailure, MissingTarget, UpstreamFailure
from analyzer.ingest import DEFAULT_SCHEMA_PATH, ClientLogIngestor, ReportValidator
from analyzer.log_store import CaptureLogStore
from analyzer.payload import PayloadInjector
from analyzer.proxy import ProxyPipeline

logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _structured_body():
    """The inbound body as JSON, or a parsed form as a dict, or None."""
    if request.method in ("GET", "HEAD"):
        return None
    body = request.get_json(silent=True)
    if body is not None:
        return body
    if request.form:
        return request.form.to_dict()
    return None


def create_app(config=None, store=None, session=None, channel=None):
    """Flask application factory."""
    app = Flask(__name__)
    sock = Sock(app)

    if config is None:
        config = load_config()

    if channel is None:
        channel = BroadcastChannel(max_pending=config["realtime"]["max_pending_events"])
    if store is None:
        store = CaptureLogStore(max_size=config["storage"]["max_logs"])
    store.set_listener(channel)

    redaction = config["redaction"]
    monitor = config["monitor"]
    injector = PayloadInjector(
        endpoint=monitor["endpoint"],
        preview_limit=monitor["preview_limit"],
        ws_preview_limit=monitor["ws_preview_limit"],
    )
    pipeline = ProxyPipeline(
        store,
        session=session,
        timeout=config["proxy"]["timeout_seconds"],
        preview_limit=config["proxy"]["preview_limit"],
        injector=injector,
        extra_header_keys=redaction["extra_header_keys"],
        extra_body_keys=redaction["extra_body_keys"],
    )
    ingestor = ClientLogIngestor(
        store,
        ReportValidator(config["schema"]["path"] or DEFAULT_SCHEMA_PATH),
        preview_limit=config["proxy"]["preview_limit"],
        extra_header_keys=redaction["extra_header_keys"],
        extra_body_keys=redaction["extra_body_keys"],
    )
    accept_observer_logs = config["realtime"]["accept_observer_logs"]

    # Store components on app for access in tests
    app.config["components"] = {
        "config": config,
        "store": store,
        "channel": channel,
        "pipeline": pipeline,
        "ingestor": ingestor,
    }

    # --- Routes ---

    @app.route("/")
    def index():
        return render_template("index.html")

    @app.route("/health")
    def health():
        return jsonify({
            "status": "healthy",
            "total_logs": store.total_count,
            "current_stored": store.current_size,
            "evicted": store.evicted_count,
            "observers": channel.count,
            "observer_dropped_events": channel.dropped_count,
            "validation_stats": ingestor.validator.get_stats(),
        })

    @app.route("/proxy", methods=PROXY_METHODS)
    def proxy():
        target = request.args.get("url", "")
        try:
            result = pipeline.forward(
                request.method, target, dict(request.headers), _structured_body()
            )
        except MissingTarget as e:
            return Response(str(e), status=e.status_code, mimetype="text/plain")
        except UpstreamFailure as e:
            return Response(f"Proxy Error: {e}", status=e.status_code, mimetype="text/plain")

        return Response(result.body, status=result.status, content_type=result.content_type)

    def client_log():
        report = request.get_json(force=True, silent=True)
        try:
            ingestor.ingest(report)
        except IngestionFailure as e:
            logger.error("client-log rejected: %s", e)
            return jsonify({"ok": False, "err": str(e)}), e.status_code
        except Exception as e:
            logger.exception("client-log error")
            return jsonify({"ok": False, "err": str(e)}), 500
        return jsonify({"ok": True})

    app.add_url_rule(monitor["endpoint"], "client_log", client_log, methods=["POST"])

    @app.route("/save-logs")
    def save_logs():
        path = config["storage"]["save_path"]
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(store.snapshot(), f, indent=2)
        except OSError as e:
            logger.error("Could not save logs to %s: %s", path, e)
            return jsonify({"success": False, "err": str(e)}), 500
        logger.info("Saved %d entries to %s", store.current_size, path)
        return jsonify({"success": True, "file": path})

    @app.route("/download-logs")
    def download_logs():
        return Response(
            json.dumps(store.snapshot(), indent=2),
            mimetype="application/json",
            headers={"Content-Disposition": "attachment; filename=logs.json"},
        )

    @sock.route("/ws")
    def observer_socket(ws):
        channel.hello(ws)
        channel.register(ws)
        try:
            while True:
                message = ws.receive()
                if accept_observer_logs:
                    _ingest_observer_message(ingestor, message)
        finally:
            channel.unregister(ws)

    return app


def _ingest_observer_message(ingestor, message):
    """Accept ``{"type": "log", "payload": {...}}`` pushed by an observer."""
    try:
        msg = json.loads(message)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-JSON observer frame")
        return
    if not isinstance(msg, dict) or msg.get("type") != "log":
        return
    try:
        ingestor.ingest(msg.get("payload"))
    except IngestionFailure as e:
        logger.warning("Observer log rejected: %s", e)
