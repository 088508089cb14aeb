"""
Read-only views over the ping log: JSON document, plain-text listing, health.
"""

from __future__ import annotations

from flask import Blueprint, Response, current_app, jsonify

from pingwatch.ping_log import PingLog
from pingwatch.utils import epoch_seconds

bp = Blueprint("pings", __name__)


@bp.route("/json")
def pings_json():
    """Full current state, same schema as the state file."""
    ping_log: PingLog = current_app.extensions["ping_log"]
    return Response(ping_log.dumps() + "\n", mimetype="application/json")


@bp.route("/")
def pings_text():
    """
    One block per address:

        10.0.0.1:
        <tab>1760000000.123456 2025-10-09 08:53:20.123456+00:00
        <blank line>
    """
    ping_log: PingLog = current_app.extensions["ping_log"]
    lines = []
    for address, times in ping_log.snapshot().items():
        lines.append(f"{address}:\n")
        for ts in times:
            lines.append(f"\t{epoch_seconds(ts)} {ts}\n")
        lines.append("\n")
    return Response("".join(lines), mimetype="text/plain")


@bp.route("/healthz")
def healthz():
    ping_log: PingLog = current_app.extensions["ping_log"]
    capture = current_app.extensions["capture_mgr"]
    state = current_app.extensions["state_mgr"]
    return jsonify({
        "status": "ok",
        "addresses": len(ping_log),
        "max_entries": ping_log.max_entries,
        "capture": capture.stats(),
        "state": state.status(),
    }), 200
