"""
Health check HTTP server for liveness and readiness probes.

Exposes the state of a running WarStack session: whether the process is up,
whether the ledger chain still verifies, and a detailed kernel status.
"""

from typing import Any

from flask import Flask, Response, jsonify

from warstack.kernel.logging import get_logger

logger = get_logger(__name__)

app = Flask(__name__)

SERVICE_NAME = "warstack"

# Global state - set by initialize_health_server()
_stack: Any = None  # WarStack instance under observation


@app.after_request
def add_security_headers(response: Response) -> Response:
    """Harden every probe response; these endpoints never serve content."""
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Cache-Control"] = "no-store"
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
    return response


def initialize_health_server(stack: Any) -> None:
    """
    Attach the health server to a WarStack session.

    Args:
        stack: WarStack instance to report on (None detaches)
    """
    global _stack
    _stack = stack
    logger.info("Health server initialized", attached=stack is not None)


@app.route("/health/live", methods=["GET"])
def liveness() -> tuple[Any, int]:
    """Liveness probe - the process is running."""
    return jsonify({"status": "alive", "service": SERVICE_NAME}), 200


@app.route("/health/ready", methods=["GET"])
def readiness() -> tuple[Any, int]:
    """
    Readiness probe - the session exists and its ledger verifies.

    Returns:
        200 when ready, 503 otherwise (with a reason)
    """
    if _stack is None:
        logger.error("Readiness check failed: no session attached")
        return jsonify({"status": "not_ready", "reason": "session_not_initialized"}), 503

    try:
        verified = _stack.verify()
        entries = len(_stack.kernel.get_ledger_entries())
    except Exception as e:
        logger.error("Readiness check failed: unexpected error", error=str(e), exc_info=True)
        return (
            jsonify({"status": "not_ready", "reason": "unexpected_error", "error": str(e)}),
            503,
        )

    if not verified:
        logger.error("Readiness check failed: ledger chain broken")
        return (
            jsonify(
                {
                    "status": "not_ready",
                    "reason": "ledger_integrity_breach",
                    "breach_index": _stack.kernel.ledger.find_breach(),
                }
            ),
            503,
        )

    return jsonify({"status": "ready", "ledger": "verified", "entry_count": entries}), 200


@app.route("/health", methods=["GET"])
def detailed_health() -> tuple[Any, int]:
    """Detailed health check - includes kernel status when a session is attached."""
    health_data: dict[str, Any] = {
        "status": "healthy",
        "service": SERVICE_NAME,
    }

    if _stack is None:
        health_data["kernel"] = {"status": "not_initialized"}
        health_data["status"] = "degraded"
        return jsonify(health_data), 503

    try:
        status = _stack.get_system_status()
        health_data["version"] = status["version"]
        health_data["kernel"] = status["kernel"]
        health_data["ledger"] = status["ledger"]
        health_data["persistence"] = {
            "unsaved_changes": status["unsavedChanges"],
            "last_saved": status["lastSaved"],
        }
        health_data["retry_count"] = status["retryCount"]
        if not status["ledger"]["verified"]:
            health_data["status"] = "degraded"
    except Exception as e:
        logger.error("Kernel health check failed", error=str(e))
        health_data["kernel"] = {"status": "unhealthy", "error": str(e)}
        health_data["status"] = "degraded"

    status_code = 200 if health_data["status"] == "healthy" else 503
    return jsonify(health_data), status_code


def run_health_server(host: str = "0.0.0.0", port: int = 8080, debug: bool = False) -> None:
    """
    Run the health check server (blocking).

    Args:
        host: Interface to bind (default: all)
        port: Port to listen on (default: 8080)
        debug: Enable Flask debug mode (default: False)
    """
    logger.info("Starting health check server", host=host, port=port)
    app.run(host=host, port=port, debug=debug)
