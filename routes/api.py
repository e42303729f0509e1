"""
API routes (JSON, live updates and health).

Handles:
- /api/schema - Request field schema
- /api/identity - Identity status of the caller
- /api/requests, /api/open-requests, /api/queue - Live views read once
- /api/requests (POST), /api/requests/<id>/offers (POST),
  /api/requests/<id>/advance (POST) - Mutations
- /api/stream/<view> - Server-Sent Events, one event per view snapshot
- /partials/<view> - HTML list partial for AJAX refresh
- /health - Health check endpoint

Errors come back as {"error": message}: 400 validation, 401 identity,
404 unknown request, 409 status conflict, 503 store failure.
"""

import json
import queue

from flask import (
    Blueprint,
    Response,
    current_app,
    g,
    render_template,
    request,
    stream_with_context,
)

from core.exceptions import ConflictError, PersistenceError, ValidationError
from models.print_request import RequestStatus
from services.view_service import ViewService
from routes.helpers import json_error, json_identity
from routes.maker import check_offer_target
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)

# =============================================================================
# READS
# =============================================================================

@api_bp.route("/api/schema", methods=["GET"])
def schema():
    """Field schema plus blank form values."""
    field_schema = current_app.config["FIELD_SCHEMA"]
    return {
        "fields": field_schema.to_list(),
        "initialValues": field_schema.initial_values(),
    }


@api_bp.route("/api/identity", methods=["GET"])
def identity():
    caller, error = json_identity()
    if error:
        return error
    return caller.to_dict()


@api_bp.route("/api/requests", methods=["GET"])
def own_requests():
    """The caller's own requests with all offers, newest first."""
    return _view_json("requester")


@api_bp.route("/api/open-requests", methods=["GET"])
def open_requests():
    """Pending requests of other users with the caller's offers, oldest first."""
    return _view_json("maker")


@api_bp.route("/api/queue", methods=["GET"])
def job_queue():
    return _view_json("queue")


def _view_json(view_name: str):
    """Read a live view once."""
    caller, error = json_identity()
    if error:
        return error

    try:
        entries = current_app.config["VIEW_SERVICE"].snapshot(view_name, caller.user_id)
    except PersistenceError as e:
        logger.error(f"{view_name} view failed: {e}")
        return json_error(e.message, 503)

    return {"view": view_name, "requests": [entry.to_json() for entry in entries]}


# =============================================================================
# MUTATIONS
# =============================================================================

NOT_AN_OBJECT = "Request body must be a JSON object."


def _json_body():
    """Parsed JSON body, {} when empty, or None when it is not an object."""
    body = request.get_json(silent=True)
    if body is None:
        return {}
    return body if isinstance(body, dict) else None


@api_bp.route("/api/requests", methods=["POST"])
def create_request():
    """
    Submit a print request.

    Body: {"fields": {...}} or the field values directly.
    """
    caller, error = json_identity()
    if error:
        return error

    body = _json_body()
    fields = body.get("fields", body) if body is not None else None
    if not isinstance(fields, dict):
        return json_error("Request fields must be a JSON object.", 400)

    try:
        request_id = current_app.config["REQUEST_SERVICE"].submit_request(fields, caller.user_id)
    except ValidationError as e:
        return json_error(e.message, 400, field=e.field)
    except PersistenceError as e:
        logger.error(f"Request submission failed: {e}")
        return json_error(e.message, 503)

    return {"id": request_id}, 201


@api_bp.route("/api/requests/<request_id>/offers", methods=["POST"])
def create_offer(request_id: str):
    """
    Submit an offer.

    Body: {"price": number, "message": optional str}
    """
    caller, error = json_identity()
    if error:
        return error

    body = _json_body()
    if body is None:
        return json_error(NOT_AN_OBJECT, 400)
    message = body.get("message")
    request_service = current_app.config["REQUEST_SERVICE"]
    offer_service = current_app.config["OFFER_SERVICE"]

    try:
        print_request = request_service.get_request(request_id)
        refusal = check_offer_target(print_request, caller.user_id)
        if refusal:
            return json_error(refusal, 404 if print_request is None else 409)

        offer_id = offer_service.submit_offer(
            request_id,
            caller.user_id,
            body.get("price"),
            message="" if message is None else str(message),
            request_title=print_request.title,
        )
    except ValidationError as e:
        return json_error(e.message, 400, field=e.field)
    except PersistenceError as e:
        logger.error(f"Offer submission failed for {request_id[:8]}: {e}")
        return json_error(e.message, 503)

    return {"id": offer_id, "requestId": request_id}, 201


@api_bp.route("/api/requests/<request_id>/advance", methods=["POST"])
def advance_request(request_id: str):
    """
    Advance a request one status step.

    Body: {"expectedStatus": optional str}. With expectedStatus a lost race
    is a 409; without it the stored status is advanced.
    """
    caller, error = json_identity()
    if error:
        return error

    body = _json_body()
    if body is None:
        return json_error(NOT_AN_OBJECT, 400)
    expected_status = body.get("expectedStatus") or None
    if expected_status is not None and RequestStatus.parse(expected_status) is None:
        return json_error(f"Unknown status: {expected_status}", 400, field="expectedStatus")
    request_service = current_app.config["REQUEST_SERVICE"]

    try:
        if request_service.get_request(request_id) is None:
            return json_error("Request not found.", 404)
        applied = request_service.advance_status(
            request_id,
            caller.user_id,
            expected_status,
            raise_on_conflict=expected_status is not None,
        )
        updated = request_service.get_request(request_id)
    except ConflictError as e:
        return json_error(e.message, 409, expected=e.expected, actual=e.actual)
    except PersistenceError as e:
        logger.error(f"Status update failed for {request_id[:8]}: {e}")
        return json_error(e.message, 503)

    return {"applied": applied, "request": updated.to_json()}


# =============================================================================
# LIVE UPDATES
# =============================================================================

def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@api_bp.route("/api/stream/<view_name>", methods=["GET"])
def stream(view_name: str):
    """
    Server-Sent Events stream of a live view.

    Sends a "snapshot" event with the full entry list on every change, a
    keep-alive comment when idle, and an "error" event before closing if
    the store reports a failure. The view is closed when the client goes
    away.
    """
    if view_name not in ViewService.VIEW_NAMES:
        return json_error(f"Unknown view: {view_name}", 404)

    caller, error = json_identity()
    if error:
        return error

    keepalive = current_app.config.get("STREAM_KEEPALIVE_SECONDS", 15.0)
    events: "queue.Queue" = queue.Queue()

    view = current_app.config["VIEW_SERVICE"].create_view(
        view_name,
        caller.user_id,
        on_change=lambda entries: events.put(("snapshot", entries)),
        on_error=lambda err: events.put(("error", err)),
    )
    try:
        view.start()
    except PersistenceError as e:
        view.close()
        logger.error(f"Could not open {view_name} stream: {e}")
        return json_error(e.message, 503)

    logger.info(f"Opened {view_name} stream for {caller.user_id[:8]}")

    def generate():
        try:
            while True:
                try:
                    kind, payload = events.get(timeout=keepalive)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue

                if kind == "error":
                    yield _sse("error", {"error": payload.message})
                    return

                yield _sse("snapshot", {
                    "view": view_name,
                    "requests": [entry.to_json() for entry in payload],
                })
        finally:
            view.close()
            logger.info(f"Closed {view_name} stream for {caller.user_id[:8]}")

    response = Response(stream_with_context(generate()), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    # Covers clients that disconnect before the first chunk is pulled
    response.call_on_close(view.close)
    return response


@api_bp.route("/partials/<view_name>", methods=["GET"])
def view_partial(view_name: str):
    """
    Render the list partial of a view for AJAX refresh.

    Called by the page script when the event stream reports a change.
    """
    if view_name not in ViewService.VIEW_NAMES:
        return json_error(f"Unknown view: {view_name}", 404)

    if g.identity is None:
        return render_template("partials/unavailable.html", message="Authentication not ready.")

    try:
        entries = current_app.config["VIEW_SERVICE"].snapshot(view_name, g.identity.user_id)
    except PersistenceError as e:
        logger.error(f"Partial refresh failed for {view_name}: {e}")
        return render_template("partials/unavailable.html", message="Could not load requests.")

    return render_template(f"partials/{view_name}_list.html", entries=entries)


# =============================================================================
# HEALTH
# =============================================================================

@api_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint with service status."""
    health_status = {
        "status": "ok",
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
        "checks": {}
    }

    # Check document store
    store = current_app.config.get("DOCUMENT_STORE")
    if store and store.ping():
        health_status["checks"]["store"] = store.backend_name
    else:
        health_status["checks"]["store"] = "unreachable"
        health_status["status"] = "degraded"

    # Check identity
    identity_provider = current_app.config.get("IDENTITY_PROVIDER")
    if identity_provider:
        health_status["checks"]["identity"] = (
            "persistent" if identity_provider.has_persistent_identity else "anonymous"
        )
    else:
        health_status["checks"]["identity"] = "not_available"
        health_status["status"] = "degraded"

    # Check field schema
    field_schema = current_app.config.get("FIELD_SCHEMA")
    if field_schema:
        health_status["checks"]["schema"] = f"{len(field_schema)} fields"
    else:
        health_status["checks"]["schema"] = "not_loaded"
        health_status["status"] = "degraded"

    status_code = 200 if health_status["status"] == "ok" else 503
    return health_status, status_code
