"""
Job queue routes.

Handles:
- /queue - Every request, newest first
- /requests/<id>/advance (POST) - Start printing / mark as complete

The queue form posts the status it displayed; the transition only applies
if the request still has that status.
"""

from flask import (
    Blueprint,
    current_app,
    flash,
    g,
    redirect,
    render_template,
    request,
    session,
    url_for,
)

from core.exceptions import PersistenceError
from routes.helpers import identity_required
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

queue_bp = Blueprint("queue", __name__)


@queue_bp.route("/queue", methods=["GET"])
def queue_page():
    """Display every request with its status action."""
    session["view_mode"] = "queue"
    view_service = current_app.config["VIEW_SERVICE"]

    entries = []
    if g.identity is not None:
        try:
            entries = view_service.snapshot("queue", g.identity.user_id)
        except PersistenceError as e:
            logger.error(f"Job queue view failed: {e}")
            flash("Could not load the job queue. Please refresh.", "error")

    return render_template("queue.html", entries=entries)


@queue_bp.route("/requests/<request_id>/advance", methods=["POST"])
@identity_required("queue.queue_page")
def advance_request(request_id: str):
    """Advance a request one status step."""
    request_service = current_app.config["REQUEST_SERVICE"]
    expected_status = request.form.get("status") or None

    try:
        applied = request_service.advance_status(request_id, g.identity.user_id, expected_status)
        updated = request_service.get_request(request_id) if applied else None
    except PersistenceError as e:
        logger.error(f"Status update failed for {request_id[:8]}: {e}")
        flash(f"Failed to update status: {e.message}", "error")
        return redirect(url_for("queue.queue_page"))

    if updated is not None:
        flash(f'"{updated.title}" is now {updated.status.value}.', "success")
    else:
        flash("This request was already updated.", "info")
    return redirect(url_for("queue.queue_page"))
