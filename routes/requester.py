"""
Requester routes.

Handles:
- /requester - Request form plus the requester's own requests and offers
- /requests (POST) - Submit a new print request

A rejected submission keeps the entered values in the session so the
form comes back filled in.
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

from core.exceptions import PersistenceError, ValidationError
from modules.form_parsing import parse_request_form
from routes.helpers import identity_required
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

requester_bp = Blueprint("requester", __name__)

FORM_STATE_KEY = "request_form"


@requester_bp.route("/requester", methods=["GET"])
def requester_page():
    """Display the request form and the requester's live request list."""
    session["view_mode"] = "requester"
    schema = current_app.config["FIELD_SCHEMA"]
    view_service = current_app.config["VIEW_SERVICE"]

    form_values = session.pop(FORM_STATE_KEY, None) or schema.initial_values()

    entries = []
    if g.identity is not None:
        try:
            entries = view_service.snapshot("requester", g.identity.user_id)
        except PersistenceError as e:
            logger.error(f"Requester view failed: {e}")
            flash("Could not load your requests. Please refresh.", "error")

    return render_template(
        "requester.html",
        schema=schema,
        form_values=form_values,
        entries=entries,
    )


@requester_bp.route("/requests", methods=["POST"])
@identity_required("requester.requester_page")
def submit_request():
    """Validate and submit a print request."""
    schema = current_app.config["FIELD_SCHEMA"]
    request_service = current_app.config["REQUEST_SERVICE"]

    raw_values = parse_request_form(request.form, schema)

    try:
        request_service.submit_request(raw_values, g.identity.user_id)
    except ValidationError as e:
        flash(e.message, "error")
        session[FORM_STATE_KEY] = raw_values
        return redirect(url_for("requester.requester_page"))
    except PersistenceError as e:
        logger.error(f"Request submission failed: {e}")
        flash(f"Failed to submit request: {e.message}", "error")
        session[FORM_STATE_KEY] = raw_values
        return redirect(url_for("requester.requester_page"))

    flash("Print request submitted successfully!", "success")
    return redirect(url_for("requester.requester_page"))
