"""
Maker routes.

Handles:
- /maker - Open requests from other users, oldest first
- /requests/<id>/offers (POST) - Submit an offer
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
from routes.helpers import identity_required
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

maker_bp = Blueprint("maker", __name__)


def check_offer_target(print_request, maker_id: str):
    """
    Reason an offer on print_request would be refused, or None.

    Shared with the JSON API.
    """
    if print_request is None:
        return "Request not found."
    if print_request.requester_id == maker_id:
        return "You cannot make an offer on your own request."
    if not print_request.is_open:
        return "This request is no longer open for offers."
    return None


@maker_bp.route("/maker", methods=["GET"])
def maker_page():
    """Display the open request queue with an offer form per request."""
    session["view_mode"] = "maker"
    view_service = current_app.config["VIEW_SERVICE"]

    entries = []
    if g.identity is not None:
        try:
            entries = view_service.snapshot("maker", g.identity.user_id)
        except PersistenceError as e:
            logger.error(f"Maker view failed: {e}")
            flash("Could not load open requests. Please refresh.", "error")

    return render_template("maker.html", entries=entries)


@maker_bp.route("/requests/<request_id>/offers", methods=["POST"])
@identity_required("maker.maker_page")
def submit_offer(request_id: str):
    """Submit an offer on an open request."""
    request_service = current_app.config["REQUEST_SERVICE"]
    offer_service = current_app.config["OFFER_SERVICE"]
    maker_id = g.identity.user_id

    try:
        print_request = request_service.get_request(request_id)
        refusal = check_offer_target(print_request, maker_id)
        if refusal:
            flash(refusal, "warning")
            return redirect(url_for("maker.maker_page"))

        offer_service.submit_offer(
            request_id,
            maker_id,
            request.form.get("price", ""),
            message=request.form.get("message", ""),
            request_title=print_request.title,
        )
    except ValidationError as e:
        flash(e.message, "error")
        return redirect(url_for("maker.maker_page"))
    except PersistenceError as e:
        logger.error(f"Offer submission failed for {request_id[:8]}: {e}")
        flash(f"Failed to submit offer: {e.message}", "error")
        return redirect(url_for("maker.maker_page"))

    flash(f'Offer submitted for "{print_request.title}".', "success")
    return redirect(url_for("maker.maker_page"))
