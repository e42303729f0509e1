"""
Main routes (home, view mode switch).

The UI has three modes sharing one layout; the chosen one is kept in the
session so "/" always lands on the last view used.
"""

from flask import Blueprint, flash, redirect, session, url_for


main_bp = Blueprint("main", __name__)

# mode -> (endpoint, label)
VIEW_MODES = {
    "requester": ("requester.requester_page", "Requester"),
    "maker": ("maker.maker_page", "Maker"),
    "queue": ("queue.queue_page", "Job Queue"),
}
DEFAULT_MODE = "requester"


def current_mode() -> str:
    mode = session.get("view_mode", DEFAULT_MODE)
    return mode if mode in VIEW_MODES else DEFAULT_MODE


@main_bp.route("/")
def index():
    """Redirect root to the current view mode."""
    return redirect(url_for(VIEW_MODES[current_mode()][0]))


@main_bp.route("/mode/<mode>", methods=["GET"])
def switch_mode(mode: str):
    """Switch between requester, maker and job queue views."""
    if mode not in VIEW_MODES:
        flash(f"Unknown view: {mode}", "error")
        return redirect(url_for("main.index"))

    session["view_mode"] = mode
    return redirect(url_for(VIEW_MODES[mode][0]))
