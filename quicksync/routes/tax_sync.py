# quicksync/routes/tax_sync.py
from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from ..config import REQUIRED_CAPABILITY, MAX_MESSAGE_LENGTH
from ..errors import QuickSyncError, InvalidRequest, Unauthorized, Forbidden
from ..services.sync import sync_term
from ..utils.logger import info, warn, error, preview
from ..utils.security import parse_basic_credential
from ..utils.text import truncate

bp = Blueprint("tax_sync", __name__)


@bp.errorhandler(QuickSyncError)
def sync_error(e: QuickSyncError):
    log = error if e.status_code >= 500 else warn
    log(f"{e.code}: {truncate(e.message, 500)}")
    return jsonify(e.to_dict()), e.status_code


@bp.errorhandler(Exception)
def uncaught(e: Exception):
    if isinstance(e, HTTPException):
        return e
    current_app.logger.exception("UNCAUGHT ERROR in tax-sync")
    return jsonify({
        "code": "internal_error",
        "error": "Internal server error",
        "message": truncate(str(e), MAX_MESSAGE_LENGTH),
    }), 500


@bp.post("/tax-sync")
@bp.post("/author-sync")
def tax_sync():
    # Application-password user must authenticate and be allowed to edit
    creds = parse_basic_credential(request.headers.get("Authorization"))
    if not creds:
        raise Unauthorized()
    username, password = creds
    store = current_app.config["QUICKSYNC_STORE_FACTORY"](f"{username}:{password}")
    if not store.current_user_can(REQUIRED_CAPABILITY):
        raise Forbidden(REQUIRED_CAPABILITY)

    info(f"Request by {username}: {preview(request.get_data(as_text=True))}")
    body = request.get_json(force=True, silent=True)
    if body is None:
        raise InvalidRequest("Malformed JSON body.")

    return jsonify(sync_term(store, body)), 200
