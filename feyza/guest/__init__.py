from flask import Blueprint

guest_bp = Blueprint("guest", __name__, url_prefix="/api")

from . import routes  # noqa: E402,F401
