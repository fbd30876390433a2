from flask import Blueprint

vouching_bp = Blueprint("vouching", __name__, url_prefix="/api/vouches")

from . import routes  # noqa: E402,F401
