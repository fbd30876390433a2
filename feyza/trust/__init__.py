from flask import Blueprint

trust_bp = Blueprint("trust", __name__, url_prefix="/api")

from . import routes  # noqa: E402,F401
