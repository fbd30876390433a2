from flask import Blueprint

lender_bp = Blueprint("lender", __name__, url_prefix="/api")

from . import routes  # noqa: E402,F401
