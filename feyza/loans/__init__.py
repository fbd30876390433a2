from flask import Blueprint

loans_bp = Blueprint("loans", __name__, url_prefix="/api")

from . import routes, contracts  # noqa: E402,F401
