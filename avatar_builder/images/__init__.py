from flask import Blueprint

bp = Blueprint("images", __name__, url_prefix="/api/images")

from . import routes  # noqa: E402,F401
