from flask import Blueprint

bp = Blueprint("folders", __name__, url_prefix="/api/folders")

from . import routes  # noqa: E402,F401
