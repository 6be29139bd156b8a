from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from flask import Flask

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

from .config import Config  # noqa: E402
from .db_utils import ensure_database_schema  # noqa: E402
from .extensions import db, migrate  # noqa: E402


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)

    Path(app.config["DATA_DIR"]).mkdir(parents=True, exist_ok=True)
    Path(app.config["GENERATED_DIR"]).mkdir(parents=True, exist_ok=True)

    register_extensions(app)
    register_blueprints(app)

    with app.app_context():
        ensure_database_schema()
        if app.config.get("ORGANIZE_FILES_ON_STARTUP"):
            from .services import image_library

            image_library().organize_existing_files()

    return app


def register_extensions(app: Flask) -> None:
    db.init_app(app)
    migrate.init_app(app, db)


def register_blueprints(app: Flask) -> None:
    from .folders import bp as folders_bp
    from .images import bp as images_bp
    from .main import bp as main_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(folders_bp)
    app.register_blueprint(images_bp)
