"""Prepare a local gallery checkout: write .env settings and create the database."""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values, set_key

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
SECRET_KEYS = {"SECRET_KEY", "ABLY_API_KEY"}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Write gallery settings to a .env file and initialize the database."
    )
    parser.add_argument("--flask-app", default="avatar_builder:create_app", help="Value for FLASK_APP.")
    parser.add_argument("--secret-key", help="Flask secret key; the current value is kept when omitted.")
    parser.add_argument("--data-dir", help="Directory for the SQLite database and generated images.")
    parser.add_argument("--generated-dir", help="Directory generated images are written to.")
    parser.add_argument("--database-url", help="SQLAlchemy URL overriding the SQLite default.")
    parser.add_argument("--ably-api-key", help="Ably key (name:secret) for realtime gallery events.")
    parser.add_argument("--env-path", type=Path, default=DEFAULT_ENV_PATH, help="The .env file to update.")
    parser.add_argument("--skip-db", action="store_true", help="Only update the .env file.")
    parser.add_argument(
        "--organize-files",
        action="store_true",
        help="Move images still stored flat in the generated directory into their folder directories.",
    )
    return parser.parse_args()


def requested_settings(args: argparse.Namespace) -> Dict[str, str]:
    candidates: Dict[str, Optional[str]] = {
        "FLASK_APP": args.flask_app,
        "SECRET_KEY": args.secret_key,
        "DATA_DIR": args.data_dir,
        "GENERATED_DIR": args.generated_dir,
        "DATABASE_URL": args.database_url,
        "ABLY_API_KEY": args.ably_api_key,
    }
    return {key: value for key, value in candidates.items() if value}


def update_env_file(env_path: Path, settings: Dict[str, str]) -> Dict[str, Optional[str]]:
    if env_path.exists():
        backup = env_path.with_name(env_path.name + ".bak")
        shutil.copy(env_path, backup)
        print(f"Backed up {env_path.name} to {backup.name}.")
    else:
        env_path.touch()

    for key, value in settings.items():
        set_key(str(env_path), key, value, quote_mode="never")
    print(f"Wrote {len(settings)} setting(s) to {env_path}.")
    return dict(dotenv_values(env_path))


def initialize_database(organize_files: bool) -> None:
    # Imported late so values written to .env above are picked up by the config.
    from avatar_builder import create_app
    from avatar_builder.extensions import db
    from avatar_builder.services import image_library

    app = create_app()
    with app.app_context():
        db.create_all()
        print(f"Database ready at {app.config['SQLALCHEMY_DATABASE_URI']}.")
        if organize_files:
            migrated = image_library().organize_existing_files()
            print(f"Moved {migrated} image file(s) into their folders.")


def _masked(key: str, value: Optional[str]) -> str:
    if value and key in SECRET_KEYS:
        return value[:4] + "…"
    return value or ""


def main() -> None:
    args = parse_args()
    env_values = update_env_file(args.env_path, requested_settings(args))

    if args.skip_db:
        print("Skipped database initialization.")
    else:
        initialize_database(args.organize_files)

    print("\nCurrent settings:")
    for key in sorted(env_values):
        print(f"  {key}={_masked(key, env_values[key])}")


if __name__ == "__main__":
    main()
