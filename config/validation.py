# config/validation.py

"""
Environment variable validation for the records application.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in {"your-secret-key", "your_secret_key"}:
        errors.append("SECRET_KEY is required in production and must not be the default value.")

    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    validator_url = os.environ.get("DEDUPE_VALIDATOR_URL", "")
    if validator_url and not validator_url.startswith(("http://", "https://")):
        errors.append("DEDUPE_VALIDATOR_URL must be an http(s) URL when set.")

    timeout = os.environ.get("DEDUPE_VALIDATOR_TIMEOUT")
    if timeout:
        try:
            if float(timeout) <= 0:
                errors.append("DEDUPE_VALIDATOR_TIMEOUT must be a positive number of seconds.")
        except ValueError:
            errors.append("DEDUPE_VALIDATOR_TIMEOUT must be a number of seconds.")

    settings_path = os.environ.get("DEDUPE_SETTINGS_PATH")
    if settings_path and not os.path.exists(settings_path):
        errors.append(f"DEDUPE_SETTINGS_PATH points to a missing file: {settings_path}")

    return len(errors) == 0, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        sys.exit(1)
