# config/validation.py

"""
Environment variable validation for the MDM engine.
Validates required environment variables at startup.
"""

import os
import sys
from pathlib import Path
from typing import List, Tuple


def _check_int_range(name: str, minimum: int, maximum: int, errors: List[str]) -> None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return
    try:
        value = int(raw)
    except ValueError:
        errors.append(f"{name} must be an integer, got {raw!r}.")
        return
    if value < minimum or value > maximum:
        errors.append(f"{name} must be between {minimum} and {maximum}, got {value}.")


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
    if not secret_key or secret_key == "your-secret-key" or secret_key == "your_secret_key":
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        errors.append(
            "DATABASE_URL is required in production. "
            "Set it to your PostgreSQL connection string."
        )

    _check_int_range("MDM_DUPLICATE_THRESHOLD_DEFAULT", 0, 100, errors)
    _check_int_range("MDM_MERGE_HISTORY_LIMIT_DEFAULT", 1, 1000, errors)
    _check_int_range("MDM_MERGE_HISTORY_LIMIT_MAX", 1, 1000, errors)

    profile_path = os.environ.get("MDM_SIMILARITY_PROFILE_PATH")
    if profile_path and not Path(profile_path).exists():
        errors.append(f"MDM_SIMILARITY_PROFILE_PATH points to a missing file: {profile_path}")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.

    Args:
        flask_env: Flask environment (development, production, testing)
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
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
