# config/base.py
import os
from datetime import timedelta


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default):
    """Parse an integer environment value, keeping the default on junk input."""
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def _coerce_float(value, default):
    if value is None or str(value).strip() == "":
        return default
    try:
        return float(str(value).strip())
    except ValueError:
        return default


class Config:
    # SECRET_KEY must be set via environment variable for security
    # Generate with: python -c "import secrets; print(secrets.token_hex(32))"
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Only require SECRET_KEY in production mode
    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Duplicate detection thresholds (see config/dedupe.py for the typed view)
    DEDUPE_PERSIST_THRESHOLD = _coerce_int(os.environ.get("DEDUPE_PERSIST_THRESHOLD"), 70)
    DEDUPE_NAME_SIMILARITY_THRESHOLD = _coerce_float(os.environ.get("DEDUPE_NAME_SIMILARITY_THRESHOLD"), 0.85)
    DEDUPE_MIN_PHONE_DIGITS = _coerce_int(os.environ.get("DEDUPE_MIN_PHONE_DIGITS"), 9)
    DEDUPE_PHONE_COUNTRY_CODE = os.environ.get("DEDUPE_PHONE_COUNTRY_CODE", "972")
    DEDUPE_MIN_IDENTIFIER_LENGTH = _coerce_int(os.environ.get("DEDUPE_MIN_IDENTIFIER_LENGTH"), 8)
    DEDUPE_NAME_BLOCKING = os.environ.get("DEDUPE_NAME_BLOCKING", "none").strip().lower()
    DEDUPE_ALL_PAIRS_WARNING_SIZE = _coerce_int(os.environ.get("DEDUPE_ALL_PAIRS_WARNING_SIZE"), 20000)
    DEDUPE_SETTINGS_PATH = os.environ.get("DEDUPE_SETTINGS_PATH")

    # Semantic validator (disabled when no URL is configured)
    DEDUPE_VALIDATOR_URL = os.environ.get("DEDUPE_VALIDATOR_URL")
    DEDUPE_VALIDATOR_API_KEY = os.environ.get("DEDUPE_VALIDATOR_API_KEY")
    DEDUPE_VALIDATOR_TIMEOUT = _coerce_float(os.environ.get("DEDUPE_VALIDATOR_TIMEOUT"), 10.0)

    # Reviews
    REVIEW_MIN_RATED_CRITERIA = _coerce_int(os.environ.get("REVIEW_MIN_RATED_CRITERIA"), 6)

    # Session configuration
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"


class DevelopmentConfig(Config):
    DEBUG = True
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI needs forward slashes on Windows
    db_path = os.path.join(instance_path, "records_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    DEDUPE_VALIDATOR_URL = None


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    SESSION_COOKIE_SECURE = True
