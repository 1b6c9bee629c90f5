import json
import os
import secrets
import warnings

import redis
from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, ".env"))


def _env_flag(name, default="false"):
    return os.environ.get(name, default).lower() in ["true", "on", "1"]


def _load_point_weights():
    """Point weights per pick category, overridable with a JSON object"""
    raw = os.environ.get("POINT_WEIGHTS")
    if raw:
        return {str(k).upper(): int(v) for k, v in json.loads(raw).items()}
    return {"OPENER": 3, "ENCORE": 3, "GENERAL": 1}


class Config:
    _secret_key = os.environ.get("SECRET_KEY")

    if not _secret_key:
        _secret_key = secrets.token_urlsafe(32)
        warnings.warn(
            "SECRET_KEY not set! Using auto-generated key. "
            "Set SECRET_KEY in .env for stable deployments.",
            UserWarning,
        )

    SECRET_KEY = _secret_key

    # Database configuration - built from environment at initialization
    def __init__(self):
        """Initialize configuration with dynamic database URI"""
        self.SQLALCHEMY_DATABASE_URI = self._build_database_uri()

    def _build_database_uri(self):
        """Build database URI from environment variables"""
        database_url = os.environ.get("DATABASE_URL")

        if database_url:
            return database_url

        db_type = os.environ.get("DB_TYPE", "sqlite")

        if db_type.lower() == "postgresql":
            db_host = os.environ.get("DB_HOST") or "localhost"
            db_port = os.environ.get("DB_PORT") or "5432"
            db_name = os.environ.get("DB_NAME") or "setlist_pickem_db"
            db_user = os.environ.get("DB_USER") or "pickem_user"
            db_password = os.environ.get("DB_PASSWORD") or "pickem_password"

            return f"postgresql+psycopg://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"
        else:
            # Default to SQLite for development
            return "sqlite:///" + os.path.join(basedir, "app.db")

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Setlist feed (phish.net v5)
    PHISHNET_API_BASE_URL = (
        os.environ.get("PHISHNET_API_BASE_URL") or "https://api.phish.net/v5"
    )
    PHISHNET_API_KEY = os.environ.get("PHISHNET_API_KEY")
    PHISHNET_ARTIST_ID = int(os.environ.get("PHISHNET_ARTIST_ID") or 1)

    # Show locking: picks freeze at this local time on the show date
    SHOW_LOCK_HOUR = int(os.environ.get("SHOW_LOCK_HOUR") or 19)
    SHOW_LOCK_MINUTE = int(os.environ.get("SHOW_LOCK_MINUTE") or 0)
    FALLBACK_TIMEZONE = os.environ.get("FALLBACK_TIMEZONE") or None

    # Scoring
    POINT_WEIGHTS = _load_point_weights()
    ENCORE_SET_LABELS = tuple(
        label.strip().lower()
        for label in os.environ.get("ENCORE_SET_LABELS", "e,e2,e3").split(",")
        if label.strip()
    )
    MIN_FINAL_SETLIST_SONGS = int(os.environ.get("MIN_FINAL_SETLIST_SONGS") or 6)
    PICKS_PER_SUBMISSION = 13

    # Store retry policy
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS") or 3)
    DB_RETRY_DELAY = float(os.environ.get("DB_RETRY_DELAY") or 1.0)

    # Cron / admin surface
    CRON_SECRET = os.environ.get("CRON_SECRET")
    ADMIN_API_TOKEN = os.environ.get("ADMIN_API_TOKEN")
    ADMIN_FEATURES_ENABLED = _env_flag("ADMIN_FEATURES_ENABLED", "true")
    # Shows dated before this are treated as already played by the admin cleanup
    MARK_OLD_SHOWS_CUTOFF_DATE = os.environ.get("MARK_OLD_SHOWS_CUTOFF_DATE")

    # Caching configuration
    CACHE_TYPE = os.environ.get("CACHE_TYPE", "RedisCache")
    CACHE_DEFAULT_TIMEOUT = int(
        os.environ.get("CACHE_DEFAULT_TIMEOUT", 300)
    )  # 5 minutes
    CACHE_REDIS_URL = os.environ.get("CACHE_REDIS_URL", "redis://localhost:6379/0")
    CACHE_KEY_PREFIX = "setlist_pickem:"

    # Scheduler configuration
    SCHEDULER_ENABLED = _env_flag("SCHEDULER_ENABLED", "True")
    SCORING_INTERVAL_SECONDS = int(os.environ.get("SCORING_INTERVAL_SECONDS") or 60)

    # Logging configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_TO_CONSOLE = _env_flag("LOG_TO_CONSOLE", "True")
    LOG_TO_FILE = _env_flag("LOG_TO_FILE", "True")
    LOG_DIR = os.environ.get("LOG_DIR", "logs")

    # Environment detection
    FLASK_ENV = os.environ.get("FLASK_ENV", "development")
    DEBUG = FLASK_ENV == "development"
    TESTING = False


class DevelopmentConfig(Config):
    """Development configuration with helpful defaults"""

    DEBUG = True
    SQLALCHEMY_ECHO = _env_flag("SQLALCHEMY_ECHO", "False")

    def __init__(self):
        super().__init__()
        # Fallback to SimpleCache if Redis isn't available in development
        try:
            redis_client = redis.Redis.from_url(self.CACHE_REDIS_URL)
            redis_client.ping()
        except redis.exceptions.ConnectionError:
            self.CACHE_TYPE = "SimpleCache"
            warnings.warn(
                "Redis not available, falling back to SimpleCache for development.",
                UserWarning,
            )


class ProductionConfig(Config):
    """Production configuration with security focus"""

    DEBUG = False
    FLASK_ENV = "production"
    ADMIN_FEATURES_ENABLED = _env_flag("ADMIN_FEATURES_ENABLED", "false")

    def __init__(self):
        super().__init__()

        if not os.environ.get("SECRET_KEY"):
            warnings.warn(
                "PRODUCTION WARNING: SECRET_KEY not explicitly set!",
                UserWarning,
            )
        if not self.CRON_SECRET:
            warnings.warn(
                "PRODUCTION WARNING: CRON_SECRET not set, /api/score will refuse requests",
                UserWarning,
            )


class TestingConfig(Config):
    """Testing configuration"""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    CACHE_TYPE = "SimpleCache"
    SCHEDULER_ENABLED = False
    LOG_TO_FILE = False
    PHISHNET_API_KEY = "test-key"
    CRON_SECRET = "test-cron-secret"
    ADMIN_API_TOKEN = "test-admin-token"
    ADMIN_FEATURES_ENABLED = True
    DB_RETRY_DELAY = 0.0

    def __init__(self):
        # In-memory database, never read the environment
        pass


# Configuration mapping
config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}
