# pagespeed_analyzer/config.py
import os


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes", "on")


def _env_optional_int(name: str):
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else None


class BaseConfig:
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://redis:6379/0")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "redis://redis:6379/0")

    # --- DB ---
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", "postgresql+psycopg2://app_user:app_pass@db:5432/app_db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- Jobs ---
    JOB_STORE = os.environ.get("JOB_STORE", "sql")                      # sql | memory
    MEMORY_STORE_MAX_JOBS = int(os.environ.get("MEMORY_STORE_MAX_JOBS", "500"))
    ANALYSIS_DISPATCHER = os.environ.get("ANALYSIS_DISPATCHER", "celery")  # celery | thread
    ANALYSIS_MAX_WORKERS = int(os.environ.get("ANALYSIS_MAX_WORKERS", "4"))
    ANALYSIS_HISTORY_LIMIT = int(os.environ.get("ANALYSIS_HISTORY_LIMIT", "1000"))
    ANALYSIS_PRUNE_INTERVAL = float(os.environ.get("ANALYSIS_PRUNE_INTERVAL", "3600"))
    AUTO_CREATE_TABLES = _env_bool("AUTO_CREATE_TABLES")

    # --- Simulated analysis ---
    ANALYSIS_DELAY_SECONDS = float(os.environ.get("ANALYSIS_DELAY_SECONDS", "4"))
    ANALYSIS_PROBE_BACKEND = _env_bool("ANALYSIS_PROBE_BACKEND", "true")
    ANALYSIS_PROBE_TIMEOUT = float(os.environ.get("ANALYSIS_PROBE_TIMEOUT", "10"))
    ANALYSIS_RANDOM_SEED = _env_optional_int("ANALYSIS_RANDOM_SEED")
    ANALYSIS_FAILURE_RATE = float(os.environ.get("ANALYSIS_FAILURE_RATE", "0"))


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    ENV = "development"


class ProductionConfig(BaseConfig):
    DEBUG = False
    ENV = "production"


class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = False
    ENV = "testing"
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite://")

    ANALYSIS_DISPATCHER = "thread"
    ANALYSIS_DELAY_SECONDS = 0.05
    ANALYSIS_PROBE_BACKEND = False
    ANALYSIS_RANDOM_SEED = 1234
    ANALYSIS_FAILURE_RATE = 0.0
