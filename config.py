"""Environment-aware configuration for the Flask application."""
import os
from datetime import timedelta


class BaseConfig:
    def __init__(self) -> None:
        # Defaults for local dev: SQLite db and a non-empty secret. Override via env for production.
        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
        db_url = os.getenv("DATABASE_URL")
        # If DATABASE_URL points to a placeholder host (e.g., db_host) or is missing, fall back to SQLite for local dev.
        if db_url and "db_host" not in db_url:
            self.SQLALCHEMY_DATABASE_URI = db_url
        else:
            self.SQLALCHEMY_DATABASE_URI = os.getenv(
                "SQLITE_URL",
                f"sqlite:///{os.path.join(os.getcwd(), 'instance', 'complaints.db')}",
            )
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False
        self.SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_size": int(os.getenv("DB_POOL_SIZE", 10)),
            "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 20)),
            "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),
            "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 1800)),
        }
        if self.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
            # SQLite uses a static/null pool and rejects the sizing options above.
            self.SQLALCHEMY_ENGINE_OPTIONS = {}
        self.PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")
        self.PERMANENT_SESSION_LIFETIME = timedelta(days=1)
        self.WTF_CSRF_TIME_LIMIT = 3600
        self.WTF_CSRF_ENABLED = True
        self.JSON_SORT_KEYS = False
        self.AUTH_USER_HEADER = os.getenv("AUTH_USER_HEADER", "X-User-Id")
        self.MAIL_SERVER = os.getenv("MAIL_SERVER", "")
        self.MAIL_PORT = int(os.getenv("MAIL_PORT", 25))
        self.MAIL_USERNAME = os.getenv("MAIL_USERNAME", "")
        self.MAIL_PASSWORD = os.getenv("MAIL_PASSWORD", "")
        self.MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "true").lower() == "true"
        self.MAIL_USE_SSL = os.getenv("MAIL_USE_SSL", "false").lower() == "true"
        self.MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "complaints@civic.local")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))
        self.DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@civic.local")
        self.DEFAULT_ADMIN_NAME = os.getenv("DEFAULT_ADMIN_NAME", "System Administrator")
        self.TOPOLOGY_FILE = os.getenv("TOPOLOGY_FILE", "")
        self.ESCALATION_YELLOW_DAYS = int(os.getenv("ESCALATION_YELLOW_DAYS", 45))
        self.ESCALATION_RED_DAYS = int(os.getenv("ESCALATION_RED_DAYS", 60))
        self.ESCALATION_NOTIFY_EMAIL = os.getenv("ESCALATION_NOTIFY_EMAIL", "true").lower() == "true"
        self.ESCALATION_NOTIFY_SMS = os.getenv("ESCALATION_NOTIFY_SMS", "false").lower() == "true"
        self.OVERDUE_ASSIGNMENT_DAYS = int(os.getenv("OVERDUE_ASSIGNMENT_DAYS", 7))
        self.COMPLAINT_WRITE_ATTEMPTS = int(os.getenv("COMPLAINT_WRITE_ATTEMPTS", 3))
        self.COMPLAINTS_PER_PAGE = int(os.getenv("COMPLAINTS_PER_PAGE", 10))
        self.PUBLIC_MAX_COMPLAINTS = int(os.getenv("PUBLIC_MAX_COMPLAINTS", 50))
        self.PUBLIC_VOTE_LIMIT = int(os.getenv("PUBLIC_VOTE_LIMIT", 30))
        self.TREND_WINDOW_DAYS = int(os.getenv("TREND_WINDOW_DAYS", 30))
        self.ANALYTICS_TOP_OFFICIALS = int(os.getenv("ANALYTICS_TOP_OFFICIALS", 10))
        self.NOTIFY_ASYNC = os.getenv("NOTIFY_ASYNC", "true").lower() == "true"
        self.NOTIFY_WORKERS = int(os.getenv("NOTIFY_WORKERS", 4))
        self.MAX_CONTENT_LENGTH = int(os.getenv("MAX_REQUEST_BYTES", 2 * 1024 * 1024))


class DevelopmentConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = True
        self.ENV = "development"
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG").upper()


class TestingConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.TESTING = True
        self.ENV = "testing"
        self.SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite://")
        self.SQLALCHEMY_ENGINE_OPTIONS = {}
        self.WTF_CSRF_ENABLED = False
        self.NOTIFY_ASYNC = False
        self.MAIL_SERVER = ""
        self.TOPOLOGY_FILE = ""
        self.ESCALATION_YELLOW_DAYS = 45
        self.ESCALATION_RED_DAYS = 60
        self.PUBLIC_VOTE_LIMIT = 1000


class ProductionConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = False
        self.ENV = "production"
        self.SESSION_COOKIE_SECURE = True
