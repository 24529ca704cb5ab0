import logging
import os
import sys
from pathlib import Path
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# In case pytest tests/ -v -s is run, it will only read .env.test
if "pytest" in sys.modules or os.environ.get("TESTING") == "True":
    test_env_path = Path(__file__).parent.parent / "tests" / ".env.test"
    if test_env_path.exists():
        load_dotenv(test_env_path, override=True)
        logger.info("Loaded test environment from: %s", test_env_path)
else:
    load_dotenv()

# Determine if we're in testing mode
TESTING = os.environ.get("TESTING") == "True"
FLASK_ENV = os.environ.get("FLASK_ENV")


def is_production_database(db_url: str) -> bool:
    """Check if a database URL appears to be production."""
    if not db_url:
        return False

    dangerous_patterns = [
        "rlwy.net",
        "railway.internal",
        "production",
        "amazonaws.com",
        "azure.com",
    ]

    for pattern in dangerous_patterns:
        if pattern in db_url.lower():
            return True
    return False


def resolve_database_url() -> str:
    """Pick the database URL for the current environment."""
    if TESTING or FLASK_ENV == "testing":
        url = os.environ.get("DATABASE_TEST_URL") or os.environ.get("DATABASE_URL")
        if not url:
            url = "sqlite:///lawfirm_test.db"
            logger.warning("DATABASE_TEST_URL not set, using local sqlite test database")

        if is_production_database(url):
            raise RuntimeError(
                "Refusing to run tests against what looks like a production database"
            )
        return url

    url = os.environ.get("DATABASE_URL") or os.environ.get("MYSQL_PUBLIC_URL")
    if not url:
        if FLASK_ENV == "development":
            url = "sqlite:///lawfirm_dev.db"
            logger.warning("DATABASE_URL not set, using local development database")
        else:
            raise ValueError(
                "DATABASE_URL environment variable is required for production"
            )

    # Fix MySQL URL format if needed
    if url.startswith("mysql://"):
        url = url.replace("mysql://", "mysql+pymysql://", 1)

    if is_production_database(url):
        logger.warning("Using production database - be careful!")

    return url


def engine_options(db_url: str, timeout_ms: int) -> dict:
    """Connection pool settings with a bounded per-query timeout."""
    timeout_s = max(1, timeout_ms // 1000)
    if db_url.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout_s}}

    options = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }
    if db_url.startswith("mysql"):
        options["connect_args"] = {
            "connect_timeout": 10,
            "read_timeout": timeout_s + 1,
            "write_timeout": timeout_s + 1,
        }
    return options


def split_list(raw) -> list:
    """Split a comma/semicolon/whitespace separated setting into clean items."""
    if not raw:
        return []
    if isinstance(raw, (list, tuple, set)):
        items = raw
    else:
        items = str(raw).replace(",", " ").replace(";", " ").split()
    return [item.strip() for item in items if item and item.strip()]


DATABASE_URL = resolve_database_url()
DB_QUERY_TIMEOUT_MS = int(os.environ.get("DB_QUERY_TIMEOUT_MS", "5000"))


class Config:
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = engine_options(DATABASE_URL, DB_QUERY_TIMEOUT_MS)
    DB_QUERY_TIMEOUT_MS = DB_QUERY_TIMEOUT_MS

    TESTING = TESTING

    # Tokens
    JWT_SECRET = os.environ.get("JWT_SECRET") or os.environ.get("AUTH_SECRET")
    JWT_EXPIRES_IN = os.environ.get("JWT_EXPIRES_IN", "14d")
    ADMIN_GRANT_KEY = os.environ.get("ADMIN_GRANT_KEY")

    # Federated login
    WECHAT_APP_ID = os.environ.get("WECHAT_APP_ID")
    WECHAT_APP_SECRET = os.environ.get("WECHAT_APP_SECRET")

    # Notifications
    EMAIL_DEBUG_TRANSPORT = os.environ.get("EMAIL_DEBUG_TRANSPORT")
    EMAIL_DEBUG_STREAM = os.environ.get("EMAIL_DEBUG_STREAM")
    EMAIL_SERVICE = os.environ.get("EMAIL_SERVICE")
    EMAIL_HOST = os.environ.get("EMAIL_HOST")
    EMAIL_PORT = os.environ.get("EMAIL_PORT")
    EMAIL_SECURE = os.environ.get("EMAIL_SECURE")
    EMAIL_USER = os.environ.get("EMAIL_USER")
    EMAIL_PASS = os.environ.get("EMAIL_PASS")
    EMAIL_FROM = os.environ.get("EMAIL_FROM")
    RESEND_API_KEY = os.environ.get("RESEND_API_KEY")
    NOTIFICATION_TIMEZONE = os.environ.get("NOTIFICATION_TIMEZONE", "Asia/Shanghai")

    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "true").lower() == "true"
