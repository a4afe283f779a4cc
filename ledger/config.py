import os


class Config:
    """Settings read from the environment; subclasses override per environment."""

    # --- Flask ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Hosted Postgres URLs often start with "postgres://", a scheme
    # SQLAlchemy no longer recognises.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    # Max age (seconds) of a signed webhook timestamp before it's rejected
    STRIPE_WEBHOOK_TOLERANCE = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE", 300))
    STRIPE_TIMEOUT_SECONDS = int(os.environ.get("STRIPE_TIMEOUT_SECONDS", 15))
    # The SDK reuses the same idempotency key on its own retries
    STRIPE_MAX_NETWORK_RETRIES = int(os.environ.get("STRIPE_MAX_NETWORK_RETRIES", 2))

    # --- Checkout ---
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000")
    CHECKOUT_CURRENCY = os.environ.get("CHECKOUT_CURRENCY", "usd")
    CHECKOUT_RATE_LIMIT = os.environ.get("CHECKOUT_RATE_LIMIT", "30 per minute")

    # --- SQLAlchemy ---
    DB_STATEMENT_TIMEOUT_MS = int(os.environ.get("DB_STATEMENT_TIMEOUT_MS", 5000))
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_timeout": 10,
    }
    if _db_url.startswith(("postgres://", "postgresql://")):
        SQLALCHEMY_ENGINE_OPTIONS["connect_args"] = {
            "options": f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}",
        }

    @staticmethod
    def validate():
        """Raise RuntimeError naming every required variable that is unset."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "FRONTEND_URL",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development. Falls back to a SQLite file."""

    DEBUG = True
    if not Config.SQLALCHEMY_DATABASE_URI:
        SQLALCHEMY_DATABASE_URI = "sqlite:///ledger-dev.db"
        SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}


class TestConfig(Config):
    """Testing — in-memory SQLite, rate limiting off."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    FRONTEND_URL = "http://localhost:3000"
    CHECKOUT_CURRENCY = "usd"
    RATELIMIT_ENABLED = False

    @staticmethod
    def validate():
        """Skip validation in test mode; everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production. Everything comes from the environment."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
