import os


def _env_bool(name, default="false"):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class BaseConfig:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False
    API_PREFIX = "/api"

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    CORS_ALLOWED_ORIGINS = os.environ.get("CORS_ALLOWED_ORIGINS", "")

    # Lending parameters (basis points)
    MAX_LTV_BPS = int(os.environ.get("MAX_LTV_BPS", 5000))
    ORIGINATION_FEE_BPS = int(os.environ.get("ORIGINATION_FEE_BPS", 100))
    DEFAULT_INTEREST_RATE_BPS = int(os.environ.get("DEFAULT_INTEREST_RATE_BPS", 800))
    LIQUIDATION_THRESHOLD_BPS = int(os.environ.get("LIQUIDATION_THRESHOLD_BPS", 7500))
    REQUIRE_PAYOUT_DESTINATION = _env_bool("REQUIRE_PAYOUT_DESTINATION")

    # Rent
    DEFAULT_MANAGEMENT_FEE_PERCENT = os.environ.get("DEFAULT_MANAGEMENT_FEE_PERCENT", "10")

    DEMO_MODE = _env_bool("DEMO_MODE")

    # Funds provider
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")

    # On-chain mirror
    EVM_RPC_URL = os.environ.get("EVM_RPC_URL")
    EVM_PRIVATE_KEY = os.environ.get("EVM_PRIVATE_KEY")
    EVM_CHAIN_ID = int(os.environ.get("EVM_CHAIN_ID", 80002))
    BORROW_VAULT_ADDRESS = os.environ.get("BORROW_VAULT_ADDRESS")

    # Distribution single-flight lock; Redis when running more than one instance
    REDIS_URL = os.environ.get("REDIS_URL")
    DISTRIBUTION_LOCK_TIMEOUT = int(os.environ.get("DISTRIBUTION_LOCK_TIMEOUT", 3600))


class Config(BaseConfig):
    # Secret key for sessions / JWT - REQUIRED
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Database connection - REQUIRED
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")

    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", SECRET_KEY)

    REQUIRED = ("SECRET_KEY", "SQLALCHEMY_DATABASE_URI")


def validate_config(config):
    """Refuse to boot production without its secrets; checked by the app factory."""
    for key in config.get("REQUIRED", ()):
        if not config.get(key):
            env_name = "DATABASE_URL" if key == "SQLALCHEMY_DATABASE_URI" else key
            raise ValueError(f"{env_name} environment variable must be set")


class DevelopmentConfig(BaseConfig):
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret")
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", SECRET_KEY)
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///propledger-dev.db")
    DEMO_MODE = _env_bool("DEMO_MODE", "true")


class TestingConfig(BaseConfig):
    TESTING = True
    SECRET_KEY = "test-secret"
    JWT_SECRET_KEY = "test-jwt-secret-with-enough-length-for-hs256"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    LOG_LEVEL = "WARNING"
    DEMO_MODE = True
    STRIPE_SECRET_KEY = None
    EVM_RPC_URL = None
    REDIS_URL = None
    REQUIRE_PAYOUT_DESTINATION = False
