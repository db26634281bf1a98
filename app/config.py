import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


class Settings:
    @staticmethod
    def _get_int(name: str, default: int) -> int:
        return int(os.getenv(name, str(default)))

    @property
    def DATABASE_URL(self) -> str:
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL is required")
        return database_url

    @property
    def DB_CONNECT_RETRIES(self) -> int:
        return self._get_int("DB_CONNECT_RETRIES", 5)

    @property
    def DB_CONNECT_RETRY_DELAY_SECONDS(self) -> int:
        return self._get_int("DB_CONNECT_RETRY_DELAY_SECONDS", 2)

    @property
    def LOG_LEVEL(self) -> str:
        return os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def JWT_SECRET(self) -> str:
        return os.getenv("JWT_SECRET", "change-me-in-production")

    @property
    def JWT_ALGORITHM(self) -> str:
        return os.getenv("JWT_ALGORITHM", "HS256")

    @property
    def STRIPE_SECRET_KEY(self) -> str:
        return os.getenv("STRIPE_SECRET_KEY", "")

    @property
    def STRIPE_WEBHOOK_SECRET(self) -> str:
        return os.getenv("STRIPE_WEBHOOK_SECRET", "")

    @property
    def STRIPE_TIMEOUT_SECONDS(self) -> int:
        return self._get_int("STRIPE_TIMEOUT_SECONDS", 20)

    @property
    def STRIPE_MAX_NETWORK_RETRIES(self) -> int:
        return self._get_int("STRIPE_MAX_NETWORK_RETRIES", 2)

    @property
    def STRIPE_MIN_CHARGE_CENTS(self) -> int:
        """Smallest charge the gateway accepts, in minor units ($0.50 for USD)."""
        return self._get_int("STRIPE_MIN_CHARGE_CENTS", 50)

    @property
    def DEFAULT_CURRENCY(self) -> str:
        return os.getenv("DEFAULT_CURRENCY", "USD").upper()

    @property
    def ORDER_TX_MAX_WAIT_MS(self) -> int:
        """Max time to wait for a connection slot or a row lock during order creation."""
        return self._get_int("ORDER_TX_MAX_WAIT_MS", 20000)

    @property
    def ORDER_TX_TIMEOUT_MS(self) -> int:
        """Max time the order creation transaction may run before it is rolled back."""
        return self._get_int("ORDER_TX_TIMEOUT_MS", 30000)

    @property
    def WEBHOOK_ORDER_FALLBACK_WINDOW_HOURS(self) -> int:
        return self._get_int("WEBHOOK_ORDER_FALLBACK_WINDOW_HOURS", 72)


settings = Settings()

# Validate critical settings
if settings.JWT_SECRET == "change-me-in-production":
    import warnings
    warnings.warn("JWT_SECRET is using default value. Change it in production!", UserWarning)
