import logging
import time
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from app.config import settings
from app.models.database import Base, _normalize_database_url, engine
from app.models import Order, OrderItem, Product, SubOrder, User  # noqa: F401 - register models

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def wait_for_db(retries: int, retry_delay_seconds: int) -> None:
    """Block until the checkout database answers ``SELECT 1`` or retries run out."""
    last_error = None
    for attempt in range(1, retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError as exc:
            last_error = exc
            logger.warning("Checkout database unavailable (try %s of %s): %s", attempt, retries, exc)
            if attempt < retries:
                time.sleep(retry_delay_seconds)
            continue
        logger.info("Checkout database reachable after %s attempt(s)", attempt)
        return

    raise RuntimeError(
        f"Database is unreachable after {retries} attempts; "
        "orders cannot be created until DATABASE_URL points at a running server."
    ) from last_error


def _uses_sqlite() -> bool:
    return settings.DATABASE_URL.startswith("sqlite://")


def init_db():
    """Wait for the database, then bring the order/product schema up to date."""
    wait_for_db(
        retries=settings.DB_CONNECT_RETRIES,
        retry_delay_seconds=settings.DB_CONNECT_RETRY_DELAY_SECONDS,
    )
    if _uses_sqlite():
        # Local and test databases get the schema straight from the models.
        Base.metadata.create_all(bind=engine)
        logger.info("SQLite schema created from models")
        return
    run_migrations()


def run_migrations() -> None:
    alembic_ini = PROJECT_ROOT / "alembic.ini"
    script_location = PROJECT_ROOT / "alembic"
    if not alembic_ini.is_file() or not script_location.is_dir():
        raise RuntimeError(f"Cannot migrate the checkout schema: {alembic_ini} or {script_location} is missing.")

    from alembic import command
    from alembic.config import Config

    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(script_location))
    config.set_main_option("sqlalchemy.url", _normalize_database_url(settings.DATABASE_URL))
    config.attributes["configure_logger"] = False
    command.upgrade(config, "head")
    logger.info("Checkout schema migrated to head")
