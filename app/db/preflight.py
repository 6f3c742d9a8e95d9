"""
Database preflight check run before the API starts serving.

Retries connectivity a few times (the database container may still be
starting) and stops the process with an actionable message when the
credentials are rejected.
"""
import sys
import time

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger("db_preflight")


def _safe_url(db_url: str) -> str:
    # Never log credentials
    return db_url.split("@")[-1] if "@" in db_url else "configured URL"


def run_db_preflight(retries: int = 5, delay: int = 2) -> bool:
    """Connect and run ``SELECT 1``; exit the process when the database stays unreachable."""
    db_url = settings.DATABASE_URL
    if not db_url:
        logger.error("CRITICAL: DATABASE_URL is not configured!")
        sys.exit(1)

    logger.info(f"Running DB preflight check against: {_safe_url(db_url)}")
    engine = create_engine(db_url, connect_args={"connect_timeout": 5})

    try:
        for attempt in range(1, retries + 1):
            try:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                logger.info("Database connection successful")
                return True
            except OperationalError as e:
                err_msg = str(e)
                if "password authentication failed" in err_msg.lower():
                    logger.error(
                        f"FATAL: database authentication failed for user {settings.POSTGRES_USER} "
                        f"on {settings.POSTGRES_DB}. POSTGRES_USER/POSTGRES_PASSWORD do not match the "
                        f"credentials stored in the database volume; reset the development volume "
                        f"or rotate the password."
                    )
                    sys.exit(1)

                if attempt < retries:
                    logger.warning(f"Attempt {attempt}/{retries} failed: {err_msg}. Retrying in {delay}s...")
                    time.sleep(delay)
                else:
                    logger.error(f"CRITICAL: could not connect to database after {retries} attempts: {err_msg}")
                    sys.exit(1)
    finally:
        engine.dispose()
    return False


if __name__ == "__main__":
    run_db_preflight()
