import logging
import shutil
import subprocess
import sys
from pathlib import Path

from socialchat.core.config import settings

logger = logging.getLogger(__name__)

# alembic.ini lives at the repository root
PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _sqlite_path(database_url: str) -> Path | None:
    """File path of a file-backed SQLite URL, None for anything else."""
    if not database_url.startswith("sqlite") or ":memory:" in database_url:
        return None
    _, _, path = database_url.partition(":///")
    return Path(path) if path else None


def _alembic_command() -> list[str]:
    if shutil.which("alembic"):
        return ["alembic"]
    return [sys.executable, "-m", "alembic"]


async def run_migrations():
    """Upgrades the database to the latest alembic revision."""
    logger.info("Running database migrations...")

    db_path = _sqlite_path(settings.DATABASE_URL)
    if db_path is not None and not db_path.parent.exists():
        logger.info(f"Creating database directory: {db_path.parent}")
        db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        result = subprocess.run(
            _alembic_command() + ["upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            cwd=str(PROJECT_ROOT),
        )
    except subprocess.CalledProcessError as e:
        logger.error(f"Migration failed with exit code {e.returncode}")
        if e.stdout:
            logger.error(f"Stdout: {e.stdout}")
        if e.stderr:
            logger.error(f"Stderr: {e.stderr}")
        raise RuntimeError("Database migration failed") from e
    except OSError as e:
        logger.error(f"Could not start alembic: {e}")
        raise RuntimeError("Database migration failed") from e

    logger.info("Migrations completed successfully")
    if result.stdout:
        logger.info(f"Alembic output: {result.stdout}")
