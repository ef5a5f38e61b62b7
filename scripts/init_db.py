# scripts/init_db.py
"""Create the pgvector extension and the canon tables."""

from __future__ import annotations

from serialist.canon.db import create_schema, dispose_engine
from serialist.core.logging import get_logger, init_logging

logger = get_logger(__name__)


async def init_db() -> None:
    """Create every canon table that does not exist yet."""
    logger.info("Creating canon schema")
    try:
        await create_schema()
        logger.info("Canon schema ready")
    except Exception as e:
        logger.exception("Failed to create canon schema: %s", e)
        raise
    finally:
        await dispose_engine()


if __name__ == "__main__":  # pragma: no cover - CLI execution
    import asyncio

    init_logging()
    asyncio.run(init_db())
