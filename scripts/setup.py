#!/usr/bin/env python3
"""Setup script for the tour desk service."""

import asyncio
import logging
import sys
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from tourdesk.core.database import async_session_factory, close_db
from tourdesk.models import Guide
from tourdesk.services.guide_service import GuideService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_GUIDES = [
    {"name": "Chiara Bianchi", "email": "chiara@example.com", "languages": ["Italian", "English"]},
    {"name": "Paolo Ricci", "email": "paolo@example.com", "languages": ["English", "Spanish"]},
    {"name": "Marta Conti", "email": "marta@example.com", "languages": ["French", "German"]},
]


def migrate_database():
    """Bring the database schema to the latest revision."""
    logger.info("Running database migrations...")
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))
    # env.py runs its own event loop, so this must stay outside asyncio.run
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_guides():
    """Register a few guides so tours can be assigned right away."""
    logger.info("Creating sample guides...")

    async with async_session_factory() as db:
        existing = await db.scalar(select(func.count()).select_from(Guide))
        if existing:
            logger.info("Guides already exist, skipping...")
            return

        service = GuideService(db)
        for guide in SAMPLE_GUIDES:
            await service.create_guide(**guide)

    await close_db()
    logger.info("Sample guides created successfully!")


def main():
    """Main setup function."""
    logger.info("Starting tour desk setup...")

    migrate_database()
    asyncio.run(create_sample_guides())

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn tourdesk.main:app --reload")


if __name__ == "__main__":
    main()
