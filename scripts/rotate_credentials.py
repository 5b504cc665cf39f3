"""
Re-encrypt every stored connection credential under the primary ENCRYPTION_KEY.

Rotation: prepend the new key (ENCRYPTION_KEY="new,old"), deploy, run this
script, then drop the old key.

Usage:
    python scripts/rotate_credentials.py
    python scripts/rotate_credentials.py --dry-run
"""
import argparse
import asyncio
import logging

from sqlalchemy import select

from syncbridge.database import async_session_factory
from syncbridge.models.connection import Connection
from syncbridge.utils.encryption import rotate_value

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CREDENTIAL_COLUMNS = (
    "target_token_encrypted",
    "source_api_key_encrypted",
    "webhook_secret_encrypted",
)


async def rotate(dry_run: bool) -> int:
    rotated = 0
    async with async_session_factory() as session:
        connections = (await session.execute(select(Connection))).scalars().all()
        for connection in connections:
            for column in CREDENTIAL_COLUMNS:
                value = getattr(connection, column)
                if value:
                    setattr(connection, column, rotate_value(value))
                    rotated += 1
        if dry_run:
            await session.rollback()
        else:
            await session.commit()

    logger.info(
        "%s %d credentials across %d connections",
        "Would rotate" if dry_run else "Rotated", rotated, len(connections),
    )
    return rotated


def main():
    parser = argparse.ArgumentParser(description="Re-encrypt connection credentials")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()
    asyncio.run(rotate(args.dry_run))


if __name__ == "__main__":
    main()
