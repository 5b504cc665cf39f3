"""
Seed a connection and its active field mapping into the database.

Usage:
    python scripts/seed_connection.py --collection 64f0c0ffee --webflow-token wf_xxx
    python scripts/seed_connection.py --name "Products" --rate-limit 30 --webhook-secret s3cret
"""
import argparse
import asyncio
import logging
import secrets

from syncbridge.database import async_session_factory
from syncbridge.models.connection import Connection, ConnectionStatus
from syncbridge.services.mappings import activate_mapping
from syncbridge.utils.encryption import encrypt_value

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_FIELD_MAP = {
    "name": {"type": "direct", "source": "title", "transform": "trim"},
    "summary": {
        "type": "template",
        "template": "{{title}} ({{status.label}})",
        "transform": "truncate",
        "transformArgs": [256],
    },
    "price": {"type": "direct", "source": "price", "transform": "toNumber", "default": 0},
    "tags": {"type": "expression", "expression": "tags[].name"},
    "featured": {"type": "direct", "source": "featured", "transform": "toBoolean", "default": False},
}


async def seed(args):
    webhook_secret = args.webhook_secret or secrets.token_hex(32)

    async with async_session_factory() as session:
        connection = Connection(
            name=args.name,
            status=ConnectionStatus.ACTIVE,
            source_table_id=args.table,
            source_base_id=args.account,
            source_api_key_encrypted=encrypt_value(args.smartsuite_key) if args.smartsuite_key else None,
            target_site_id=args.site,
            target_collection_id=args.collection,
            target_token_encrypted=encrypt_value(args.webflow_token),
            webhook_secret_encrypted=encrypt_value(webhook_secret),
            rate_limit_per_min=args.rate_limit,
            max_retries=args.max_retries,
        )
        session.add(connection)
        await session.flush()

        await activate_mapping(
            session,
            connection.id,
            DEFAULT_FIELD_MAP,
            slug_template="{{title}}",
            required_fields=["name"],
            field_types={"name": "PlainText", "price": "Number", "featured": "Switch"},
            actor="seed",
        )
        await session.commit()

    logger.info("Seeded connection %s (%s)", connection.id, args.name)
    logger.info("Webhook URL: /hooks/%s", connection.id)
    if not args.webhook_secret:
        logger.info("Generated webhook secret: %s", webhook_secret)


def main():
    parser = argparse.ArgumentParser(description="Seed a SmartSuite -> Webflow connection")
    parser.add_argument("--name", default="Demo Products")
    parser.add_argument("--table", default="demo_table")
    parser.add_argument("--account", default=None)
    parser.add_argument("--smartsuite-key", default=None)
    parser.add_argument("--site", default=None)
    parser.add_argument("--collection", default="demo_collection")
    parser.add_argument("--webflow-token", default="wf_demo_token")
    parser.add_argument("--webhook-secret", default=None)
    parser.add_argument("--rate-limit", type=int, default=50)
    parser.add_argument("--max-retries", type=int, default=5)
    args = parser.parse_args()

    asyncio.run(seed(args))


if __name__ == "__main__":
    main()
