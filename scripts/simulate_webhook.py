"""
Send a signed SmartSuite-style webhook to a running SyncBridge instance.

Usage:
    python scripts/simulate_webhook.py --connection <uuid> --secret <webhook secret>
    python scripts/simulate_webhook.py --connection <uuid> --secret s3cret --record r42 --title "Widget"
    python scripts/simulate_webhook.py --connection <uuid> --secret s3cret --repeat 3
"""
import argparse
import asyncio
import json
import logging
import time

import httpx

from syncbridge.utils.webhook_signatures import compute_signature

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"


async def send_webhook(
    connection_id: str,
    secret: str,
    record_id: str,
    title: str,
    idempotency_key: str = None,
    bad_signature: bool = False,
):
    """POST one record change to /hooks/{connection_id}."""
    payload = {
        "event_type": "record.updated",
        "record_id": record_id,
        "data": {
            "id": record_id,
            "title": title,
            "status": {"value": "published", "label": "Published"},
            "price": "19.99",
            "tags": [{"name": "new"}, {"name": "featured"}],
        },
    }
    body = json.dumps(payload).encode()
    signature = compute_signature(secret, body)
    if bad_signature:
        signature = "0" * len(signature)

    headers = {
        "Content-Type": "application/json",
        "X-Signature": f"sha256={signature}",
        "X-Timestamp": str(int(time.time())),
    }
    if idempotency_key:
        headers["X-Idempotency-Key"] = idempotency_key

    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(f"{BASE_URL}/hooks/{connection_id}", content=body, headers=headers)
        logger.info("Webhook response: %s %s", resp.status_code, resp.text)
        return resp


async def main():
    parser = argparse.ArgumentParser(description="Simulate SmartSuite webhooks")
    parser.add_argument("--connection", required=True)
    parser.add_argument("--secret", required=True)
    parser.add_argument("--record", default="rec_demo_1")
    parser.add_argument("--title", default="Demo Widget")
    parser.add_argument("--idempotency-key", default=None)
    parser.add_argument("--repeat", type=int, default=1)
    parser.add_argument("--bad-signature", action="store_true")
    args = parser.parse_args()

    logger.info("Sending %d webhook(s) for record %s...", args.repeat, args.record)
    for _ in range(args.repeat):
        await send_webhook(
            args.connection,
            args.secret,
            args.record,
            args.title,
            idempotency_key=args.idempotency_key,
            bad_signature=args.bad_signature,
        )


if __name__ == "__main__":
    asyncio.run(main())
