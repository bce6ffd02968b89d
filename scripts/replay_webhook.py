"""Deliver one signed checkout webhook several times, concurrently.

Used to check that duplicate or racing deliveries of the same session mint a
single credit (or complete a transfer once).
"""

import argparse
import asyncio
import hashlib
import hmac
import json
import time
from collections import Counter
from uuid import uuid4

import httpx


def build_event(session_id: str, user_id: str, transfer_request_id: str | None, amount_pence: int) -> dict:
    metadata = {"purpose": "registration", "userId": user_id}
    if transfer_request_id:
        metadata = {
            "purpose": "transfer",
            "userId": user_id,
            "transferRequestId": transfer_request_id,
            "toUserId": user_id,
        }
    return {
        "id": f"evt_{uuid4().hex}",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_status": "paid",
                "amount_total": amount_pence,
                "currency": "gbp",
                "metadata": metadata,
            }
        },
    }


def sign(payload: str, secret: str, timestamp: int | None = None) -> str:
    """Build a `Stripe-Signature` header value for `payload`."""

    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


async def run(base_url: str, secret: str, event: dict, copies: int) -> Counter:
    payload = json.dumps(event)
    headers = {"content-type": "application/json", "stripe-signature": sign(payload, secret)}
    async with httpx.AsyncClient(timeout=10.0) as client:

        async def deliver() -> int:
            try:
                resp = await client.post(f"{base_url}/api/payments/webhook", content=payload, headers=headers)
                return resp.status_code
            except httpx.HTTPError:
                return 599

        codes = await asyncio.gather(*(deliver() for _ in range(copies)))
    return Counter(codes)


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--secret", required=True, help="webhook signing secret (whsec_...)")
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--session-id", default=None)
    parser.add_argument("--transfer-request-id", default=None)
    parser.add_argument("--amount-pence", type=int, default=2499)
    parser.add_argument("--copies", type=int, default=5)
    args = parser.parse_args()

    session_id = args.session_id or f"cs_test_{uuid4().hex}"
    event = build_event(session_id, args.user_id, args.transfer_request_id, args.amount_pence)
    results = asyncio.run(run(args.base_url, args.secret, event, args.copies))
    print(f"session_id={session_id}")
    for code, count in sorted(results.items()):
        print(f"status_{code}={count}")
