"""Relay webhook: validates enhanced transactions and queues them."""

import hmac
from typing import Any, List, Protocol

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from config import Config
from log import get_logger
from messaging.schema import TransactionNotification

logger = get_logger(__name__)


class Publisher(Protocol):
    def publish(self, notification: TransactionNotification) -> bool:
        ...


def create_app(config: Config, publisher: Publisher) -> FastAPI:
    """Build the webhook application.

    Args:
        config: Configuration object (``webhook_auth`` guards the endpoint)
        publisher: Where validated notifications go
    """
    app = FastAPI(title="GSD Hub Indexer Webhook", version="0.1.0")

    @app.get("/healthz")
    def healthz() -> dict:
        return {"status": "ok"}

    @app.post("/webhooks/helius")
    async def receive_notifications(request: Request) -> dict:
        if not config.webhook_auth:
            logger.error("WEBHOOK_AUTH not configured")
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook not configured")

        supplied = request.headers.get("authorization") or ""
        if not hmac.compare_digest(supplied.encode(), config.webhook_auth.encode()):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

        try:
            body: Any = await request.json()
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

        items = body if isinstance(body, list) else [body]
        published = 0
        errors: List[str] = []

        for item in items:
            try:
                notification = TransactionNotification.model_validate(item)
            except ValidationError as e:
                errors.append(f"Invalid transaction: {e.errors()[0].get('msg', 'validation error')}")
                continue

            # pika blocks; keep it off the event loop
            if await run_in_threadpool(publisher.publish, notification):
                published += 1
            else:
                errors.append(f"{notification.signature}: publish failed")

        if errors:
            logger.warning(f"Webhook queued {published}/{len(items)} transactions with {len(errors)} errors")
        else:
            logger.info(f"Webhook queued {published} transactions")

        return {
            "received": True,
            "published": published,
            "total": len(items),
            "errors": errors or None,
        }

    return app
