from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from bot import ShiftBot, WebhookBody
from line_api import LineMessenger
from stores import get_bot, get_messenger

logger = structlog.get_logger("routes.webhook")

router = APIRouter(tags=["line"])


@router.post("/webhook")
async def line_webhook(
    request: Request,
    x_line_signature: Optional[str] = Header(default=None),
    messenger: LineMessenger = Depends(get_messenger),
    bot: ShiftBot = Depends(get_bot),
):
    """LINE Messaging API webhook. The signature covers the raw body bytes."""
    body = (await request.body()).decode("utf-8")
    if not messenger.verify_signature(body, x_line_signature):
        logger.warning("line_signature_invalid")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = WebhookBody.model_validate_json(body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="malformed webhook payload")

    for event in payload.events:
        # one bad event must not drop the rest of the batch
        try:
            await run_in_threadpool(bot.handle_event, event)
        except Exception:
            logger.error("line_event_failed", type=event.type, exc_info=True)

    return {"success": True}
