# salesync/routes/webhooks.py
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.config import Settings, get_settings
from salesync.dependencies import get_db
from salesync.services.webhook_handler import WebhookHandler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/{marketplace}")
async def receive_webhook(
    marketplace: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Receive a signed sale notification from a marketplace"""
    body = await request.body()
    status_code, content = await WebhookHandler(db, settings).handle_webhook(marketplace, body, request.headers)
    return JSONResponse(status_code=status_code, content=content)


@router.get("/{marketplace}")
async def verify_webhook(
    marketplace: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Subscription verification handshake"""
    status_code, content = WebhookHandler(db, settings).validate_webhook(marketplace, request.query_params)
    if isinstance(content, str):
        return PlainTextResponse(content, status_code=status_code)
    return JSONResponse(status_code=status_code, content=content)
