"""RevenueCat webhook endpoint."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from assetcraft.database import get_db
from assetcraft.services.store_service import handle_revenuecat_webhook

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/revenuecat")
async def revenuecat_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Receive and process RevenueCat webhook events.

    Reads the raw JSON body and the Authorization header, then delegates to
    the store service for verification and handling.
    """
    try:
        payload = json.loads(await request.body())
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    authorization = request.headers.get("authorization")
    return await handle_revenuecat_webhook(db, authorization, payload)
