import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlmodel import Session

from filiacao.api.deps import get_app_settings, get_db
from filiacao.core.config import Settings
from filiacao.core.logging_setup import logger
from filiacao.services.signature_webhook import ClicksignWebhookService

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADERS = ("content-hmac", "x-clicksign-signature", "x-signature")


@router.post("/clicksign")
async def clicksign_webhook(
    request: Request,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    raw_body = await request.body()
    header = next((request.headers[name] for name in SIGNATURE_HEADERS if request.headers.get(name)), None)

    service = ClicksignWebhookService(session, settings)
    if not service.verify_signature(raw_body, header):
        logger.warning("clicksign.invalid_signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid signature")

    try:
        payload = json.loads(raw_body or b"{}")
    except (UnicodeDecodeError, json.JSONDecodeError):
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    return service.handle_webhook(payload, raw_body).as_dict()
