# formflow/esign/router.py

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from formflow.cache.manager import CacheManager, get_cache_manager
from formflow.core.db import get_db
from formflow.esign.autentique_client import AutentiqueClient
from formflow.esign.services import SignatureOrchestrator
from formflow.esign.utils import SIGNATURE_HEADER
from formflow.esign.webhooks import WebhookGateway
from formflow.utils.general import utcnow
from formflow.utils.logger import get_logger
from formflow.utils.storage import FileStorage, get_file_storage

router = APIRouter(tags=["Esign"], prefix="/autentique")
logger = get_logger(__name__)

WEBHOOK_ROUTE = "/webhook"


def get_autentique_client() -> AutentiqueClient:
    """
    Method for obtaining the Autentique API client
    """
    return AutentiqueClient()


def get_signature_orchestrator(
    db: Session = Depends(get_db),
    cache: CacheManager = Depends(get_cache_manager),
    client: AutentiqueClient = Depends(get_autentique_client),
    storage: FileStorage = Depends(get_file_storage),
) -> SignatureOrchestrator:
    return SignatureOrchestrator(db=db, cache=cache, client=client, storage=storage)


def get_webhook_gateway(
    db: Session = Depends(get_db),
    orchestrator: SignatureOrchestrator = Depends(get_signature_orchestrator),
) -> WebhookGateway:
    return WebhookGateway(db, orchestrator)


@router.post(WEBHOOK_ROUTE)
async def autentique_webhook(
    request: Request,
    signature: Optional[str] = Header(default=None, alias=SIGNATURE_HEADER),
    gateway: WebhookGateway = Depends(get_webhook_gateway),
):
    """
    Receives document events from Autentique. Authentication is the HMAC
    signature header, not a user session.
    """
    raw_body = await request.body()
    status_code, body = await run_in_threadpool(gateway.handle, raw_body, signature)
    return JSONResponse(status_code=status_code, content=body)


@router.get(WEBHOOK_ROUTE + "/test")
async def test_webhook(request: Request):
    """Reachability check for the webhook endpoint"""
    return {
        "success": True,
        "message": "Webhook endpoint is active",
        "endpoint": str(request.url_for("autentique_webhook")),
        "timestamp": utcnow().isoformat(),
    }
