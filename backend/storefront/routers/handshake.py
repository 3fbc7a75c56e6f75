"""Referral handshake endpoints.

WHAT:
    HTTP surface of the referral handshake. The dialog itself runs in the
    browser; these endpoints answer "should it open?", record the lead and
    acknowledge dismissals.

WHY:
    Each request rebuilds a ReferralHandshakeController over the request's
    cookies, so the completion marker cookie is the only state carried
    between calls and the same state machine rules apply as in-process.

RESPONSES (POST /v1/handshake/lead):
    200  lead recorded, `handshake_completed` cookie set
    409  this browser already completed the handshake
    422  name or phone missing (form stays open)
    502  backend failure, retry allowed (marker not set)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from ..deps import get_remote_client
from ..errors import HandshakeValidationError
from ..referral.handshake import REFERRAL_PARAM, HandshakeState, ReferralHandshakeController
from ..services.remote_data_client import RemoteDataClient
from ..schemas import DismissRequest, HandshakeStatusResponse, LeadRequest, LeadResponse
from ..web.cookies import CookieStorage
from ..web.middleware import cookie_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/handshake", tags=["Referral Handshake"])


def _controller(request: Request, storage: CookieStorage, remote: RemoteDataClient) -> ReferralHandshakeController:
    settings = request.app.state.runtime.settings
    return ReferralHandshakeController(
        storage,
        remote,
        delay_seconds=settings.HANDSHAKE_DELAY_SECONDS,
        marker_key=settings.HANDSHAKE_COOKIE_NAME,
    )


@router.get("", response_model=HandshakeStatusResponse, summary="Referral dialog eligibility")
async def get_handshake(
    request: Request,
    ref: Optional[str] = Query(default=None, description="Referral token from the landing URL"),
    remote: RemoteDataClient = Depends(get_remote_client),
) -> HandshakeStatusResponse:
    """Tell the app shell whether to open the referral dialog on first mount."""
    controller = _controller(request, cookie_storage(request), remote)
    state = controller.mount({REFERRAL_PARAM: ref or ""})

    if state is not HandshakeState.PENDING:
        return HandshakeStatusResponse(state=state)

    return HandshakeStatusResponse(
        state=state,
        referrer_id=controller.referrer_id,
        referrer_name=await controller.fetch_referrer_name(),
        show_after_ms=int(controller.delay_seconds * 1000),
    )


@router.post("/lead", response_model=LeadResponse, summary="Submit the referral lead form")
async def submit_lead(
    payload: LeadRequest,
    request: Request,
    response: Response,
    remote: RemoteDataClient = Depends(get_remote_client),
) -> LeadResponse:
    storage = cookie_storage(request)
    controller = _controller(request, storage, remote)

    if controller.mount({REFERRAL_PARAM: payload.referrer_id}) is not HandshakeState.PENDING:
        if controller.is_completed():
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Offer already claimed on this device")
        raise HTTPException(status_code=422, detail="Missing referral token")

    # The browser already showed the dialog, with the name from GET /v1/handshake
    await controller.show(fetch_name=False)

    try:
        result = await controller.submit(payload.name, payload.phone)
    except HandshakeValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={"message": str(e), "missing_fields": e.missing_fields},
        )

    if not result.success:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result.message)

    storage.apply(response)
    return LeadResponse(state=controller.state, message=result.message)


@router.post("/dismiss", response_model=HandshakeStatusResponse, summary="Dismiss the referral dialog")
def dismiss_handshake(
    payload: DismissRequest,
    request: Request,
    remote: RemoteDataClient = Depends(get_remote_client),
) -> HandshakeStatusResponse:
    """Acknowledge a dismissal. No marker is written, so a later referral visit may prompt again."""
    controller = _controller(request, cookie_storage(request), remote)
    if controller.mount({REFERRAL_PARAM: payload.referrer_id}) is HandshakeState.PENDING:
        controller.dismiss()
        logger.debug(f"[HANDSHAKE] Dismissed for referrer {payload.referrer_id}")

    return HandshakeStatusResponse(state=controller.state, referrer_id=controller.referrer_id)
