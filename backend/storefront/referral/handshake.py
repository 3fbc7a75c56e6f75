"""Referral Handshake Controller.

WHAT:
    Turns a friend-shared referral link (`?ref=<profile id>`) into a captured
    lead, at most once per browser.

WHY:
    Referral clicks are the storefront's viral loop. The dialog must never
    block first paint, must never lock a visitor out because of a transient
    error, and must not nag a visitor who already claimed the offer.

STATES:
    IDLE ──mount(ref, no marker)──> PENDING ──delay──> SHOWN ──submit ok──> SUBMITTED
                                       │                  │
                                       └─────dismiss──────┴──dismiss──> DISMISSED

    - IDLE is terminal for this mount: no token, or the completion marker exists
    - A failed submit stays SHOWN with an error; the visitor may retry
    - The permanent marker is written only on a confirmed submit
    - DISMISSED does not write the marker, so a later referral visit may
      show the dialog again

REFERENCES:
    - storefront/routers/handshake.py (HTTP surface)
    - Remote procedure: record_marketing_lead(p_referrer_id, p_phone, p_name)
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

import httpx
from pydantic import ValidationError

from ..errors import HandshakeValidationError, InvalidHandshakeTransition, RemoteDataError
from ..services.remote_data_client import RemoteDataClient
from ..visitor.identity_store import ClientStorage
from ..visitor.models import ReferralLead
from ..visitor.tasks import BackgroundTaskSet

logger = logging.getLogger(__name__)

REFERRAL_PARAM = "ref"
HANDSHAKE_MARKER = "handshake_completed"
DEFAULT_DELAY_SECONDS = 3.0

PROFILES_TABLE = "profiles"
LEAD_PROCEDURE = "record_marketing_lead"

SUCCESS_MESSAGE = "Welcome to our Boutique! Your discount code will be sent to your WhatsApp shortly."
RETRY_MESSAGE = "Something went wrong. Please try again."


class HandshakeState(str, Enum):
    """Lifecycle of the referral dialog."""
    IDLE = "idle"
    PENDING = "pending"
    SHOWN = "shown"
    SUBMITTED = "submitted"
    DISMISSED = "dismissed"


@dataclass(frozen=True)
class HandshakeResult:
    """Outcome of a lead submission attempt."""

    success: bool
    message: str
    lead: Optional[ReferralLead] = None


class ReferralHandshakeController:
    """State machine for the referral lead-capture dialog.

    Usage:
        ```python
        controller = ReferralHandshakeController(storage, remote)
        controller.mount(url_params, tasks)   # PENDING, reveal scheduled
        ...
        result = await controller.submit(name="Aisha", phone="03001234567")
        ```
    """

    def __init__(
        self,
        storage: ClientStorage,
        remote: RemoteDataClient,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        marker_key: str = HANDSHAKE_MARKER,
    ):
        self.storage = storage
        self.remote = remote
        self.delay_seconds = delay_seconds
        self.marker_key = marker_key

        self._state = HandshakeState.IDLE
        self._mounted = False
        self._referrer_id: Optional[str] = None
        self._referrer_name: Optional[str] = None
        self._error: Optional[str] = None
        self._submitting = False
        self._reveal_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> HandshakeState:
        return self._state

    @property
    def is_open(self) -> bool:
        """True while the capture dialog is on screen."""
        return self._state is HandshakeState.SHOWN

    @property
    def referrer_id(self) -> Optional[str]:
        return self._referrer_id

    @property
    def referrer_name(self) -> Optional[str]:
        return self._referrer_name

    @property
    def error(self) -> Optional[str]:
        """User-visible error from the last failed submit, if any."""
        return self._error

    def is_completed(self) -> bool:
        """Whether this browser already carries the completion marker."""
        return bool(self.storage.get(self.marker_key))

    def mount(
        self,
        url_params: Mapping[str, str],
        tasks: Optional[BackgroundTaskSet] = None,
    ) -> HandshakeState:
        """Inspect the query string once, on first mount of the app shell.

        Args:
            url_params: Query parameters of the landing URL
            tasks: When given, the delayed reveal is scheduled on it. Hosts
                that time the dialog themselves (the browser) leave it out.

        Returns:
            IDLE or PENDING
        """
        if self._mounted:
            return self._state
        self._mounted = True

        token = (url_params.get(REFERRAL_PARAM) or "").strip()
        if not token:
            return self._state

        if self.is_completed():
            logger.debug("[HANDSHAKE] Completion marker present, staying idle")
            return self._state

        self._referrer_id = token
        self._state = HandshakeState.PENDING

        if tasks is not None:
            self._reveal_task = tasks.spawn(self._reveal_after_delay(), name="handshake-reveal")
        return self._state

    async def _reveal_after_delay(self) -> None:
        await asyncio.sleep(self.delay_seconds)
        if self._state is HandshakeState.PENDING:
            await self.show()

    async def show(self, fetch_name: bool = True) -> None:
        """PENDING -> SHOWN, then personalise with the referrer's name."""
        if self._state is not HandshakeState.PENDING:
            raise InvalidHandshakeTransition(self._state.value, "show")

        self._state = HandshakeState.SHOWN
        if fetch_name:
            self._referrer_name = await self.fetch_referrer_name()

    async def fetch_referrer_name(self) -> Optional[str]:
        """Best-effort display name of the referrer; None when unavailable."""
        if not self._referrer_id:
            return None

        try:
            profile = await self.remote.select_single(
                PROFILES_TABLE,
                {"id": self._referrer_id},
                columns="name",
            )
        except (RemoteDataError, httpx.HTTPError) as e:
            logger.info(f"[HANDSHAKE] Could not fetch referrer profile: {e}")
            return None

        name = (profile or {}).get("name")
        if not isinstance(name, str) or not name.strip():
            return None
        return name.strip()

    async def submit(self, name: Optional[str], phone: Optional[str]) -> HandshakeResult:
        """Record the lead for the current referral.

        Raises:
            InvalidHandshakeTransition: Dialog not shown, or a submit is in flight
            HandshakeValidationError: name or phone missing (no remote call made)
        """
        if self._state is not HandshakeState.SHOWN or self._submitting:
            raise InvalidHandshakeTransition(self._state.value, "submit")

        name = (name or "").strip()
        phone = (phone or "").strip()
        missing = [field for field, value in (("name", name), ("phone", phone)) if not value]
        if missing:
            error = HandshakeValidationError(missing)
            self._error = str(error)
            raise error

        self._submitting = True
        try:
            response = await self.remote.rpc(
                LEAD_PROCEDURE,
                {
                    "p_referrer_id": self._referrer_id,
                    "p_phone": phone,
                    "p_name": name,
                },
            )
        except (RemoteDataError, httpx.HTTPError) as e:
            logger.error(f"[HANDSHAKE] Lead record failed for referrer {self._referrer_id}: {e}")
            self._error = RETRY_MESSAGE
            return HandshakeResult(success=False, message=RETRY_MESSAGE)
        finally:
            self._submitting = False

        # Marker first: SUBMITTED without a marker must never be observable
        self.storage.set(self.marker_key, "true", None)
        self._state = HandshakeState.SUBMITTED
        self._error = None
        logger.info(f"[HANDSHAKE] Lead recorded for referrer {self._referrer_id}")

        return HandshakeResult(
            success=True,
            message=SUCCESS_MESSAGE,
            lead=_lead_from_response(response, self._referrer_id, name, phone),
        )

    def dismiss(self) -> None:
        """Close the dialog without submitting. The marker is not written."""
        if self._state not in (HandshakeState.PENDING, HandshakeState.SHOWN):
            raise InvalidHandshakeTransition(self._state.value, "dismiss")

        if self._reveal_task is not None and not self._reveal_task.done():
            self._reveal_task.cancel()
        self._state = HandshakeState.DISMISSED
        self._error = None


def _lead_from_response(response: Any, referrer_id: str, name: str, phone: str) -> ReferralLead:
    """Build the lead echo, picking up server-assigned fields when returned."""
    row = response[0] if isinstance(response, list) and response else response
    extra = row if isinstance(row, dict) else {}
    try:
        return ReferralLead(
            name=name,
            phone=phone,
            referrer_id=referrer_id,
            status=extra.get("status"),
            created_at=extra.get("created_at"),
        )
    except ValidationError:
        # Procedure result is informational only; the lead is already stored
        return ReferralLead(name=name, phone=phone, referrer_id=referrer_id)
