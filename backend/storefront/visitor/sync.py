"""Session Sync Client.

WHAT:
    Persists session boundaries to the backend: one `visitor_sessions` row per
    new session, a `last_activity` heartbeat for continuing sessions, and a
    best-effort geo merge onto the new row.

WHY:
    Client state is optimistic. The cookie is already committed when these
    calls are scheduled, and a lost session row on a transient backend
    failure is an acceptable trade against a local retry queue.

HOW:
    begin_session():
        create task -----> insert visitor_sessions row
        geo task   -----> fetch_geo() -> (wait for create) -> update geo fields
    heartbeat():
        heartbeat task --> update last_activity

    Neither method awaits network I/O; every task logs and swallows its own
    failures.

REFERENCES:
    - storefront/visitor/lifecycle.py (caller)
    - storefront/services/remote_data_client.py
"""

import asyncio
import logging
import re
from datetime import datetime
from typing import Mapping, Optional

import httpx

from ..errors import RemoteDataError
from ..services.remote_data_client import RemoteDataClient
from .geo import GeoClient
from .models import SessionRow
from .tasks import BackgroundTaskSet

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "visitor_sessions"

MOBILE_UA_PATTERN = re.compile(r"Mobi|Android", re.IGNORECASE)


def classify_device(user_agent: Optional[str]) -> str:
    """Coarse device class from the user agent: 'mobile' or 'desktop'."""
    if user_agent and MOBILE_UA_PATTERN.search(user_agent):
        return "mobile"
    return "desktop"


def build_session_row(
    session_id: str,
    visitor_id: str,
    now: datetime,
    url_params: Mapping[str, str],
    referrer: Optional[str],
    user_agent: Optional[str],
) -> SessionRow:
    """Assemble the insert payload for a new session."""
    return SessionRow(
        session_id=session_id,
        visitor_id=visitor_id,
        started_at=now,
        last_activity=now,
        utm_source=url_params.get("utm_source") or None,
        utm_medium=url_params.get("utm_medium") or None,
        utm_campaign=url_params.get("utm_campaign") or None,
        referrer=referrer or None,
        device_type=classify_device(user_agent),
        user_agent=user_agent[:500] if user_agent else None,
    )


class SessionSyncClient:
    """Writes session creates and heartbeats without blocking the caller."""

    def __init__(
        self,
        remote: RemoteDataClient,
        geo: GeoClient,
        tasks: BackgroundTaskSet,
    ):
        self.remote = remote
        self.geo = geo
        self.tasks = tasks

    def begin_session(self, row: SessionRow, client_ip: Optional[str] = None) -> None:
        """Schedule the session row insert and the independent geo merge."""
        create_task = self.tasks.spawn(
            self._create_row(row),
            name=f"session-create:{row.session_id}",
        )
        self.tasks.spawn(
            self._enrich_with_geo(row.session_id, client_ip, create_task),
            name=f"session-geo:{row.session_id}",
        )

    def heartbeat(self, session_id: str, now: datetime) -> None:
        """Schedule a last_activity update for an existing session row."""
        self.tasks.spawn(
            self._update_last_activity(session_id, now),
            name=f"session-heartbeat:{session_id}",
        )

    async def _create_row(self, row: SessionRow) -> bool:
        try:
            await self.remote.insert(SESSIONS_TABLE, row.to_payload())
        except (RemoteDataError, httpx.HTTPError) as e:
            logger.warning(f"[SESSION] Failed to create session {row.session_id}: {e}")
            return False

        logger.debug(f"[SESSION] Created session {row.session_id} for visitor {row.visitor_id}")
        return True

    async def _enrich_with_geo(
        self,
        session_id: str,
        client_ip: Optional[str],
        create_task: asyncio.Task,
    ) -> None:
        geo = await self.geo.fetch_geo(client_ip)
        if geo.is_empty():
            return

        # The update is keyed by session_id, so the row must exist first
        await asyncio.wait({create_task})

        try:
            await self.remote.update(SESSIONS_TABLE, {"session_id": session_id}, geo.to_row_fields())
        except (RemoteDataError, httpx.HTTPError) as e:
            logger.info(f"[SESSION] Failed to attach geo to session {session_id}: {e}")

    async def _update_last_activity(self, session_id: str, now: datetime) -> None:
        try:
            await self.remote.update(
                SESSIONS_TABLE,
                {"session_id": session_id},
                {"last_activity": now.isoformat()},
            )
        except (RemoteDataError, httpx.HTTPError) as e:
            logger.info(f"[SESSION] Heartbeat failed for session {session_id}: {e}")
