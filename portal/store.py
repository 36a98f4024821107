"""
store.py — in-memory registry of open profile forms.

Routes never hold reconcilers themselves; they look them up here by form_id.

Design principles:
  - Process memory only: open forms hold transient plaintext and are never
    written to disk, Redis or a database
  - Idle TTL: a form untouched for ttl_seconds is evicted on the next sweep,
    like a session key expiring; get() refreshes the TTL
  - Closing a form disposes it, so requests still in flight resolve into a
    no-op, and closes its API client
  - Logs only form_id and counts
"""
import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Optional

from portal.profile.reconciler import ProfileFormReconciler

logger = logging.getLogger(__name__)

DEFAULT_FORM_TTL = 900  # seconds of inactivity before an open form is dropped


class FormSessionStore:
    def __init__(
        self,
        ttl_seconds: Optional[float] = DEFAULT_FORM_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._forms: dict[str, ProfileFormReconciler] = {}
        self._clients: dict[str, Any] = {}
        self._last_seen: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._forms)

    def _expired(self, form_id: str) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() - self._last_seen[form_id] > self.ttl_seconds

    def open(self, form: ProfileFormReconciler, client: Any = None) -> str:
        """Register a loaded form and return its generated form_id."""
        form_id = str(uuid.uuid4())
        self._forms[form_id] = form
        self._last_seen[form_id] = self._clock()
        if client is not None:
            self._clients[form_id] = client
        logger.info("Opened profile form form_id=%s open_forms=%d", form_id, len(self._forms))
        return form_id

    def get(self, form_id: str) -> Optional[ProfileFormReconciler]:
        """The open form, or None if unknown or idle past its TTL."""
        form = self._forms.get(form_id)
        if form is None or self._expired(form_id):
            return None
        self._last_seen[form_id] = self._clock()
        return form

    async def close(self, form_id: str) -> bool:
        """Dispose a form. Returns False if no such form was open."""
        form = self._forms.pop(form_id, None)
        client = self._clients.pop(form_id, None)
        self._last_seen.pop(form_id, None)
        if form is None:
            return False
        form.dispose()
        if client is not None and hasattr(client, "close"):
            await client.close()
        logger.info("Closed profile form form_id=%s open_forms=%d", form_id, len(self._forms))
        return True

    async def evict_expired(self) -> int:
        """Close every form idle past its TTL. Returns how many were evicted."""
        expired = [form_id for form_id in list(self._forms) if self._expired(form_id)]
        for form_id in expired:
            await self.close(form_id)
        if expired:
            logger.info("Evicted %d idle profile form(s)", len(expired))
        return len(expired)

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Background loop: evict idle forms every interval_seconds until cancelled."""
        logger.info("Form sweeper started (interval=%ss ttl=%ss)", interval_seconds, self.ttl_seconds)
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.evict_expired()
            except Exception:
                logger.error("Form sweep failed", exc_info=True)

    async def close_all(self) -> None:
        for form_id in list(self._forms):
            await self.close(form_id)
