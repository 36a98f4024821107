"""
document_group.py — one identity document as an atomic unit.

A document is a masked number plus plain companion fields (issuing state,
country, expiration). The upstream decrypt endpoint returns all of them in one
response, so they are revealed, compared and sent together; the form never
holds a new number paired with a stale expiration.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from pydantic import BaseModel

from portal.profile.errors import DecryptLoadError, FieldStateError
from portal.profile.expiration import DEFAULT_WARNING_DAYS, get_expiration_info
from portal.profile.masked_field import MaskedFieldController
from portal.profile.schemas import DocumentView, ExpirationInfo

logger = logging.getLogger(__name__)

NUMBER_KEY = "number"
EXPIRATION_KEY = "expiration_date"

GroupLoader = Callable[[], Awaitable[Optional[Any]]]


def _normalize(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().upper()


class DocumentGroupController:
    """
    Coordinates a document's masked number with its companion attributes.

    last_decrypted_baseline is the full document as last returned by the
    decrypt endpoint (None until revealed this session).
    """

    def __init__(
        self,
        name: str,
        number_field: MaskedFieldController,
        companions: Sequence[str],
        payload_keys: Mapping[str, str],
        loader: Optional[GroupLoader] = None,
        warning_days: int = DEFAULT_WARNING_DAYS,
    ):
        missing = [k for k in (NUMBER_KEY, *companions) if k not in payload_keys]
        if missing:
            raise ValueError(f"payload_keys missing entries for: {', '.join(missing)}")

        self.name = name
        self.number_field = number_field
        self.companions = tuple(companions)
        self.payload_keys = dict(payload_keys)
        self.values: dict[str, str] = {key: "" for key in self.companions}
        self.last_decrypted_baseline: Optional[dict[str, str]] = None
        self.warning_days = warning_days
        self._loader = loader
        self._disposed = False

    @property
    def keys(self) -> tuple[str, ...]:
        return (NUMBER_KEY, *self.companions)

    @property
    def can_reveal(self) -> bool:
        return self._loader is not None

    @property
    def requires_reveal(self) -> bool:
        """On file server-side but not decrypted this session."""
        return bool(self.number_field.masked_display) and self.last_decrypted_baseline is None

    # ------------------------------------------------------------------
    # Reveal
    # ------------------------------------------------------------------

    async def _reveal(self) -> Optional[dict[str, str]]:
        """Fetch and install the whole document, or nothing at all."""
        self.number_field.is_loading_decrypted = True
        try:
            data = await self._loader()
        except Exception as exc:
            logger.warning(
                "Failed to load decrypted document group=%s error=%s",
                self.name,
                type(exc).__name__,
            )
            raise DecryptLoadError(self.number_field.name) from exc
        finally:
            self.number_field.is_loading_decrypted = False

        if self._disposed:
            logger.debug("Ignoring reveal result for disposed group=%s", self.name)
            return None
        if data is None:
            return None
        if isinstance(data, BaseModel):
            data = data.model_dump()

        revealed = {key: _normalize(data.get(key)) for key in self.keys}
        # No await below this line: all members change in one step.
        self.number_field.apply_revealed(revealed[NUMBER_KEY])
        self.values = {key: revealed[key] for key in self.companions}
        self.last_decrypted_baseline = dict(revealed)
        logger.info("Document revealed group=%s", self.name)
        return dict(revealed)

    async def load_decrypted_group(self) -> Optional[dict[str, str]]:
        """Returns the revealed document, or None on failure / nothing stored."""
        if self._loader is None or self.number_field.is_loading_decrypted:
            return None
        try:
            return await self._reveal()
        except DecryptLoadError:
            return None

    async def begin_edit(self) -> bool:
        """
        Reveal entry point for the document's number input.

        Returns False when the reveal failed or one is already in flight; the
        document is then exactly as it was.
        """
        if self.number_field.is_loading_decrypted:
            return False
        if self._loader is None:
            self.number_field.start_fresh()
            return True
        try:
            revealed = await self._reveal()
        except DecryptLoadError:
            return False
        if revealed is None and not self._disposed:
            self.number_field.start_fresh()
        return True

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def set_companion(self, key: str, value: Any) -> None:
        if key not in self.companions:
            raise ValueError(f"Unknown field '{key}' for document '{self.name}'")
        if self.requires_reveal:
            # The server rebuilds the whole document from what it receives
            raise FieldStateError(
                self.payload_keys[key],
                f"Reveal the {self.name.replace('_', ' ')} before editing it",
            )
        self.values[key] = _normalize(value)

    def current_group_values(self) -> dict[str, str]:
        """Freshest value per member: typed, else last decrypted, else empty."""
        baseline = self.last_decrypted_baseline or {}
        typed = {NUMBER_KEY: self.number_field.raw_value, **self.values}
        return {
            key: typed.get(key) or baseline.get(key) or ""
            for key in self.keys
        }

    def has_changes(self) -> bool:
        current = self.current_group_values()
        if self.last_decrypted_baseline is None:
            return any(current.values())
        return current != self.last_decrypted_baseline

    def pending_changes(self) -> bool:
        """Changes that may be sent: never a document that was not revealed."""
        return not self.requires_reveal and self.has_changes()

    def payload_fields(self) -> dict[str, str]:
        return {
            self.payload_keys[key]: value
            for key, value in self.current_group_values().items()
        }

    def expiration(self) -> Optional[ExpirationInfo]:
        if EXPIRATION_KEY not in self.companions:
            return None
        current = self.current_group_values()
        return get_expiration_info(current[EXPIRATION_KEY], self.warning_days)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self, masked_display: Optional[str] = None) -> None:
        self.number_field.reset(masked_display)
        self.values = {key: "" for key in self.companions}
        self.last_decrypted_baseline = None

    def dispose(self) -> None:
        self._disposed = True
        self.number_field.dispose()
        self.values = {key: "" for key in self.companions}
        self.last_decrypted_baseline = None

    def view(self, has_error: bool = False) -> DocumentView:
        current = self.current_group_values()
        return DocumentView(
            name=self.name,
            number=self.number_field.view(has_error=has_error, can_reveal=self.can_reveal),
            values={key: current[key] for key in self.companions},
            has_changes=self.has_changes(),
            expiration=self.expiration(),
        )
