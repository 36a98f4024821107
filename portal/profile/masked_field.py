"""
masked_field.py — reveal/edit/mask lifecycle for one sensitive scalar field.

States:
    masked ──begin_edit()──▶ loading ──▶ editing ──commit_edit()──▶ masked
                                 └─ loader failure: back to masked, unchanged

Plaintext (raw_value, baseline_decrypted, last_revealed) only ever lives on
this object. reset() and cancel_edit() drop it; nothing here is persisted.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from portal.profile.errors import DecryptLoadError, FieldStateError
from portal.profile.masking import format_value, mask_value
from portal.profile.schemas import FieldKind, FieldView

logger = logging.getLogger(__name__)

DecryptLoader = Callable[[], Awaitable[Optional[str]]]


class MaskedFieldController:
    """
    Holds the state of one masked input (SSN, license number, passport number).

    baseline_decrypted is the value fetched when editing started; it exists only
    to decide on commit whether the user actually changed anything.
    last_revealed survives the commit so the form can still tell an untouched
    revealed value apart from a new one when it builds the save payload.
    """

    def __init__(
        self,
        name: str,
        kind: FieldKind,
        masked_display: Optional[str] = None,
        loader: Optional[DecryptLoader] = None,
    ):
        self.name = name
        self.kind = kind
        self.masked_display = masked_display
        self.raw_value = ""
        self.is_editing = False
        self.is_loading_decrypted = False
        self.baseline_decrypted: Optional[str] = None
        self.last_revealed: Optional[str] = None
        self._loader = loader
        self._disposed = False

    @property
    def can_reveal(self) -> bool:
        return self._loader is not None

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def display(self) -> str:
        """Unsaved raw value wins over the stale server mask."""
        if self.raw_value:
            return mask_value(self.kind, self.raw_value)
        return self.masked_display or ""

    def has_unsaved_change(self) -> bool:
        if not self.raw_value:
            return False
        if not self.masked_display:
            return True
        return mask_value(self.kind, self.raw_value) != self.masked_display

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def begin_edit(self) -> None:
        """
        Reveal the stored value and enter editing mode.

        Without a loader the user starts from an empty value with no baseline.
        A reveal already in flight makes this a no-op. Loader failures leave the
        field untouched and raise DecryptLoadError; the caller may retry.
        """
        if self.is_loading_decrypted:
            logger.debug("Reveal already in flight field=%s", self.name)
            return

        if self._loader is None:
            self.start_fresh()
            return

        self.is_loading_decrypted = True
        try:
            value = await self._loader()
        except Exception as exc:
            logger.warning(
                "Failed to load decrypted value field=%s error=%s",
                self.name,
                type(exc).__name__,
            )
            raise DecryptLoadError(self.name) from exc
        finally:
            self.is_loading_decrypted = False

        if self._disposed:
            logger.debug("Ignoring reveal result for disposed field=%s", self.name)
            return

        if value is None:
            self.start_fresh()
            return
        self.apply_revealed(value)

    def apply_revealed(self, value: str) -> None:
        """Install a freshly decrypted value, overwriting any in-progress edit."""
        revealed = format_value(self.kind, str(value))
        self.raw_value = revealed
        self.baseline_decrypted = revealed
        self.last_revealed = revealed
        self.is_editing = True
        logger.info("Field revealed field=%s", self.name)

    def start_fresh(self) -> None:
        """Enter editing with nothing on file to compare against."""
        self.raw_value = ""
        self.baseline_decrypted = None
        self.is_editing = True

    def update_value(self, next_value: str) -> None:
        if not self.is_editing:
            raise FieldStateError(self.name, f"Field '{self.name}' is not in editing mode")
        self.raw_value = format_value(self.kind, next_value)

    def commit_edit(self) -> None:
        """Blur handler: decide whether the edit left anything to persist."""
        if not self.is_editing:
            return

        current = format_value(self.kind, self.raw_value)
        if not current.strip():
            self.raw_value = ""
            self.baseline_decrypted = None
        elif self.baseline_decrypted is not None and current == self.baseline_decrypted:
            self.baseline_decrypted = None
        else:
            self.raw_value = current
            self.baseline_decrypted = None
        self.is_editing = False

    def cancel_edit(self) -> None:
        self.raw_value = ""
        self.baseline_decrypted = None
        self.is_editing = False

    def reset(self, masked_display: Optional[str] = None) -> None:
        """Return to the state right after a server fetch."""
        self.masked_display = masked_display
        self.raw_value = ""
        self.baseline_decrypted = None
        self.last_revealed = None
        self.is_editing = False

    def dispose(self) -> None:
        self._disposed = True
        self.reset(self.masked_display)

    # ------------------------------------------------------------------
    # UI props
    # ------------------------------------------------------------------

    def view(self, has_error: bool = False, can_reveal: Optional[bool] = None) -> FieldView:
        return FieldView(
            name=self.name,
            kind=self.kind,
            display=self.display(),
            value=self.raw_value if self.is_editing else None,
            is_editing=self.is_editing,
            is_loading=self.is_loading_decrypted,
            has_unsaved_change=self.has_unsaved_change(),
            has_error=has_error,
            can_reveal=self.can_reveal if can_reveal is None else can_reveal,
        )
