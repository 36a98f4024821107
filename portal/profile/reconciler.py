"""
reconciler.py — full lifecycle of the profile form.

Keeps two snapshots of the plain profile attributes:
  initial  — what the server last said is saved (replaced only by load_initial)
  current  — what the user has typed since

Sensitive identifiers are not part of the snapshots; they live in their
MaskedFieldController / DocumentGroupController and contribute to the save
payload only when their own change rules say so.

State machine per form:
  loading ──load_initial──▶ clean ⇄ dirty ──submit──▶ submitting
  submitting ──success──▶ clean        (snapshots re-synced from the server)
  submitting ──failure──▶ dirty        (current kept, error surfaced)
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Optional

from portal.api_client import ApiClientError, ProfileApi
from portal.config import FormContext
from portal.profile.document_group import DocumentGroupController
from portal.profile.errors import (
    DecryptLoadError,
    FieldStateError,
    ProfileValidationError,
    SaveError,
    SaveInProgressError,
)
from portal.profile.masked_field import MaskedFieldController
from portal.profile.masking import is_valid_ssn
from portal.profile.schemas import FieldKind, FormStatus, FormView, ServerProfile
from portal.profile.validator import document_warnings, validate_required_fields

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Field catalogue
# ---------------------------------------------------------------------------
BASIC_FIELDS: tuple[str, ...] = (
    "first_name",
    "middle_name",
    "last_name",
    "date_of_birth",
    "country_of_birth",
    "primary_language",
)
TRACKED_FIELDS: tuple[str, ...] = (*BASIC_FIELDS, "tax_id_type", "accept_terms")

SSN_FIELD = "ssn"
LICENSE_NUMBER_FIELD = "driver_license_number"
PASSPORT_NUMBER_FIELD = "passport_number"

DEFAULT_PRIMARY_LANGUAGE = "EN"
DEFAULT_TAX_ID_TYPE = "SSN"

LICENSE_PAYLOAD_KEYS = {
    "number": LICENSE_NUMBER_FIELD,
    "state_code": "driver_license_state_code",
    "state_name": "driver_license_state_name",
    "expiration_date": "driver_license_expiration",
}
PASSPORT_PAYLOAD_KEYS = {
    "number": PASSPORT_NUMBER_FIELD,
    "country_of_issue": "passport_country_of_issue",
    "expiration_date": "passport_expiration",
}


def _norm(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


def snapshot_from_profile(profile: ServerProfile) -> dict[str, Any]:
    """Plain form values for a server profile; sensitive fields excluded."""
    return {
        "first_name": profile.first_name or "",
        "middle_name": profile.middle_name or "",
        "last_name": profile.last_name or "",
        # Server may send a full ISO datetime; the form edits the date part
        "date_of_birth": (profile.date_of_birth or "")[:10],
        "country_of_birth": profile.country_of_birth or "",
        "primary_language": profile.primary_language or DEFAULT_PRIMARY_LANGUAGE,
        "tax_id_type": profile.tax_id_type or DEFAULT_TAX_ID_TYPE,
        "accept_terms": bool(profile.terms_accepted_at),
    }


class ProfileFormReconciler:
    """
    Orchestrates one open profile form against the upstream API.

    Args:
        client: Anything implementing ProfileApi.
        context: Terms version and expiration window for this form.
    """

    def __init__(self, client: ProfileApi, context: Optional[FormContext] = None):
        self.client = client
        self.context = context or FormContext()

        self.ssn = MaskedFieldController(
            SSN_FIELD, FieldKind.ssn, loader=client.get_decrypted_ssn
        )
        self.driver_license = DocumentGroupController(
            "driver_license",
            MaskedFieldController(LICENSE_NUMBER_FIELD, FieldKind.license),
            companions=("state_code", "state_name", "expiration_date"),
            payload_keys=LICENSE_PAYLOAD_KEYS,
            loader=client.get_decrypted_driver_license,
            warning_days=self.context.expiration_warning_days,
        )
        self.passport = DocumentGroupController(
            "passport",
            MaskedFieldController(PASSPORT_NUMBER_FIELD, FieldKind.passport),
            companions=("country_of_issue", "expiration_date"),
            payload_keys=PASSPORT_PAYLOAD_KEYS,
            loader=client.get_decrypted_passport,
            warning_days=self.context.expiration_warning_days,
        )

        self.initial: dict[str, Any] = {}
        self.current: dict[str, Any] = {}
        self.validation_errors: list[str] = []
        self.last_error: Optional[str] = None
        self._loaded = False
        self._submitting = False
        self._disposed = False

        # Companion inputs addressed by their payload name
        self._companion_fields: dict[str, tuple[DocumentGroupController, str]] = {}
        for group in self.groups:
            for key in group.companions:
                self._companion_fields[group.payload_keys[key]] = (group, key)

    @property
    def groups(self) -> tuple[DocumentGroupController, ...]:
        return (self.driver_license, self.passport)

    def _masked_field(self, name: str) -> MaskedFieldController:
        fields = {
            SSN_FIELD: self.ssn,
            LICENSE_NUMBER_FIELD: self.driver_license.number_field,
            PASSPORT_NUMBER_FIELD: self.passport.number_field,
        }
        try:
            return fields[name]
        except KeyError:
            raise ValueError(f"Unknown sensitive field: {name}") from None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> ServerProfile:
        profile = await self.client.get_me()
        if not self._disposed:
            self.load_initial(profile)
        return profile

    def load_initial(self, server_profile: ServerProfile) -> None:
        """Re-sync both snapshots from the server and drop all plaintext."""
        snapshot = snapshot_from_profile(server_profile)
        self.initial = copy.deepcopy(snapshot)
        self.current = copy.deepcopy(snapshot)

        self.ssn.reset(server_profile.ssn_masked)
        self.driver_license.reset(server_profile.driver_license_masked)
        self.passport.reset(server_profile.passport_masked)

        self.validation_errors = []
        self.last_error = None
        self._loaded = True
        logger.info("Profile form loaded profile_id=%s", server_profile.id)

    def after_save_success(self, fresh_server_profile: ServerProfile) -> None:
        self.load_initial(fresh_server_profile)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def set_field(self, name: str, value: Any) -> None:
        """
        Set a plain attribute or a document companion.

        Sensitive numbers go through update_sensitive() instead, because they
        are only editable after a reveal.
        """
        if name in TRACKED_FIELDS:
            self.current[name] = value
        elif name in self._companion_fields:
            group, key = self._companion_fields[name]
            group.set_companion(key, value)
        elif name in (SSN_FIELD, LICENSE_NUMBER_FIELD, PASSPORT_NUMBER_FIELD):
            self.update_sensitive(name, value)
        else:
            raise ValueError(f"Unknown profile field: {name}")

    async def reveal(self, name: str) -> bool:
        """
        Start editing a sensitive field, fetching its plaintext when possible.

        Decrypt failures never escape: the field stays masked and False is
        returned so the caller can offer a retry.
        """
        if name == LICENSE_NUMBER_FIELD:
            return await self.driver_license.begin_edit()
        if name == PASSPORT_NUMBER_FIELD:
            return await self.passport.begin_edit()
        field = self._masked_field(name)
        if field.is_loading_decrypted:
            return False
        try:
            await field.begin_edit()
        except DecryptLoadError:
            return False
        return True

    def update_sensitive(self, name: str, value: str) -> None:
        self._masked_field(name).update_value(str(value))

    def commit(self, name: str) -> None:
        self._masked_field(name).commit_edit()

    def cancel(self, name: str) -> None:
        self._masked_field(name).cancel_edit()

    # ------------------------------------------------------------------
    # Change tracking
    # ------------------------------------------------------------------

    def _ssn_touched(self) -> bool:
        """Something typed that is not the value revealed this session."""
        value = self.ssn.raw_value
        if not value:
            return False
        return self.ssn.last_revealed is None or value != self.ssn.last_revealed

    def _ssn_change(self) -> Optional[str]:
        if not self._ssn_touched() or not is_valid_ssn(self.ssn.raw_value):
            return None
        return self.ssn.raw_value

    def is_dirty(self) -> bool:
        for name in TRACKED_FIELDS:
            if _norm(self.current.get(name)) != _norm(self.initial.get(name)):
                return True
        if self._ssn_touched():
            return True
        return any(group.pending_changes() for group in self.groups)

    @property
    def status(self) -> FormStatus:
        if not self._loaded:
            return FormStatus.loading
        if self._submitting:
            return FormStatus.submitting
        return FormStatus.dirty if self.is_dirty() else FormStatus.clean

    def validate(self) -> list[str]:
        """Invalid required fields, first offender first. Empty when valid."""
        return validate_required_fields(
            self.current,
            ssn_value=self.ssn.raw_value,
            ssn_on_file=bool(self.ssn.masked_display),
        )

    def build_update_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}

        for name in BASIC_FIELDS:
            value = _norm(self.current.get(name))
            if value != _norm(self.initial.get(name)):
                payload[name] = value

        if _norm(self.current.get("tax_id_type")) != _norm(self.initial.get("tax_id_type")):
            payload["tax_id_type"] = self.current.get("tax_id_type")

        if self.current.get("accept_terms") is True and self.initial.get("accept_terms") is not True:
            payload["accept_terms"] = True
            payload["terms_version"] = self.context.terms_version

        ssn = self._ssn_change()
        if ssn is not None:
            payload[SSN_FIELD] = ssn

        for group in self.groups:
            if group.pending_changes():
                payload.update(group.payload_fields())

        return payload

    def document_warnings(self) -> list[str]:
        return document_warnings(self.groups)

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    async def submit(self) -> Optional[ServerProfile]:
        """
        Validate, send the minimal diff, and re-sync from the server.

        Returns the fresh server profile, or None when there was nothing to
        save. current is left untouched on any failure.

        Raises:
            SaveInProgressError: A save for this form is already in flight.
            ProfileValidationError: Required fields are missing or malformed.
            SaveError: The server rejected the update; message is verbatim.
        """
        if self._submitting:
            raise SaveInProgressError()

        invalid = self.validate()
        self.validation_errors = invalid
        if invalid:
            raise ProfileValidationError(invalid)

        payload = self.build_update_payload()
        if not payload:
            logger.info("Profile submit skipped: no changes")
            return None

        self._submitting = True
        self.last_error = None
        try:
            fresh = await self.client.update_profile(payload)
        except ApiClientError as exc:
            self.last_error = exc.message
            logger.warning(
                "Profile save failed status=%s keys=%s", exc.status_code, sorted(payload)
            )
            raise SaveError(exc.message, status_code=exc.status_code) from exc
        finally:
            self._submitting = False

        if self._disposed:
            logger.debug("Ignoring save result for disposed form")
            return fresh
        self.after_save_success(fresh)
        logger.info("Profile saved keys=%s", sorted(payload))
        return fresh

    # ------------------------------------------------------------------
    # UI
    # ------------------------------------------------------------------

    def view(self, form_id: Optional[str] = None) -> FormView:
        errors = set(self.validation_errors)
        return FormView(
            form_id=form_id,
            status=self.status,
            is_dirty=self._loaded and self.is_dirty(),
            validation_errors=list(self.validation_errors),
            fields=dict(self.current),
            ssn=self.ssn.view(has_error=SSN_FIELD in errors),
            driver_license=self.driver_license.view(has_error=LICENSE_NUMBER_FIELD in errors),
            passport=self.passport.view(has_error=PASSPORT_NUMBER_FIELD in errors),
            warnings=self.document_warnings(),
            last_error=self.last_error,
        )

    def dispose(self) -> None:
        """Unmount: late results are ignored and plaintext is dropped."""
        self._disposed = True
        self.ssn.dispose()
        for group in self.groups:
            group.dispose()
