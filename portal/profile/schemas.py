"""
schemas.py — Profile form Pydantic v2 data contracts.

Defines:
  - FieldKind, TaxIdType, FormStatus, ExpirationStatus enums
  - ServerProfile          (GET /auth/me and PATCH /auth/profile responses)
  - DriverLicenseValues, PassportValues  (decrypt endpoint payloads)
  - UpdateProfilePayload   (minimal-diff wire shape for PATCH /auth/profile)
  - ExpirationInfo, FieldView, DocumentView, FormView  (UI-facing props)
  - ErrorDetail, ErrorBody, ErrorResponse  (cross-cutting error envelope)

The upstream API speaks camelCase. Every model here uses snake_case attributes
with camelCase aliases, and accepts either spelling on input.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class FieldKind(str, Enum):
    ssn = "ssn"
    license = "license"
    passport = "passport"
    generic = "generic"


class TaxIdType(str, Enum):
    ssn = "SSN"
    itin = "ITIN"


class FormStatus(str, Enum):
    loading = "loading"
    clean = "clean"
    dirty = "dirty"
    submitting = "submitting"


class ExpirationStatus(str, Enum):
    expired = "expired"
    soon = "soon"
    ok = "ok"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Upstream API contracts
# ---------------------------------------------------------------------------

class ServerProfile(_CamelModel):
    """
    The authenticated user's profile as returned by the upstream API.

    Sensitive identifiers are never present in plaintext — only the masked
    display strings built server-side from stored last-4 values.
    """
    id: Optional[str] = None
    email: Optional[str] = None

    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[str] = None       # ISO date or datetime
    country_of_birth: Optional[str] = None
    primary_language: Optional[str] = None
    tax_id_type: Optional[str] = None

    ssn_masked: Optional[str] = None           # "XXX-XX-1234"
    driver_license_masked: Optional[str] = None  # "••••5678"
    passport_masked: Optional[str] = None

    terms_accepted_at: Optional[str] = None
    terms_version: Optional[str] = None
    is_profile_complete: bool = False


class DriverLicenseValues(_CamelModel):
    number: str = ""
    state_code: str = ""
    state_name: str = ""
    expiration_date: str = ""


class PassportValues(_CamelModel):
    number: str = ""
    country_of_issue: str = ""
    expiration_date: str = ""


class UpdateProfilePayload(_CamelModel):
    """
    Body of PATCH /auth/profile.

    Only keys the reconciler explicitly set are serialized
    (model_dump(exclude_unset=True, by_alias=True)); the server leaves every
    other attribute untouched.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    country_of_birth: Optional[str] = None
    primary_language: Optional[str] = None

    tax_id_type: Optional[TaxIdType] = None
    ssn: Optional[str] = Field(default=None, pattern=r"^\d{3}-\d{2}-\d{4}$")

    driver_license_number: Optional[str] = None
    driver_license_state_code: Optional[str] = None
    driver_license_state_name: Optional[str] = None
    driver_license_expiration: Optional[str] = None

    passport_number: Optional[str] = None
    passport_country_of_issue: Optional[str] = None
    passport_expiration: Optional[str] = None

    accept_terms: Optional[bool] = None
    terms_version: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


# ---------------------------------------------------------------------------
# UI-facing props
# ---------------------------------------------------------------------------

class ExpirationInfo(BaseModel):
    status: ExpirationStatus
    days_left: int
    date_str: str


class FieldView(BaseModel):
    """
    Props for one masked input.

    value carries plaintext only while the field is in editing mode; otherwise
    the UI renders display.
    """
    name: str
    kind: FieldKind
    display: str
    value: Optional[str] = None
    is_editing: bool = False
    is_loading: bool = False
    has_unsaved_change: bool = False
    has_error: bool = False
    can_reveal: bool = False


class DocumentView(BaseModel):
    name: str
    number: FieldView
    values: Dict[str, str] = Field(default_factory=dict)
    has_changes: bool = False
    expiration: Optional[ExpirationInfo] = None


class FormView(BaseModel):
    form_id: Optional[str] = None
    status: FormStatus
    is_dirty: bool
    validation_errors: List[str] = Field(default_factory=list)
    fields: Dict[str, Any] = Field(default_factory=dict)
    ssn: FieldView
    driver_license: DocumentView
    passport: DocumentView
    warnings: List[str] = Field(default_factory=list)
    last_error: Optional[str] = None


# ---------------------------------------------------------------------------
# Route request bodies
# ---------------------------------------------------------------------------

class FieldUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    value: Any


class OpenFormResponse(BaseModel):
    form_id: str
    form: FormView


class RevealResponse(BaseModel):
    revealed: bool
    form: FormView


class SubmitResponse(BaseModel):
    saved: bool
    form: FormView


# ---------------------------------------------------------------------------
# Error response models — used by main.py exception handlers (cross-cutting)
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single field-level validation or business-rule error."""
    model_config = ConfigDict(extra="forbid")

    field: Optional[str] = None   # Field name, e.g. "ssn"
    issue: str                     # Human-readable description of the problem


class ErrorBody(BaseModel):
    """Error envelope body."""
    model_config = ConfigDict(extra="forbid")

    code: str                                      # VALIDATION_ERROR, NOT_FOUND, etc.
    message: str                                   # High-level error description
    details: List[ErrorDetail] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """
    Standard error response format for all portal endpoints.

    Structure: {"error": {"code": "...", "message": "...", "details": [...]}}
    """
    model_config = ConfigDict(extra="forbid")

    error: ErrorBody


__all__ = [
    "FieldKind",
    "TaxIdType",
    "FormStatus",
    "ExpirationStatus",
    "ServerProfile",
    "DriverLicenseValues",
    "PassportValues",
    "UpdateProfilePayload",
    "ExpirationInfo",
    "FieldView",
    "DocumentView",
    "FormView",
    "FieldUpdate",
    "OpenFormResponse",
    "RevealResponse",
    "SubmitResponse",
    "ErrorDetail",
    "ErrorBody",
    "ErrorResponse",
]
