"""
ProfileFormReconciler tests — load, edit, validate, minimal-diff payload and
save, driven against the in-memory FakeProfileApi.

Run: pytest portal/tests/test_reconciler.py -v
"""
from __future__ import annotations

import asyncio

import pytest

from portal.api_client import ApiClientError
from portal.config import FormContext
from portal.profile.errors import (
    FieldStateError,
    ProfileValidationError,
    SaveError,
    SaveInProgressError,
)
from portal.profile.reconciler import BASIC_FIELDS, ProfileFormReconciler
from portal.profile.schemas import FormStatus
from portal.tests.demo_profiles import MARIA_SSN

SENSITIVE_KEYS = {
    "ssn",
    "driver_license_number",
    "driver_license_state_code",
    "driver_license_state_name",
    "driver_license_expiration",
    "passport_number",
    "passport_country_of_issue",
    "passport_expiration",
}


async def _open(api, context: FormContext | None = None) -> ProfileFormReconciler:
    form = ProfileFormReconciler(api, context)
    await form.load()
    return form


def _fill_nuevo(form: ProfileFormReconciler) -> None:
    form.set_field("first_name", "Nuevo")
    form.set_field("last_name", "Cliente")
    form.set_field("date_of_birth", "1990-02-03")
    form.set_field("country_of_birth", "SV")
    form.set_field("accept_terms", True)


# ===========================================================================
# TEST GROUP 1: Loading
# ===========================================================================

@pytest.mark.asyncio
async def test_status_is_loading_until_profile_arrives(maria_api) -> None:
    form = ProfileFormReconciler(maria_api)
    assert form.status is FormStatus.loading

    await form.load()

    assert form.status is FormStatus.clean
    assert not form.is_dirty()
    assert maria_api.calls["get_me"] == 1


@pytest.mark.asyncio
async def test_load_initial_builds_plain_snapshot(maria_api) -> None:
    form = await _open(maria_api)

    assert form.initial == form.current
    assert form.current["date_of_birth"] == "1988-04-12"
    assert form.current["primary_language"] == "ES"
    assert form.current["accept_terms"] is True
    assert "ssn" not in form.current
    assert form.ssn.display() == "XXX-XX-6789"
    assert form.driver_license.number_field.display() == "••••4567"


@pytest.mark.asyncio
async def test_load_initial_applies_defaults(nuevo_api) -> None:
    form = await _open(nuevo_api)
    assert form.current["primary_language"] == "EN"
    assert form.current["tax_id_type"] == "SSN"
    assert form.current["accept_terms"] is False
    assert form.ssn.display() == ""


@pytest.mark.asyncio
async def test_snapshots_are_independent_copies(maria_api) -> None:
    form = await _open(maria_api)
    form.set_field("first_name", "Mariana")
    assert form.initial["first_name"] == "Maria"


# ===========================================================================
# TEST GROUP 2: Change tracking and payload
# ===========================================================================

@pytest.mark.asyncio
async def test_untouched_ssn_is_never_sent(maria_api) -> None:
    form = await _open(maria_api)

    assert form.ssn.display() == "XXX-XX-6789"
    assert "ssn" not in form.build_update_payload()
    assert maria_api.calls["decrypt_ssn"] == 0


@pytest.mark.asyncio
async def test_revealed_and_unchanged_ssn_is_not_a_change(maria_api) -> None:
    form = await _open(maria_api)

    assert await form.reveal("ssn") is True
    form.update_sensitive("ssn", MARIA_SSN)
    form.commit("ssn")

    assert not form.ssn.has_unsaved_change()
    assert not form.is_dirty()
    assert form.build_update_payload() == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "name, value",
    [
        ("first_name", "Mariana"),
        ("middle_name", "Elena"),
        ("last_name", "Lopez Garcia"),
        ("date_of_birth", "1988-04-13"),
        ("country_of_birth", "GT"),
        ("primary_language", "EN"),
    ],
)
async def test_single_basic_change_yields_single_key(maria_api, name: str, value: str) -> None:
    form = await _open(maria_api)
    form.set_field(name, value)

    payload = form.build_update_payload()

    assert payload == {name: value}
    assert not SENSITIVE_KEYS & set(payload)
    assert form.status is FormStatus.dirty


@pytest.mark.asyncio
async def test_whitespace_only_edit_is_not_a_change(maria_api) -> None:
    form = await _open(maria_api)
    form.set_field("first_name", "  Maria ")
    assert not form.is_dirty()
    assert form.build_update_payload() == {}


@pytest.mark.asyncio
async def test_basic_values_are_trimmed_in_payload(maria_api) -> None:
    form = await _open(maria_api)
    form.set_field("last_name", "  Perez ")
    assert form.build_update_payload() == {"last_name": "Perez"}


@pytest.mark.asyncio
async def test_tax_id_type_change_is_sent(maria_api) -> None:
    form = await _open(maria_api)
    form.set_field("tax_id_type", "ITIN")
    assert form.build_update_payload() == {"tax_id_type": "ITIN"}


@pytest.mark.asyncio
async def test_changed_ssn_is_sent(maria_api) -> None:
    form = await _open(maria_api)
    await form.reveal("ssn")
    form.update_sensitive("ssn", "987654321")
    form.commit("ssn")

    assert form.ssn.display() == "XXX-XX-4321"
    assert form.build_update_payload() == {"ssn": "987-65-4321"}


@pytest.mark.asyncio
async def test_incomplete_ssn_never_reaches_payload(maria_api) -> None:
    form = await _open(maria_api)
    await form.reveal("ssn")
    form.update_sensitive("ssn", "123-45-678")
    form.commit("ssn")

    assert form.is_dirty()
    assert "ssn" not in form.build_update_payload()


@pytest.mark.asyncio
async def test_license_expiration_change_echoes_group(maria_api) -> None:
    form = await _open(maria_api)

    assert await form.reveal("driver_license_number") is True
    form.commit("driver_license_number")
    form.set_field("driver_license_expiration", "2027-01-01")

    assert form.driver_license.has_changes()
    assert form.build_update_payload() == {
        "driver_license_number": "D1234567",
        "driver_license_state_code": "VA",
        "driver_license_state_name": "VIRGINIA",
        "driver_license_expiration": "2027-01-01",
    }


@pytest.mark.asyncio
async def test_revealed_document_without_changes_is_excluded(maria_api) -> None:
    form = await _open(maria_api)
    await form.reveal("passport_number")
    form.commit("passport_number")

    assert not form.passport.has_changes()
    assert form.build_update_payload() == {}


@pytest.mark.asyncio
async def test_terms_sent_only_on_first_acceptance(nuevo_api) -> None:
    form = await _open(nuevo_api, FormContext(terms_version="2.0"))
    form.set_field("accept_terms", True)

    payload = form.build_update_payload()

    assert payload["accept_terms"] is True
    assert payload["terms_version"] == "2.0"


@pytest.mark.asyncio
async def test_terms_already_accepted_are_not_resent(maria_api) -> None:
    form = await _open(maria_api)
    form.set_field("accept_terms", True)
    assert form.build_update_payload() == {}


# ===========================================================================
# TEST GROUP 3: Reveal and field errors
# ===========================================================================

@pytest.mark.asyncio
async def test_decrypt_failure_leaves_form_usable(maria_api) -> None:
    maria_api.decrypt_error = RuntimeError("decrypt service down")
    form = await _open(maria_api)

    assert await form.reveal("ssn") is False
    assert form.ssn.raw_value == ""
    assert not form.ssn.is_editing
    assert form.ssn.display() == "XXX-XX-6789"

    assert await form.reveal("driver_license_number") is False
    assert form.driver_license.last_decrypted_baseline is None

    # Retry succeeds once the service recovers
    maria_api.decrypt_error = None
    assert await form.reveal("ssn") is True
    assert form.ssn.raw_value == MARIA_SSN


@pytest.mark.asyncio
async def test_reveal_with_nothing_stored_starts_empty(nuevo_api) -> None:
    form = await _open(nuevo_api)
    assert await form.reveal("ssn") is True
    assert form.ssn.is_editing
    assert form.ssn.raw_value == ""


@pytest.mark.asyncio
async def test_typing_into_masked_field_requires_reveal(maria_api) -> None:
    form = await _open(maria_api)
    with pytest.raises(FieldStateError):
        form.set_field("ssn", "111-22-3333")


@pytest.mark.asyncio
async def test_unknown_field_is_rejected(maria_api) -> None:
    form = await _open(maria_api)
    with pytest.raises(ValueError):
        form.set_field("favourite_colour", "blue")
    with pytest.raises(ValueError):
        await form.reveal("first_name")


@pytest.mark.asyncio
async def test_cancel_discards_revealed_plaintext(maria_api) -> None:
    form = await _open(maria_api)
    await form.reveal("ssn")
    form.update_sensitive("ssn", "999-88-7777")
    form.cancel("ssn")
    assert form.ssn.raw_value == ""
    assert not form.is_dirty()


# ===========================================================================
# TEST GROUP 4: Validation
# ===========================================================================

@pytest.mark.asyncio
async def test_incomplete_ssn_blocks_submit(maria_api) -> None:
    form = await _open(maria_api)
    await form.reveal("ssn")
    form.update_sensitive("ssn", "123-45-678")

    assert form.validate() == ["ssn"]
    with pytest.raises(ProfileValidationError) as exc_info:
        await form.submit()

    assert exc_info.value.fields == ["ssn"]
    assert form.validation_errors == ["ssn"]
    assert form.view().ssn.has_error
    assert maria_api.calls["update_profile"] == 0


@pytest.mark.asyncio
async def test_validate_lists_fields_in_form_order(nuevo_api) -> None:
    form = await _open(nuevo_api)
    assert form.validate() == [
        "first_name",
        "last_name",
        "date_of_birth",
        "country_of_birth",
        "ssn",
        "accept_terms",
    ]


@pytest.mark.asyncio
async def test_ssn_on_file_satisfies_requirement(maria_api) -> None:
    form = await _open(maria_api)
    assert form.validate() == []


@pytest.mark.asyncio
async def test_malformed_date_of_birth_is_invalid(maria_api) -> None:
    form = await _open(maria_api)
    form.set_field("date_of_birth", "04/12/1988")
    assert form.validate() == ["date_of_birth"]


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["itin", "PASSPORT", ""])
async def test_unknown_tax_id_type_blocks_submit(maria_api, value: str) -> None:
    form = await _open(maria_api)
    form.set_field("tax_id_type", value)

    assert form.validate() == ["tax_id_type"]
    with pytest.raises(ProfileValidationError) as exc_info:
        await form.submit()

    assert exc_info.value.fields == ["tax_id_type"]
    assert maria_api.calls["update_profile"] == 0


# ===========================================================================
# TEST GROUP 5: Submit
# ===========================================================================

@pytest.mark.asyncio
async def test_clean_form_submit_makes_no_request(maria_api) -> None:
    form = await _open(maria_api)
    assert await form.submit() is None
    assert maria_api.calls["update_profile"] == 0


@pytest.mark.asyncio
async def test_submit_sends_minimal_diff_and_resyncs(maria_api) -> None:
    form = await _open(maria_api)
    form.set_field("first_name", "Mariana")

    fresh = await form.submit()

    assert fresh is not None and fresh.first_name == "Mariana"
    assert maria_api.update_payloads == [{"first_name": "Mariana"}]
    assert form.initial["first_name"] == "Mariana"
    assert form.status is FormStatus.clean
    # Nothing left to send after a successful save
    assert form.build_update_payload() == {}


@pytest.mark.asyncio
async def test_new_account_full_save(nuevo_api) -> None:
    form = await _open(nuevo_api, FormContext(terms_version="2.0"))
    _fill_nuevo(form)
    await form.reveal("ssn")
    form.update_sensitive("ssn", "111223333")
    form.commit("ssn")

    await form.submit()

    sent = nuevo_api.update_payloads[0]
    assert sent["ssn"] == "111-22-3333"
    assert sent["accept_terms"] is True
    assert sent["terms_version"] == "2.0"
    assert set(sent) >= {"first_name", "last_name", "date_of_birth", "country_of_birth"}
    assert form.ssn.display() == "XXX-XX-3333"
    assert form.ssn.raw_value == ""
    assert form.current["accept_terms"] is True
    assert not form.is_dirty()


@pytest.mark.asyncio
async def test_license_save_round_trip(maria_api) -> None:
    form = await _open(maria_api)
    await form.reveal("driver_license_number")
    form.commit("driver_license_number")
    form.set_field("driver_license_expiration", "2027-01-01")

    await form.submit()

    assert maria_api.driver_license.expiration_date == "2027-01-01"
    assert maria_api.driver_license.state_name == "VIRGINIA"
    assert form.driver_license.last_decrypted_baseline is None
    assert form.driver_license.number_field.display() == "••••4567"
    assert not form.is_dirty()


@pytest.mark.asyncio
async def test_document_on_file_cannot_be_edited_blind(maria_api) -> None:
    form = await _open(maria_api)

    with pytest.raises(FieldStateError):
        form.set_field("driver_license_expiration", "2030-01-01")
    with pytest.raises(FieldStateError):
        form.set_field("passport_country_of_issue", "GT")

    assert form.build_update_payload() == {}
    assert not form.is_dirty()


@pytest.mark.asyncio
async def test_revealed_companion_edit_keeps_stored_number(maria_api) -> None:
    form = await _open(maria_api)
    await form.reveal("driver_license_number")
    form.commit("driver_license_number")
    form.set_field("driver_license_expiration", "2030-01-01")

    await form.submit()

    assert maria_api.driver_license.number == "D1234567"
    assert maria_api.driver_license.state_code == "VA"
    assert maria_api.driver_license.expiration_date == "2030-01-01"
    assert form.driver_license.number_field.display() == "••••4567"


@pytest.mark.asyncio
async def test_after_save_success_is_idempotent(maria_api) -> None:
    form = await _open(maria_api)
    form.set_field("country_of_birth", "GT")
    fresh = await form.submit()

    form.after_save_success(fresh)

    assert form.build_update_payload() == {}
    assert not form.is_dirty()


@pytest.mark.asyncio
async def test_server_rejection_keeps_edits(maria_api) -> None:
    maria_api.update_error = ApiClientError("Date of birth cannot be in the future", status_code=400)
    form = await _open(maria_api)
    form.set_field("first_name", "Ana")

    with pytest.raises(SaveError) as exc_info:
        await form.submit()

    assert exc_info.value.message == "Date of birth cannot be in the future"
    assert exc_info.value.status_code == 400
    assert form.last_error == "Date of birth cannot be in the future"
    assert form.current["first_name"] == "Ana"
    assert form.initial["first_name"] == "Maria"
    assert form.status is FormStatus.dirty


@pytest.mark.asyncio
async def test_second_submit_while_saving_is_rejected(maria_api) -> None:
    gate = asyncio.Event()
    save = maria_api.update_profile

    async def slow_update(payload):
        await gate.wait()
        return await save(payload)

    maria_api.update_profile = slow_update
    form = await _open(maria_api)
    form.set_field("first_name", "Mariana")

    first = asyncio.create_task(form.submit())
    await asyncio.sleep(0)
    assert form.status is FormStatus.submitting

    with pytest.raises(SaveInProgressError):
        await form.submit()

    gate.set()
    await first
    assert len(maria_api.update_payloads) == 1
    assert form.status is FormStatus.clean


# ===========================================================================
# TEST GROUP 6: Warnings, view and dispose
# ===========================================================================

@pytest.mark.asyncio
async def test_expired_license_warns_but_does_not_block(maria_api) -> None:
    form = await _open(maria_api)
    assert form.document_warnings() == []

    await form.reveal("driver_license_number")

    assert form.document_warnings() == ["Your driver license expired on 2026-01-01."]
    assert form.validate() == []


@pytest.mark.asyncio
async def test_view_hides_plaintext_outside_editing(maria_api) -> None:
    form = await _open(maria_api)
    await form.reveal("ssn")
    assert form.view("f-1").ssn.value == MARIA_SSN

    form.commit("ssn")
    view = form.view("f-1")

    assert view.form_id == "f-1"
    assert view.ssn.value is None
    assert view.ssn.display == "XXX-XX-6789"
    assert set(view.fields) >= set(BASIC_FIELDS)


@pytest.mark.asyncio
async def test_dispose_ignores_late_reveal(maria_api) -> None:
    gate = asyncio.Event()

    async def slow_ssn():
        await gate.wait()
        return MARIA_SSN

    maria_api.get_decrypted_ssn = slow_ssn
    form = await _open(maria_api)

    task = asyncio.create_task(form.reveal("ssn"))
    await asyncio.sleep(0)
    form.dispose()
    gate.set()
    await task

    assert form.ssn.raw_value == ""
    assert not form.ssn.is_editing
