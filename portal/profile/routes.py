"""
Profile form HTTP routes — the surface the portal UI binds to.

  POST   /api/profile-forms                              open + load a form
  GET    /api/profile-forms/{form_id}                    current props
  PATCH  /api/profile-forms/{form_id}/fields/{name}      type into a field
  POST   /api/profile-forms/{form_id}/fields/{name}/reveal
  POST   /api/profile-forms/{form_id}/fields/{name}/commit   (blur)
  POST   /api/profile-forms/{form_id}/fields/{name}/cancel
  POST   /api/profile-forms/{form_id}/submit             Save
  DELETE /api/profile-forms/{form_id}                    unmount

The caller's bearer token is forwarded to the upstream API untouched.
Profile errors (validation, save, field state) propagate to the handlers in
main.py, which render the standard error envelope.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from pydantic import ValidationError

from portal.api_client import ApiClientError, AuthenticationError, PortalApiClient, ProfileApi
from portal.config import FormContext, settings
from portal.profile.reconciler import ProfileFormReconciler
from portal.profile.schemas import (
    FieldUpdate,
    FormView,
    OpenFormResponse,
    RevealResponse,
    SubmitResponse,
)
from portal.store import FormSessionStore

router = APIRouter(prefix="/api/profile-forms", tags=["profile_form"])
logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], ProfileApi]


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

async def get_form_store(request: Request) -> FormSessionStore:
    store = getattr(request.app.state, "form_store", None)
    if store is None:
        store = FormSessionStore(ttl_seconds=settings.form_idle_ttl_seconds)
        request.app.state.form_store = store
    await store.evict_expired()
    return store


def get_client_factory() -> ClientFactory:
    return lambda token: PortalApiClient(token=token)


def get_form_context() -> FormContext:
    return FormContext.from_settings(settings)


def bearer_token(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="No authentication token found")
    return authorization[len("bearer "):].strip()


def _get_form(store: FormSessionStore, form_id: str) -> ProfileFormReconciler:
    form = store.get(form_id)
    if form is None:
        raise HTTPException(status_code=404, detail=f"Profile form '{form_id}' not found")
    return form


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", status_code=201)
async def open_form(
    token: str = Depends(bearer_token),
    store: FormSessionStore = Depends(get_form_store),
    client_factory: ClientFactory = Depends(get_client_factory),
    context: FormContext = Depends(get_form_context),
) -> OpenFormResponse:
    """
    Fetch the user's profile and open a form over it.

    Returns:
        201: {form_id, form}
        401: Upstream rejected the token.
        502: Upstream failed to return the profile, or returned a malformed one.
    """
    client = client_factory(token)
    form = ProfileFormReconciler(client, context)
    try:
        await form.load()
    except Exception as exc:
        if hasattr(client, "close"):
            await client.close()
        if isinstance(exc, ApiClientError):
            status = 401 if isinstance(exc, AuthenticationError) else 502
            raise HTTPException(status_code=status, detail=exc.message) from exc
        if isinstance(exc, ValidationError):
            raise HTTPException(
                status_code=502, detail="Upstream returned a malformed profile"
            ) from exc
        raise

    form_id = store.open(form, client)
    return OpenFormResponse(form_id=form_id, form=form.view(form_id))


@router.get("/{form_id}")
async def get_form(
    form_id: str,
    store: FormSessionStore = Depends(get_form_store),
) -> FormView:
    return _get_form(store, form_id).view(form_id)


@router.patch("/{form_id}/fields/{name}")
async def update_field(
    form_id: str,
    name: str,
    body: FieldUpdate,
    store: FormSessionStore = Depends(get_form_store),
) -> FormView:
    form = _get_form(store, form_id)
    form.set_field(name, body.value)
    return form.view(form_id)


@router.post("/{form_id}/fields/{name}/reveal")
async def reveal_field(
    form_id: str,
    name: str,
    store: FormSessionStore = Depends(get_form_store),
) -> RevealResponse:
    """
    Decrypt-on-demand. A failed reveal is not an HTTP error: the field stays
    masked, revealed is false and the user may retry.
    """
    form = _get_form(store, form_id)
    revealed = await form.reveal(name)
    return RevealResponse(revealed=revealed, form=form.view(form_id))


@router.post("/{form_id}/fields/{name}/commit")
async def commit_field(
    form_id: str,
    name: str,
    store: FormSessionStore = Depends(get_form_store),
) -> FormView:
    form = _get_form(store, form_id)
    form.commit(name)
    return form.view(form_id)


@router.post("/{form_id}/fields/{name}/cancel")
async def cancel_field(
    form_id: str,
    name: str,
    store: FormSessionStore = Depends(get_form_store),
) -> FormView:
    form = _get_form(store, form_id)
    form.cancel(name)
    return form.view(form_id)


@router.post("/{form_id}/submit")
async def submit_form(
    form_id: str,
    store: FormSessionStore = Depends(get_form_store),
) -> SubmitResponse:
    """
    Returns:
        200: {saved, form} — saved is false when there was nothing to send
        409: A save is already in flight for this form
        422: Required fields missing/malformed (details list them in order)
        502: Upstream rejected the update (message verbatim)
    """
    form = _get_form(store, form_id)
    fresh = await form.submit()
    return SubmitResponse(saved=fresh is not None, form=form.view(form_id))


@router.delete("/{form_id}", status_code=204)
async def close_form(
    form_id: str,
    store: FormSessionStore = Depends(get_form_store),
) -> Response:
    if not await store.close(form_id):
        raise HTTPException(status_code=404, detail=f"Profile form '{form_id}' not found")
    return Response(status_code=204)
