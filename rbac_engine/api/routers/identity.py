from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from rbac_engine.api.deps import CurrentSession, Identity, http_error, oauth2_scheme
from rbac_engine.domain.errors import RbacError
from rbac_engine.domain.models import SessionTokenResponse, SignInRequest, UserRead, UserSession

router = APIRouter()


@router.post("/bootstrap", response_model=list[UserRead], status_code=status.HTTP_201_CREATED)
def bootstrap_seed_accounts(identity: Identity) -> list[UserRead]:
    try:
        created = identity.ensure_seed_accounts()
    except RbacError as exc:
        raise http_error(exc) from exc
    return [UserRead.model_validate(item) for item in created]


@router.post("/sign-in", response_model=SessionTokenResponse)
def sign_in(payload: SignInRequest, identity: Identity) -> SessionTokenResponse:
    try:
        token, session = identity.sign_in(payload.email, payload.password, payload.remember_me)
    except RbacError as exc:
        raise http_error(exc) from exc
    return SessionTokenResponse(access_token=token, session=session)


@router.get("/session", response_model=UserSession)
def get_session(session: CurrentSession) -> UserSession:
    return session


@router.post("/sign-out", status_code=status.HTTP_204_NO_CONTENT)
def sign_out(
    _session: CurrentSession,
    identity: Identity,
    token: str = Depends(oauth2_scheme),
) -> Response:
    identity.sign_out(token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
