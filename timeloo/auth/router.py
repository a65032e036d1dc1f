"""Auth router — sign-in, current profile and logout."""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from timeloo.auth.dependencies import _extract_bearer, get_current_user
from timeloo.auth.models import Profile
from timeloo.auth.schemas import ProfileOut, SessionCreateRequest, SessionOut
from timeloo.auth.service import exchange_identity_token, revoke_session
from timeloo.common.audit import create_audit_entry
from timeloo.common.rate_limit import limiter
from timeloo.config import settings
from timeloo.database import get_db

router = APIRouter(prefix="", tags=["auth"])


# ── POST /session — exchange an identity token ──────────────────────

@router.post("/session", response_model=SessionOut, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def sign_in(
    request: Request,
    body: SessionCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    token, profile = await exchange_identity_token(db, body.identity_token)

    ip = request.client.host if request.client else None
    await create_audit_entry(
        db,
        action="login",
        entity_type="user_session",
        entity_id=profile.id,
        actor_id=profile.id,
        new_values={"ip": ip, "user_agent": request.headers.get("user-agent")},
    )

    return SessionOut(
        access_token=token,
        expires_in=settings.JWT_EXPIRY_HOURS * 3600,
        user=ProfileOut.model_validate(profile),
    )


# ── GET /me ─────────────────────────────────────────────────────────

@router.get("/me", response_model=ProfileOut)
async def get_me(user: Profile = Depends(get_current_user)):
    """Return the signed-in profile."""
    return user


# ── POST /logout ────────────────────────────────────────────────────

@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    _user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Revoke the session behind the presented token."""
    await revoke_session(db, _extract_bearer(request))
