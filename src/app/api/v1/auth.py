"""Sign-in endpoints: Google OAuth consent, callback, logout and dashboard.

The callback stores the owner's refresh token (encrypted) so meetings can
later be provisioned while the owner is just visiting their own link.
New owners get a collision-free slug derived from their first name.
"""

from __future__ import annotations

import httpx
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse

from src.app.api.deps import (
    get_oauth_manager,
    get_owner_repository,
    get_session_user,
)
from src.app.config import Environment, Settings, get_settings
from src.app.core.security import SESSION_COOKIE_NAME, create_session_token, encrypt_secret
from src.app.meetings.schemas import OwnerCreate, SessionUser
from src.app.meetings.slugs import allocate_async, normalize

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["auth"])


def _email_allowed(email: str, settings: Settings) -> bool:
    if settings.ALLOW_ANY_DOMAIN:
        return True
    domain = settings.ALLOWED_DOMAIN.strip().lower()
    return bool(domain) and email.lower().endswith(f"@{domain}")


@router.get("/login")
async def login(request: Request):
    """Redirect to the Google consent screen."""
    oauth = get_oauth_manager(request)
    return RedirectResponse(oauth.authorization_url(), status_code=status.HTTP_302_FOUND)


@router.get("/oauth2/callback")
async def oauth_callback(
    request: Request,
    code: str | None = None,
    settings: Settings = Depends(get_settings),
):
    """Complete sign-in: exchange the code, register or refresh the owner.

    Raises:
        HTTPException(400): Missing code or no access token issued.
        HTTPException(403): Email domain not allowed, or the single-user
            deployment already has its owner.
        HTTPException(500): Token exchange or profile lookup failed.
    """
    if not code:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing code")

    oauth = get_oauth_manager(request)
    owners = get_owner_repository(request)

    try:
        tokens = await oauth.exchange_code(code)
    except httpx.HTTPError as e:
        logger.error("oauth_exchange_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="OAuth failed",
        ) from e

    access_token = tokens.get("access_token")
    refresh_token = tokens.get("refresh_token")
    if not access_token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No access token")
    if not refresh_token:
        # Google omits the refresh token when consent was not re-prompted
        logger.info("oauth_missing_refresh_token")
        return RedirectResponse("/login", status_code=status.HTTP_302_FOUND)

    try:
        profile = await oauth.fetch_profile(access_token)
    except httpx.HTTPError as e:
        logger.error("oauth_profile_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="OAuth failed",
        ) from e

    email = profile.get("email") or ""
    if not email or not _email_allowed(email, settings):
        logger.warning("oauth_domain_rejected", email=email)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Email domain not allowed")

    google_id = str(profile.get("id") or "")
    first_name = profile.get("given_name") or email.split("@")[0]
    last_name = profile.get("family_name") or ""
    refresh_token_enc = encrypt_secret(refresh_token)

    owner = None
    if google_id:
        owner = await owners.get_by_google_id(google_id)
    if owner is None:
        owner = await owners.get_by_email(email)

    if owner is None:
        if settings.SINGLE_USER_MODE and await owners.count() > 0:
            logger.warning("oauth_single_user_rejected", email=email)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="This deployment already has an owner",
            )
        slug = await allocate_async(normalize(first_name, email), owners.slug_exists)
        owner = await owners.create_owner(
            OwnerCreate(
                google_id=google_id,
                email=email,
                first_name=first_name,
                last_name=last_name,
                slug=slug,
                refresh_token_enc=refresh_token_enc,
            )
        )
    else:
        await owners.update_refresh_token(owner.id, refresh_token_enc)

    session_user = SessionUser(
        id=owner.id,
        slug=owner.slug,
        email=owner.email,
        first_name=owner.first_name,
    )
    response = RedirectResponse("/", status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        SESSION_COOKIE_NAME,
        create_session_token(session_user),
        max_age=settings.SESSION_MAX_AGE_DAYS * 24 * 60 * 60,
        httponly=True,
        samesite="lax",
        secure=settings.ENVIRONMENT == Environment.production,
    )
    logger.info("owner_signed_in", owner_id=owner.id, slug=owner.slug)
    return response


@router.post("/logout")
async def logout():
    """Clear the session cookie."""
    response = RedirectResponse("/", status_code=status.HTTP_302_FOUND)
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response


@router.get("/")
async def dashboard(
    user: SessionUser | None = Depends(get_session_user),
    settings: Settings = Depends(get_settings),
):
    """Signed-in owners get their personal link; anonymous callers the base URL."""
    if user is None:
        return {"user": None, "base_url": settings.BASE_URL}
    return {
        "user": user.model_dump(),
        "personal_url": settings.personal_url(user.slug),
    }
