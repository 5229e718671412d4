"""OAuth redirect endpoints: start a link and receive the provider callback."""

import html
import json
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse

from app.api.deps import get_link_flow, get_platform, get_settings
from app.config import Settings
from app.errors import SocialLinkError
from app.models.common import LoginOrigin, Platform
from app.services.link_flow import (
    LinkFlowController,
    LinkResult,
    deep_link_url,
    web_error_url,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# --- Mobile bridge pages ---


def _js_string(value: str) -> str:
    return json.dumps(value).replace("</", "<\\/")


def _success_page(result: LinkResult, settings: Settings) -> str:
    title = result.platform.capitalize()
    username = html.escape(result.username or result.user_id)
    deep_link = result.deep_link or ""
    return f"""<!DOCTYPE html>
<html>
<head>
  <title>{title} Connected</title>
  <script>
    setTimeout(function() {{ window.location.href = {_js_string(deep_link)}; }}, 100);
    setTimeout(function() {{ window.location.href = {_js_string(result.redirect_url)}; }}, {settings.mobile_fallback_delay_ms});
  </script>
</head>
<body style="padding: 20px; font-family: Arial;">
  <h2>{title} Connected Successfully!</h2>
  <p>Connected to: {username}</p>
  <p>Redirecting to the app...</p>
  <p><small>If not redirected, <a href="{html.escape(deep_link)}">click here</a></small></p>
</body>
</html>
"""


def _error_page(deep_link: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<body>
  <script>window.location.href = {_js_string(deep_link)};</script>
  <p><a href="{html.escape(deep_link)}">Return to the app</a></p>
</body>
</html>
"""


def _error_response(settings: Settings, platform: str, message: str, origin: str):
    if origin != LoginOrigin.WEB.value:
        link = deep_link_url(settings, platform, {"status": "error", "error": message})
        return HTMLResponse(_error_page(link))
    return RedirectResponse(web_error_url(settings, platform, message), status_code=302)


# --- Endpoints ---


@router.get("/{platform}")
async def begin_link(
    platform: Platform = Depends(get_platform),
    user_id: str | None = Query(default=None, alias="userId"),
    user_id_lower: str | None = Query(default=None, alias="userid"),
    user_id_snake: str | None = Query(default=None, alias="user_id"),
    origin: str | None = Query(default=None),
    flow: LinkFlowController = Depends(get_link_flow),
):
    """Redirect the user agent to the platform's authorization dialog."""
    auth_url = flow.begin_link(
        user_id or user_id_lower or user_id_snake, platform.value, origin
    )
    return RedirectResponse(auth_url, status_code=302)


@router.get("/{platform}/callback")
async def link_callback(
    platform: Platform = Depends(get_platform),
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    error_description: str | None = Query(default=None),
    flow: LinkFlowController = Depends(get_link_flow),
    settings: Settings = Depends(get_settings),
):
    """Handle the provider redirect and send the user back to the client."""
    if error:
        origin = flow.cancel_link(state)
        return _error_response(settings, platform.value, error_description or error, origin)
    if not code or not state:
        return PlainTextResponse("Missing code or state", status_code=400)

    try:
        result = await flow.complete_link(code, state, platform.value)
    except SocialLinkError as e:
        logger.warning(f"{platform.value} callback failed: {e.message}")
        return _error_response(settings, platform.value, e.message, e.origin or "web")

    if result.deep_link:
        return HTMLResponse(_success_page(result, settings))
    return RedirectResponse(result.redirect_url, status_code=302)
