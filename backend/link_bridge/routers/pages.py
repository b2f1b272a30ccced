"""Static success/error pages shown at the end of the linking flow."""
from html import escape

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse

from ..config import Settings, append_query_param

router = APIRouter(tags=["pages"])

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1.0" />
  <title>{title}</title>
</head>
<body style="font-family: sans-serif; background: #f4f4f8; color: #333; padding: 2rem;">
{body}
</body>
</html>"""

_BUTTON_STYLE = (
    "display: inline-block; padding: 0.75rem 1.5rem; background: #4f46e5; "
    "color: white; border-radius: 4px; text-decoration: none; font-weight: 600;"
)


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _provider_label(provider: str) -> str:
    return provider.capitalize()


def _require_provider(provider: str, settings: Settings) -> None:
    if provider != settings.OAUTH_PROVIDER:
        raise HTTPException(status_code=404, detail="Not found")


@router.get("/{provider}-login-success", response_class=HTMLResponse)
def login_success_page(
    provider: str,
    customToken: str | None = None,  # noqa: N803 - query parameter name
    token: str | None = None,
    settings: Settings = Depends(_settings),
):
    """Account linked; link to the app login, carrying the credential if present."""
    _require_provider(provider, settings)
    # Older redirects used "token" instead of "customToken".
    credential = customToken or token
    login_url = settings.APP_LOGIN_URL
    if credential:
        login_url = append_query_param(login_url, "token", credential)

    app_name = escape(settings.APP_DISPLAY_NAME)
    label = escape(_provider_label(provider))
    body = f"""  <h1>Account linked successfully</h1>
  <p>Your {label} account has been linked to your {app_name} profile.</p>
  <p>
    Click the button below to continue to {app_name}. If you aren't logged in
    automatically, simply sign in with your existing {app_name} email and password.
  </p>
  <p><a href="{escape(login_url, quote=True)}" style="{_BUTTON_STYLE}">Continue to {app_name}</a></p>"""
    return HTMLResponse(_PAGE.format(title=f"{app_name} - Account Linked", body=body))


@router.get("/{provider}-login-error", response_class=HTMLResponse)
def login_error_page(provider: str, settings: Settings = Depends(_settings)):
    """Linking failed; no failure detail is shown."""
    _require_provider(provider, settings)
    label = escape(_provider_label(provider))
    body = f"""  <h1>Linking error</h1>
  <p>We were unable to link your {label} account. This may happen if you
  denied the {label} authorization or if the link expired. Please return to
  {label} and try again, or contact support if the issue persists.</p>"""
    title = f"{escape(settings.APP_DISPLAY_NAME)} - Linking Error"
    return HTMLResponse(_PAGE.format(title=title, body=body))
