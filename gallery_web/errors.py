"""
Error taxonomy for login, session and webhook handling, with HTTP status mapping.
Authenticity/authorization failures are terminal for the request; store and transport
failures surface as 500 with a generic message and are logged for operators.
"""
import html
import logging

from fastapi import Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Required configuration missing or malformed (startup only)."""


class GalleryError(Exception):
    status_code = 500
    message = "Something went wrong. Please try again later."

    def __init__(self, detail: str | None = None):
        self.detail = detail
        super().__init__(detail or self.message)


class InvalidState(GalleryError):
    status_code = 400
    message = "Invalid or expired state. Please try logging in again."


class CodeExchangeFailed(GalleryError):
    status_code = 400
    message = "Login could not be completed. Please try logging in again."


class MalformedInteraction(GalleryError):
    status_code = 400
    message = "Malformed interaction payload."


class MissingHeader(GalleryError):
    status_code = 401
    message = "Missing signature headers."

    def __init__(self, header: str):
        self.header = header
        super().__init__(f"Missing required header with name {header}")


class InvalidSignature(GalleryError):
    status_code = 401
    message = "Invalid request signature."


class NoPermissions(GalleryError):
    status_code = 403
    message = "You do not have the required role to access this application."


class OracleError(GalleryError):
    """Platform API unreachable or returned something we cannot interpret."""


class StoreError(GalleryError):
    """Key-value store unreachable or failed."""


class LoginRequired(Exception):
    """Raised by the session gate; carries the provider authorization URL to redirect to."""

    def __init__(self, location: str):
        self.location = location
        super().__init__(location)


def _page(title: str, text: str, status_code: int) -> HTMLResponse:
    return HTMLResponse(
        f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body>
  <h1>{html.escape(title)}</h1>
  <p>{html.escape(text)}</p>
  <p><a href="/">Home</a></p>
</body>
</html>""",
        status_code=status_code,
    )


async def gallery_error_handler(request: Request, exc: GalleryError) -> Response:
    """Render a terse denial; internal errors never leak detail to the user."""
    if exc.status_code >= 500:
        logger.error("Error handling %s %s: %r", request.method, request.url.path, exc, exc_info=exc)
    else:
        logger.debug("Failed to handle %s %s: %r", request.method, request.url.path, exc)

    if request.url.path.startswith("/interactions"):
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)
    title = "Error" if exc.status_code >= 500 else "Request denied"
    return _page(title, exc.message, exc.status_code)


async def login_required_handler(request: Request, exc: LoginRequired) -> Response:
    return RedirectResponse(url=exc.location, status_code=302)
