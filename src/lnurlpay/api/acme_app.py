"""Port 80 application: ACME HTTP-01 challenges and redirection to HTTPS."""

from __future__ import annotations

from typing import Optional, Protocol

from fastapi import FastAPI, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse, Response

ACME_CHALLENGE_PREFIX = "/.well-known/acme-challenge/"

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class ChallengeResponder(Protocol):
    def allows(self, domain: str) -> bool: ...

    def http01_response(self, token: str) -> Optional[str]: ...


def https_url(request: Request) -> Optional[str]:
    """Build the HTTPS equivalent of the request URL from its Host header."""
    host = request.headers.get("host")
    if not host:
        return None
    url = f"https://{host}{request.url.path}"
    query = request.url.query
    if query:
        url += f"?{query}"
    return url


def create_acme_app(responder: ChallengeResponder) -> FastAPI:
    """Create the plain-HTTP app served next to the TLS listener."""
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(ACME_CHALLENGE_PREFIX + "{token}")
    async def acme_challenge(token: str, request: Request) -> Response:
        host = (request.headers.get("host") or "").split(":", 1)[0]
        key_authorization = responder.http01_response(token)
        if key_authorization is None or not responder.allows(host):
            return PlainTextResponse(
                "acme/autocert: certificate cache miss",
                status_code=status.HTTP_404_NOT_FOUND,
            )
        return PlainTextResponse(key_authorization)

    @app.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
    async def redirect_to_https(request: Request) -> Response:
        url = https_url(request)
        if url is None:
            return PlainTextResponse(
                "missing Host header", status_code=status.HTTP_400_BAD_REQUEST
            )
        return RedirectResponse(url, status_code=status.HTTP_308_PERMANENT_REDIRECT)

    return app
