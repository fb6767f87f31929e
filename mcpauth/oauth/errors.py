"""RFC 6749 error responses."""

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi.responses import RedirectResponse
from starlette.responses import JSONResponse

from mcpauth.oauth.types import OAuthErrorBody

HTTP_FOUND = 302
HTTP_BAD_REQUEST = 400

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


class OAuthError(Exception):
    """An OAuth protocol error with its wire code and HTTP status."""

    def __init__(
        self,
        error: str,
        description: str | None = None,
        status_code: int = HTTP_BAD_REQUEST,
    ) -> None:
        super().__init__(description or error)
        self.error = error
        self.description = description
        self.status_code = status_code

    def body(self) -> dict[str, str]:
        return OAuthErrorBody(
            error=self.error, error_description=self.description
        ).model_dump(exclude_none=True)

    def to_response(self, headers: dict[str, str] | None = None) -> JSONResponse:
        return JSONResponse(self.body(), status_code=self.status_code, headers=headers)


def with_query(url: str, params: dict[str, str]) -> str:
    """Merge ``params`` into the query string of ``url``."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def authorize_error_response(
    redirect_uri: str | None,
    error: str,
    description: str = "",
    state: str = "",
) -> RedirectResponse | JSONResponse:
    """Report an authorization endpoint error to the client.

    Redirects back to ``redirect_uri`` when one is known to be safe,
    otherwise answers with a JSON 400.
    """
    if not redirect_uri:
        return OAuthError(error, description or None).to_response()

    params = {"error": error}
    if description:
        params["error_description"] = description
    if state:
        params["state"] = state
    return RedirectResponse(url=with_query(redirect_uri, params), status_code=HTTP_FOUND)


def token_error_response(
    error: str,
    description: str = "",
    status_code: int = HTTP_BAD_REQUEST,
) -> JSONResponse:
    """Token endpoint error; never cached."""
    exc = OAuthError(error, description or None, status_code)
    return exc.to_response(headers=NO_STORE_HEADERS)
