"""GraphQL client for the remote build service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

import httpx
import jwt

from visual_sync.logger import get_logger, log_with_context

logger = get_logger()

DEFAULT_ACCEPT_HEADER = "application/graphql-response+json, application/json"
DEFAULT_USER_AGENT = "visual-sync/0.1"

InvalidateTokenCallback = Callable[[], None]


class GraphQLClientError(RuntimeError):
    """Raised when a query or mutation fails at the transport or GraphQL layer."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        errors: List[Dict[str, Any]] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []

    @property
    def is_unauthorized(self) -> bool:
        if self.status_code == 401:
            return True
        return any(
            (error.get("extensions") or {}).get("code") == "UNAUTHENTICATED" for error in self.errors
        )


@dataclass
class OperationResult:
    """Outcome of one query or mutation: data, or the error that replaced it."""

    data: Dict[str, Any] | None = None
    error: GraphQLClientError | None = None
    extensions: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None


def token_expires_at(token: str) -> datetime | None:
    """Read the ``exp`` claim of an access token without verifying its signature."""

    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.DecodeError:
        return None
    exp = claims.get("exp")
    if exp is None:
        return None
    return datetime.fromtimestamp(int(exp), tz=timezone.utc)


def is_token_expired(token: str, *, now: datetime | None = None) -> bool:
    expires_at = token_expires_at(token)
    if expires_at is None:
        return False
    return expires_at <= (now or datetime.now(timezone.utc))


class GraphQLClient:
    """Runs queries and mutations against the service's GraphQL endpoint.

    The access token is owned by the caller. When the service rejects it, or
    when it has already expired, ``on_unauthorized`` is called so the caller
    can drop it; the client never refreshes tokens itself.
    """

    def __init__(
        self,
        *,
        base_url: str,
        access_token: str | None,
        on_unauthorized: InvalidateTokenCallback | None = None,
        path: str = "/api",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._path = path
        self._access_token = access_token
        self._on_unauthorized = on_unauthorized
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            headers={
                "User-Agent": DEFAULT_USER_AGENT,
                "Accept": DEFAULT_ACCEPT_HEADER,
            },
        )
        self._owns_client = client is None

    @property
    def access_token(self) -> str | None:
        return self._access_token

    def set_access_token(self, token: str | None) -> None:
        self._access_token = token

    def _invalidate_token(self) -> None:
        self._access_token = None
        if self._on_unauthorized is not None:
            self._on_unauthorized()

    def _auth_headers(self) -> Dict[str, str]:
        if not self._access_token:
            raise GraphQLClientError("No access token available.", 401)
        if is_token_expired(self._access_token):
            self._invalidate_token()
            raise GraphQLClientError("Access token has expired.", 401)
        return {"Authorization": f"Bearer {self._access_token}"}

    async def _post(
        self, document: str, variables: Dict[str, Any], operation_name: str | None
    ) -> Dict[str, Any]:
        headers = self._auth_headers()
        body: Dict[str, Any] = {"query": document, "variables": variables}
        if operation_name:
            body["operationName"] = operation_name

        try:
            response = await self._client.post(self._path, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise GraphQLClientError(f"Request to build service failed: {exc}") from exc

        if response.status_code == 401:
            self._invalidate_token()
        if response.status_code >= 400:
            detail: Any | None
            try:
                detail = response.json()
            except ValueError:
                detail = response.text
            errors = detail.get("errors") if isinstance(detail, dict) else None
            raise GraphQLClientError(
                f"Build service responded with status {response.status_code}: {detail}",
                response.status_code,
                errors,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise GraphQLClientError(
                "Build service returned invalid JSON.", response.status_code
            ) from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("data") or {}, dict):
            raise GraphQLClientError("Build service returned an unexpected payload.", response.status_code)

        errors = payload.get("errors") or []
        if not isinstance(errors, list) or not all(isinstance(error, dict) for error in errors):
            raise GraphQLClientError("Build service returned malformed errors.", response.status_code)
        if errors:
            messages = "; ".join(str(error.get("message", error)) for error in errors)
            error = GraphQLClientError(f"[GraphQL] {messages}", response.status_code, errors)
            if error.is_unauthorized:
                self._invalidate_token()
            raise error
        return payload

    async def execute(
        self,
        document: str,
        variables: Dict[str, Any] | None = None,
        *,
        operation_name: str | None = None,
    ) -> OperationResult:
        """Run a query or mutation, capturing any failure into the result."""

        ctx_logger = log_with_context(logger, operation=operation_name)
        try:
            payload = await self._post(document, variables or {}, operation_name)
        except GraphQLClientError as exc:
            ctx_logger.warning(f"GraphQL operation failed (status={exc.status_code}): {exc}")
            return OperationResult(error=exc)
        ctx_logger.trace("GraphQL operation succeeded")
        return OperationResult(data=payload.get("data"), extensions=payload.get("extensions") or {})

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance owns it."""

        if self._owns_client:
            await self._client.aclose()
