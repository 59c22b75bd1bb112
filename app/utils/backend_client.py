"""
Backend gateway (Supabase Python SDK wrapper)

Every read, write, remote procedure call and auth operation the application
performs goes through this module. The managed backend owns persistence,
row-level security and the point/reward/approval rules; this wrapper only
translates SDK calls and SDK errors into a small, stable interface.

Official SDK: https://github.com/supabase/supabase-py

Environment Variables Required:
- SUPABASE_URL: Project URL
- SUPABASE_ANON_KEY: Public (anon) API key; row-level security applies
  once a user session is restored onto the client
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
from flask import current_app, g, has_app_context
from postgrest.exceptions import APIError
from supabase import AuthError as SupabaseAuthError
from supabase import ClientOptions, create_client


# -------------------- ERRORS --------------------

class BackendError(Exception):
    """Base error for anything that went wrong talking to the backend."""


class BackendTimeout(BackendError):
    """The backend did not answer within the configured timeout."""


class AuthError(BackendError):
    """Sign-in, sign-up or session restore was refused."""


class RemoteProcedureError(BackendError):
    """A remote procedure ran but reported ``success: false``."""

    def __init__(self, procedure, message):
        super().__init__(message)
        self.procedure = procedure


# -------------------- RESULT TYPES --------------------

@dataclass
class AuthSession:
    """Tokens and identity of a signed-in backend user."""
    user_id: str
    email: Optional[str]
    access_token: Optional[str]
    refresh_token: Optional[str]


def _session_from_response(response) -> Optional[AuthSession]:
    user = getattr(response, "user", None)
    if user is None:
        return None
    session = getattr(response, "session", None)
    return AuthSession(
        user_id=str(user.id),
        email=getattr(user, "email", None),
        access_token=getattr(session, "access_token", None),
        refresh_token=getattr(session, "refresh_token", None),
    )


def unwrap_procedure_result(procedure: str, data: Any) -> Any:
    """
    Normalize the payload of a remote procedure.

    Procedures that mutate state answer with a JSON object carrying a
    ``success`` flag. A single-row set is unwrapped to that row; an object
    with ``success: false`` raises :class:`RemoteProcedureError` carrying
    the backend's own message.
    """
    if isinstance(data, list) and len(data) == 1 and isinstance(data[0], dict):
        data = data[0]
    if isinstance(data, dict) and data.get("success") is False:
        raise RemoteProcedureError(procedure, data.get("error") or f"{procedure} failed")
    return data


def _log():
    return current_app.logger if has_app_context() else None


# -------------------- CLIENT --------------------

class BackendClient:
    """
    Thin wrapper around a Supabase client.

    One instance is created per request (see :class:`Backend`) so that a
    restored user session never leaks between requests.
    """

    def __init__(self, url: str, key: str, timeout: float = 5.0, client=None):
        self.timeout = timeout
        if client is None:
            options = ClientOptions(
                postgrest_client_timeout=timeout,
                auto_refresh_token=False,
                persist_session=False,
            )
            client = create_client(url, key, options=options)
        self._client = client

    # ---- execution -----------------------------------------------------

    def _execute(self, label: str, builder):
        """Run a query builder, timing it and translating SDK errors."""
        logger = _log()
        started = time.monotonic()
        try:
            response = builder.execute()
        except httpx.TimeoutException as exc:
            raise BackendTimeout(f"Timed out after {self.timeout:g}s ({label})") from exc
        except APIError as exc:
            message = getattr(exc, "message", None) or str(exc)
            raise BackendError(message) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Backend unreachable ({label}): {exc}") from exc
        finally:
            if logger:
                logger.debug(f"backend {label} took {(time.monotonic() - started) * 1000:.0f}ms")
        if response is None:
            return None
        return response.data

    # ---- tables --------------------------------------------------------

    def _filtered(self, builder, filters, in_filter):
        for column, value in (filters or {}).items():
            builder = builder.eq(column, value)
        if in_filter:
            column, values = in_filter
            builder = builder.in_(column, list(values))
        return builder

    def select(
        self,
        table: str,
        columns: str = "*",
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
        in_filter: Optional[Tuple[str, Iterable[Any]]] = None,
    ) -> List[Dict[str, Any]]:
        builder = self._filtered(self._client.table(table).select(columns), filters, in_filter)
        if order:
            builder = builder.order(order, desc=desc)
        if limit:
            builder = builder.limit(limit)
        return self._execute(f"select {table}", builder) or []

    def select_one(self, table: str, columns: str = "*", filters=None) -> Optional[Dict[str, Any]]:
        rows = self.select(table, columns=columns, filters=filters, limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, values) -> List[Dict[str, Any]]:
        return self._execute(f"insert {table}", self._client.table(table).insert(values)) or []

    def update(self, table: str, values: Dict[str, Any], filters=None, in_filter=None) -> List[Dict[str, Any]]:
        if not filters and not in_filter:
            raise ValueError("Refusing to update every row of %s" % table)
        builder = self._filtered(self._client.table(table).update(values), filters, in_filter)
        return self._execute(f"update {table}", builder) or []

    def delete(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("Refusing to delete every row of %s" % table)
        builder = self._filtered(self._client.table(table).delete(), filters, None)
        return self._execute(f"delete {table}", builder) or []

    # ---- remote procedures ---------------------------------------------

    def rpc(self, procedure: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._execute(f"rpc {procedure}", self._client.rpc(procedure, params or {}))

    def call_procedure(self, procedure: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Call a mutating procedure and raise if it reports failure."""
        return unwrap_procedure_result(procedure, self.rpc(procedure, params))

    # ---- auth ----------------------------------------------------------

    def sign_in(self, email: str, password: str) -> AuthSession:
        try:
            response = self._client.auth.sign_in_with_password({"email": email, "password": password})
        except SupabaseAuthError as exc:
            raise AuthError(exc.message if hasattr(exc, "message") else str(exc)) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Backend unreachable (sign in): {exc}") from exc
        session = _session_from_response(response)
        if session is None or not session.access_token:
            raise AuthError("Sign-in did not return a session.")
        return session

    def sign_up(self, email: str, password: str, full_name: str) -> Optional[AuthSession]:
        try:
            response = self._client.auth.sign_up({
                "email": email,
                "password": password,
                "options": {"data": {"full_name": full_name}},
            })
        except SupabaseAuthError as exc:
            raise AuthError(exc.message if hasattr(exc, "message") else str(exc)) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Backend unreachable (sign up): {exc}") from exc
        return _session_from_response(response)

    def restore_session(self, access_token: str, refresh_token: str) -> AuthSession:
        """Attach a stored session to this client, refreshing it if expired."""
        try:
            response = self._client.auth.set_session(access_token, refresh_token)
        except SupabaseAuthError as exc:
            raise AuthError(exc.message if hasattr(exc, "message") else str(exc)) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Backend unreachable (session restore): {exc}") from exc
        session = _session_from_response(response)
        if session is None:
            raise AuthError("Stored session is no longer valid.")
        return session

    def sign_out(self) -> None:
        try:
            self._client.auth.sign_out()
        except (SupabaseAuthError, httpx.HTTPError) as exc:
            raise AuthError(str(exc)) from exc


# -------------------- FLASK EXTENSION --------------------

class Backend:
    """
    Flask extension handing out one :class:`BackendClient` per request.

    ``client_factory`` may be replaced (tests do) with any callable returning
    an object exposing the :class:`BackendClient` interface.
    """

    def __init__(self, app=None):
        self.client_factory = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app.extensions["backend"] = self

    def create_client(self):
        if self.client_factory is not None:
            return self.client_factory()
        config = current_app.config
        return BackendClient(
            config["SUPABASE_URL"],
            config["SUPABASE_ANON_KEY"],
            timeout=config.get("BACKEND_TIMEOUT_SECONDS", 5.0),
        )

    @property
    def client(self):
        """The client bound to the current request."""
        if "backend_client" not in g:
            g.backend_client = self.create_client()
        return g.backend_client
