"""
Gateway to the hosted backend (PostgREST tables/RPC + auth).

Every gateway operation returns a Result: `data` is None on failure and
`error` holds sanitized, human-readable text. Nothing raises past this
module; callers branch on `Result.kind`.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

import httpx

from config import BACKEND_MEMORY, CONFIG_MISSING_MESSAGE, AppConfig
from schemas import AuthUser, Session
from security import sanitize_error_message

logger = logging.getLogger("portfolio.gateway")

T = TypeVar("T")

SCHEMA_MISSING_MESSAGE = "Database schema not initialized. Run the schema migration against the backend."


class ErrorKind(str, Enum):
    CONFIG_MISSING = "config_missing"
    SCHEMA_MISSING = "schema_missing"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    BACKEND = "backend"


@dataclass(frozen=True)
class Result(Generic[T]):
    data: Optional[T] = None
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: Optional[T] = None) -> "Result[T]":
        return cls(data=data)

    @classmethod
    def failure(cls, message: Any, kind: ErrorKind = ErrorKind.BACKEND) -> "Result[T]":
        return cls(error=sanitize_error_message(message), kind=kind)


class BackendError(Exception):
    """Error reported by the backend (PostgREST / auth) or a transport in its place."""

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


# auth rejected the credentials themselves
AUTH_REJECTED_CODES = ("INVALID_CREDENTIALS", "INVALID_GRANT", "EMAIL_NOT_CONFIRMED")


def classify_error(error: BackendError) -> ErrorKind:
    message = (error.message or "").lower()
    code = (error.code or "").upper()
    if code in AUTH_REJECTED_CODES:
        return ErrorKind.PERMISSION_DENIED
    if code in ("42P01", "PGRST205", "PGRST202") or "does not exist" in message or "could not find the" in message:
        return ErrorKind.SCHEMA_MISSING
    if code in ("42501", "PGRST301") or "permission denied" in message or error.status in (401, 403):
        return ErrorKind.PERMISSION_DENIED
    if code == "PGRST116":
        return ErrorKind.NOT_FOUND
    if code == "23505":
        return ErrorKind.CONFLICT
    return ErrorKind.BACKEND


# =====
# Query
# =====
@dataclass
class Query:
    table: str
    columns: str = "*"
    filters: List[Tuple[str, str, Any]] = field(default_factory=list)
    order: List[Tuple[str, bool]] = field(default_factory=list)
    limit: Optional[int] = None

    def _where(self, column: str, op: str, value: Any) -> "Query":
        self.filters.append((column, op, value))
        return self

    def eq(self, column: str, value: Any) -> "Query":
        return self._where(column, "eq", value)

    def neq(self, column: str, value: Any) -> "Query":
        return self._where(column, "neq", value)

    def gte(self, column: str, value: Any) -> "Query":
        return self._where(column, "gte", value)

    def lte(self, column: str, value: Any) -> "Query":
        return self._where(column, "lte", value)

    def order_by(self, column: str, descending: bool = False) -> "Query":
        self.order.append((column, descending))
        return self

    def take(self, n: Optional[int]) -> "Query":
        self.limit = n
        return self


# =========
# Backends
# =========
class Backend(ABC):
    """Transport to the store. Implementations raise BackendError."""

    @abstractmethod
    async def select(self, query: Query, token: Optional[str]) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def insert(
        self, table: str, row: Dict[str, Any], token: Optional[str], returning: bool = True
    ) -> Dict[str, Any]: ...

    @abstractmethod
    async def update(self, query: Query, values: Dict[str, Any], token: Optional[str]) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def delete(self, query: Query, token: Optional[str]) -> None: ...

    @abstractmethod
    async def rpc(self, name: str, params: Dict[str, Any], token: Optional[str]) -> Any: ...

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Session: ...

    @abstractmethod
    async def sign_out(self, token: str) -> None: ...

    async def aclose(self) -> None:
        return None


def _encode(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class SupabaseBackend(Backend):
    """PostgREST + GoTrue over httpx."""

    def __init__(self, url: str, key: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._key = key
        self._client = httpx.AsyncClient(
            base_url=url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"apikey": key},
        )

    def _headers(self, token: Optional[str], **extra: str) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {token or self._key}"}
        headers.update(extra)
        return headers

    @staticmethod
    def _params(query: Query, with_select: bool = True) -> List[Tuple[str, str]]:
        params: List[Tuple[str, str]] = []
        if with_select:
            params.append(("select", query.columns))
        for column, op, value in query.filters:
            if value is None:
                params.append((column, "is.null"))
            else:
                params.append((column, f"{op}.{_encode(value)}"))
        if query.order:
            params.append(("order", ",".join(f"{c}.{'desc' if d else 'asc'}" for c, d in query.order)))
        if query.limit is not None:
            params.append(("limit", str(query.limit)))
        return params

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        code = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = (
                body.get("message")
                or body.get("error_description")
                or body.get("msg")
                or body.get("error")
                or response.text
            )
            code = body.get("error_code") or body.get("code")
            if code is None and "error_description" in body:
                # OAuth style: {"error": "invalid_grant", "error_description": "..."}
                code = body.get("error")
            if code is not None:
                code = str(code)
        else:
            message = response.text or f"HTTP {response.status_code}"
        raise BackendError(str(message), code=code, status=response.status_code)

    async def select(self, query: Query, token: Optional[str]) -> List[Dict[str, Any]]:
        r = await self._client.get(f"/rest/v1/{query.table}", params=self._params(query), headers=self._headers(token))
        self._raise_for_error(r)
        return r.json() or []

    async def insert(
        self, table: str, row: Dict[str, Any], token: Optional[str], returning: bool = True
    ) -> Dict[str, Any]:
        # anon callers may insert rows they are not allowed to read back
        prefer = "return=representation" if returning else "return=minimal"
        r = await self._client.post(f"/rest/v1/{table}", json=row, headers=self._headers(token, Prefer=prefer))
        self._raise_for_error(r)
        if not returning:
            return {}
        rows = r.json() or []
        return rows[0] if rows else dict(row)

    async def update(self, query: Query, values: Dict[str, Any], token: Optional[str]) -> List[Dict[str, Any]]:
        r = await self._client.patch(
            f"/rest/v1/{query.table}",
            params=self._params(query, with_select=False),
            json=values,
            headers=self._headers(token, Prefer="return=representation"),
        )
        self._raise_for_error(r)
        return r.json() or []

    async def delete(self, query: Query, token: Optional[str]) -> None:
        r = await self._client.delete(
            f"/rest/v1/{query.table}",
            params=self._params(query, with_select=False),
            headers=self._headers(token),
        )
        self._raise_for_error(r)

    async def rpc(self, name: str, params: Dict[str, Any], token: Optional[str]) -> Any:
        r = await self._client.post(f"/rest/v1/rpc/{name}", json=params or {}, headers=self._headers(token))
        self._raise_for_error(r)
        if not r.content:
            return None
        return r.json()

    async def sign_in(self, email: str, password: str) -> Session:
        r = await self._client.post(
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        self._raise_for_error(r)
        body = r.json()
        user = body.get("user") or {}
        expires_at = body.get("expires_at")
        if expires_at is None and body.get("expires_in"):
            expires_at = int(time.time()) + int(body["expires_in"])
        return Session(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_at=expires_at,
            user=AuthUser(id=str(user.get("id", "")), email=user.get("email")),
        )

    async def sign_out(self, token: str) -> None:
        r = await self._client.post("/auth/v1/logout", headers=self._headers(token))
        self._raise_for_error(r)

    async def aclose(self) -> None:
        await self._client.aclose()


# ==========
# Auth state
# ==========
AuthListener = Callable[[str, Optional[Session]], None]


class AuthState:
    """
    Holds the current session and notifies listeners synchronously on every
    change. Listeners must not await; schedule follow-up work instead.
    """

    def __init__(self, session: Optional[Session] = None):
        self._session = session
        self._listeners: List[AuthListener] = []

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_session(self, event: str, session: Optional[Session]) -> None:
        self._session = session
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception:
                logger.exception("Auth listener failed on %s", event)


@dataclass(frozen=True)
class Diagnostics:
    env_ready: bool
    schema_ready: bool
    message: Optional[str] = None


# =======
# Gateway
# =======
class BackendGateway:
    def __init__(self, config: AppConfig, backend: Optional[Backend], auth: Optional[AuthState] = None):
        self.config = config
        self.backend = backend
        self.auth = auth or AuthState()

    @property
    def env_ready(self) -> bool:
        return self.config.env_ready and self.backend is not None

    def for_session(self, session: Optional[Session]) -> "BackendGateway":
        """Gateway sharing this transport but acting as `session`."""
        return BackendGateway(self.config, self.backend, AuthState(session))

    def _token(self) -> Optional[str]:
        session = self.auth.session
        return session.access_token if session else None

    async def _call(self, operation: str, fn: Callable[[Backend], Any]) -> Result[Any]:
        if not self.env_ready:
            return Result.failure(CONFIG_MISSING_MESSAGE, ErrorKind.CONFIG_MISSING)
        try:
            return Result.success(await fn(self.backend))
        except BackendError as e:
            kind = classify_error(e)
            message = SCHEMA_MISSING_MESSAGE if kind == ErrorKind.SCHEMA_MISSING else e.message
            logger.warning("%s failed (%s): %s", operation, kind.value, sanitize_error_message(e.message))
            return Result.failure(message, kind)
        except (httpx.HTTPError, OSError) as e:
            logger.warning("%s failed: backend unreachable: %s", operation, sanitize_error_message(str(e)))
            return Result.failure(f"Backend unreachable: {e}" if str(e) else "Backend unreachable")
        except Exception as e:
            logger.exception("%s failed unexpectedly", operation)
            return Result.failure(str(e) or e.__class__.__name__)

    async def select(self, query: Query) -> Result[List[Dict[str, Any]]]:
        return await self._call(f"select {query.table}", lambda b: b.select(query, self._token()))

    async def select_one(self, query: Query) -> Result[Optional[Dict[str, Any]]]:
        """First matching row, or success(None) when there is none."""
        result = await self.select(query.take(1))
        if not result.ok:
            return Result(error=result.error, kind=result.kind)
        return Result.success(result.data[0] if result.data else None)

    async def insert(self, table: str, row: Dict[str, Any], returning: bool = True) -> Result[Dict[str, Any]]:
        return await self._call(f"insert {table}", lambda b: b.insert(table, row, self._token(), returning))

    async def update(self, query: Query, values: Dict[str, Any]) -> Result[Dict[str, Any]]:
        result = await self._call(f"update {query.table}", lambda b: b.update(query, values, self._token()))
        if not result.ok:
            return result
        if not result.data:
            return Result.failure("No matching row to update", ErrorKind.NOT_FOUND)
        return Result.success(result.data[0])

    async def delete(self, query: Query) -> Result[None]:
        return await self._call(f"delete {query.table}", lambda b: b.delete(query, self._token()))

    async def rpc(self, name: str, params: Optional[Dict[str, Any]] = None) -> Result[Any]:
        return await self._call(f"rpc {name}", lambda b: b.rpc(name, params or {}, self._token()))

    async def sign_in(self, email: str, password: str) -> Result[Session]:
        result = await self._call("sign in", lambda b: b.sign_in(email, password))
        if result.ok:
            self.auth.set_session("SIGNED_IN", result.data)
        return result

    async def sign_out(self) -> Result[None]:
        token = self._token()
        result: Result[None] = Result.success()
        if token and self.env_ready:
            result = await self._call("sign out", lambda b: b.sign_out(token))
        # the local session ends even if the backend call failed
        self.auth.set_session("SIGNED_OUT", None)
        return result

    async def get_session(self) -> Result[Optional[Session]]:
        if not self.env_ready:
            return Result.failure(CONFIG_MISSING_MESSAGE, ErrorKind.CONFIG_MISSING)
        session = self.auth.session
        if session is not None and session.expired(time.time()):
            logger.info("Session for %s expired", session.user.email or session.user.id)
            return Result.success(None)
        return Result.success(session)

    async def diagnose(self) -> Diagnostics:
        """Environment and schema readiness; unknown failures count as not ready."""
        if not self.env_ready:
            return Diagnostics(env_ready=False, schema_ready=False, message=CONFIG_MISSING_MESSAGE)
        result = await self.select(Query("site_settings", columns="id").take(1))
        if result.ok:
            return Diagnostics(env_ready=True, schema_ready=True)
        if result.kind == ErrorKind.PERMISSION_DENIED:
            # table exists; row-level policy hides it from this caller
            return Diagnostics(env_ready=True, schema_ready=True, message=result.error)
        return Diagnostics(env_ready=True, schema_ready=False, message=result.error)


def create_backend(config: AppConfig) -> Optional[Backend]:
    """Transport for the configured mode; None when the hosted backend is not configured."""
    if config.backend_mode == BACKEND_MEMORY:
        from memory_store import MemoryBackend

        backend = MemoryBackend(secret=config.jwt_secret or "memory-backend-secret", bootstrap_token=config.bootstrap_token)
        if config.demo_admin_email and config.demo_admin_password:
            backend.add_user(config.demo_admin_email, config.demo_admin_password)
            logger.info("Memory backend: demo user %s registered", config.demo_admin_email)
        return backend
    if not config.env_ready:
        logger.warning(CONFIG_MISSING_MESSAGE)
        return None
    return SupabaseBackend(config.backend_url, config.backend_key, timeout=config.request_timeout)
