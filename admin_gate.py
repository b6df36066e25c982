"""
Admin identity gate.

Decides which single state the admin area is in, from configuration,
schema readiness, the current session and the server's bootstrap/admin
answer. `decide_state` holds the precedence; `AdminGate` feeds it and keeps
the result current as sessions change.

Session listeners never await. A session change bumps the generation
counter and schedules the admin check on the next loop iteration; a check
whose generation has been superseded by the time it finishes is dropped.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from database import BackendGateway, Diagnostics, ErrorKind
from schemas import ActionResult, GateStatus, Session
from security import sanitize_error_message

logger = logging.getLogger("portfolio.admin")


class GateState(str, Enum):
    ENV_MISSING = "ENV_MISSING"
    CHECKING = "CHECKING"
    SCHEMA_MISSING = "SCHEMA_MISSING"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    RESOLVING = "RESOLVING"
    AWAITING_BOOTSTRAP = "AWAITING_BOOTSTRAP"
    BOOTSTRAP_TOKEN_REQUIRED = "BOOTSTRAP_TOKEN_REQUIRED"
    CLAIM_AVAILABLE = "CLAIM_AVAILABLE"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    AUTHORIZED = "AUTHORIZED"


TRANSIENT_STATES = (GateState.CHECKING, GateState.RESOLVING)
UNCLAIMED_STATES = (GateState.AWAITING_BOOTSTRAP, GateState.BOOTSTRAP_TOKEN_REQUIRED, GateState.CLAIM_AVAILABLE)

STATE_MESSAGES: Dict[GateState, str] = {
    GateState.ENV_MISSING: "Backend is not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY.",
    GateState.CHECKING: "Checking backend...",
    GateState.SCHEMA_MISSING: "Database schema not initialized. Run the schema migration, then reload.",
    GateState.UNAUTHENTICATED: "Sign in to continue.",
    GateState.RESOLVING: "Verifying admin access...",
    GateState.AWAITING_BOOTSTRAP: "No site settings row yet. Run the seed migration before claiming admin.",
    GateState.BOOTSTRAP_TOKEN_REQUIRED: "Enter the bootstrap token to become the site admin.",
    GateState.CLAIM_AVAILABLE: "No admin yet. You can claim admin access for this site.",
    GateState.NOT_AUTHORIZED: "This account is not the site admin.",
    GateState.AUTHORIZED: "Signed in as admin.",
}


@dataclass(frozen=True)
class AdminStatus:
    """Server answer for the signed-in user; `error` set when it could not be obtained."""

    settings_present: bool = False
    bootstrapped: bool = False
    token_required: bool = False
    is_admin: bool = False
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None


async def check_admin_status(gateway: BackendGateway) -> AdminStatus:
    status, admin = await asyncio.gather(gateway.rpc("admin_bootstrap_status"), gateway.rpc("is_admin"))
    for result in (status, admin):
        if not result.ok:
            return AdminStatus(error=result.error, kind=result.kind)
    data: Dict[str, Any] = status.data if isinstance(status.data, dict) else {}
    return AdminStatus(
        settings_present=data.get("settings_present") is True,
        bootstrapped=data.get("bootstrapped") is True,
        token_required=data.get("token_required") is True,
        is_admin=admin.data is True,
    )


def decide_state(
    env_ready: bool,
    schema_ready: Optional[bool],
    session: Optional[Session],
    status: Optional[AdminStatus],
) -> GateState:
    """
    Precedence, first match wins:
      config missing > diagnostics pending > schema missing > no session >
      admin check pending > check failed > unclaimed (row missing, token, open) >
      identity match.

    `schema_ready=None` means diagnostics have not finished; `status=None`
    means the admin check for this session has not finished.
    """
    if not env_ready:
        return GateState.ENV_MISSING
    if schema_ready is None:
        return GateState.CHECKING
    if not schema_ready:
        return GateState.SCHEMA_MISSING
    if session is None:
        return GateState.UNAUTHENTICATED
    if status is None:
        return GateState.RESOLVING
    if status.error is not None:
        # never grant on error
        if status.kind == ErrorKind.CONFIG_MISSING:
            return GateState.ENV_MISSING
        if status.kind == ErrorKind.SCHEMA_MISSING:
            return GateState.SCHEMA_MISSING
        return GateState.NOT_AUTHORIZED
    if not status.bootstrapped:
        if not status.settings_present:
            return GateState.AWAITING_BOOTSTRAP
        if status.token_required:
            return GateState.BOOTSTRAP_TOKEN_REQUIRED
        return GateState.CLAIM_AVAILABLE
    return GateState.AUTHORIZED if status.is_admin else GateState.NOT_AUTHORIZED


class AdminGate:
    def __init__(self, gateway: BackendGateway):
        self.gateway = gateway
        self.state = GateState.CHECKING
        self.message: Optional[str] = STATE_MESSAGES[GateState.CHECKING]
        self.generation = 0
        self._diagnostics: Optional[Diagnostics] = None
        self._session: Optional[Session] = None
        self._status: Optional[AdminStatus] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._pending: Optional[asyncio.Task] = None
        self._settled = asyncio.Event()

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def authorized(self) -> bool:
        return self.state == GateState.AUTHORIZED

    def status(self) -> GateStatus:
        user = self._session.user if self._session else None
        return GateStatus(state=self.state.value, message=self.message, email=user.email if user else None)

    # ---------
    # Lifecycle
    # ---------
    async def start(self) -> GateState:
        # listen before the first session fetch so no change slips in between
        if self._unsubscribe is None:
            self._unsubscribe = self.gateway.auth.subscribe(self._on_auth_change)
        return await self.refresh()

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def refresh(self) -> GateState:
        """Full evaluation pass: diagnostics, session, then the admin check."""
        self.generation += 1
        generation = self.generation
        self._status = None
        self._evaluate()

        # diagnostics do not depend on the session; keep them even if superseded
        self._diagnostics = await self.gateway.diagnose()
        if generation != self.generation or not (self._diagnostics.env_ready and self._diagnostics.schema_ready):
            self._evaluate()
            return self.state

        session = await self.gateway.get_session()
        if generation != self.generation:
            self._evaluate()
            return self.state
        self._session = session.data if session.ok else None
        self._evaluate()
        if self._session is not None:
            await self._run_check(generation)
        return self.state

    async def wait_settled(self, timeout: Optional[float] = None) -> GateState:
        await asyncio.wait_for(self._settled.wait(), timeout)
        return self.state

    # --------------
    # Session events
    # --------------
    def _on_auth_change(self, event: str, session: Optional[Session]) -> None:
        self.generation += 1
        generation = self.generation
        self._session = session
        self._status = None
        self._evaluate()
        logger.debug("Auth event %s (generation %d)", event, generation)
        if session is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Auth event %s outside an event loop; admin check waits for the next refresh", event)
            return
        loop.call_soon(self._schedule_check, generation)

    def _schedule_check(self, generation: int) -> None:
        if generation != self.generation:
            return
        self._pending = asyncio.get_running_loop().create_task(self._run_check(generation))

    async def _run_check(self, generation: int) -> None:
        status = await check_admin_status(self.gateway)
        self._apply(generation, status)

    def _apply(self, generation: int, status: AdminStatus) -> bool:
        if generation != self.generation:
            logger.debug("Dropping admin check from generation %d (current %d)", generation, self.generation)
            return False
        if status.error:
            logger.warning("Admin check failed: %s", status.error)
        self._status = status
        self._evaluate()
        return True

    def _evaluate(self) -> None:
        if self._diagnostics is not None:
            env_ready, schema_ready = self._diagnostics.env_ready, self._diagnostics.schema_ready
        else:
            env_ready, schema_ready = self.gateway.env_ready, None
        state = decide_state(env_ready, schema_ready, self._session, self._status)

        if state in (GateState.ENV_MISSING, GateState.SCHEMA_MISSING) and self._diagnostics and self._diagnostics.message:
            message = self._diagnostics.message
        else:
            message = STATE_MESSAGES[state]
        if state != self.state:
            logger.info("Admin gate: %s -> %s", self.state.value, state.value)
        self.state = state
        self.message = message

        if state in TRANSIENT_STATES:
            self._settled.clear()
        else:
            self._settled.set()

    # -------
    # Actions
    # -------
    async def sign_in(self, email: str, password: str) -> ActionResult:
        if not email or not password:
            return ActionResult(success=False, message="Email and password are required")
        result = await self.gateway.sign_in(email.strip(), password)
        if not result.ok:
            return ActionResult(success=False, message=result.error)
        await self._follow_auth_change()
        return ActionResult(success=True, message="Signed in")

    async def sign_out(self) -> ActionResult:
        result = await self.gateway.sign_out()
        await self._follow_auth_change()
        if not result.ok:
            return ActionResult(success=False, message=result.error)
        return ActionResult(success=True, message="Signed out")

    async def _follow_auth_change(self) -> None:
        if self._unsubscribe is None:
            await self.refresh()
        else:
            await self.wait_settled()

    async def claim(self) -> ActionResult:
        return await self._assign("claim_admin", {}, "Admin claimed")

    async def bootstrap(self, token: str) -> ActionResult:
        if not token or not token.strip():
            return ActionResult(success=False, message="Bootstrap token is required")
        return await self._assign("bootstrap_set_admin", {"token": token.strip()}, "Bootstrap complete")

    async def _assign(self, procedure: str, params: Dict[str, Any], done: str) -> ActionResult:
        if self._session is None:
            return ActionResult(success=False, message="Sign in first")
        result = await self.gateway.rpc(procedure, params)
        if not result.ok:
            return ActionResult(success=False, message=result.error)
        data = result.data if isinstance(result.data, dict) else {}
        if not data.get("success"):
            return ActionResult(success=False, message=sanitize_error_message(data.get("error") or f"{procedure} failed"))
        # authorization changed server-side; re-derive everything
        await self.refresh()
        logger.info("%s succeeded for %s", procedure, self._session.user.email if self._session else "unknown")
        return ActionResult(success=True, message=done)
