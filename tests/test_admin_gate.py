"""
Tests for the admin gate: the state precedence table, the claim and
bootstrap flows, and ordering of overlapping session changes.
"""

import pytest

from admin_gate import AdminGate, AdminStatus, GateState, decide_state
from config import AppConfig
from database import BackendGateway, ErrorKind
from memory_store import MemoryBackend
from schemas import AuthUser, Session

from helpers import ADMIN_EMAIL, ADMIN_ID, ADMIN_PASSWORD, OTHER_EMAIL, OTHER_PASSWORD, SECRET, signed_in

SESSION = Session(access_token="t", user=AuthUser(id="u1", email="u@example.com"))
OPEN = AdminStatus(settings_present=True)
ADMIN = AdminStatus(settings_present=True, bootstrapped=True, is_admin=True)


class TestDecideState:
    @pytest.mark.parametrize("env_ready,schema_ready,session,status,expected", [
        (False, True, SESSION, ADMIN, GateState.ENV_MISSING),
        (True, None, SESSION, ADMIN, GateState.CHECKING),
        (True, False, SESSION, ADMIN, GateState.SCHEMA_MISSING),
        (True, True, None, ADMIN, GateState.UNAUTHENTICATED),
        (True, True, SESSION, None, GateState.RESOLVING),
        (True, True, SESSION, AdminStatus(), GateState.AWAITING_BOOTSTRAP),
        (True, True, SESSION, AdminStatus(settings_present=True, token_required=True), GateState.BOOTSTRAP_TOKEN_REQUIRED),
        (True, True, SESSION, OPEN, GateState.CLAIM_AVAILABLE),
        (True, True, SESSION, AdminStatus(settings_present=True, bootstrapped=True), GateState.NOT_AUTHORIZED),
        (True, True, SESSION, ADMIN, GateState.AUTHORIZED),
    ])
    def test_precedence(self, env_ready, schema_ready, session, status, expected):
        assert decide_state(env_ready, schema_ready, session, status) == expected

    @pytest.mark.parametrize("kind,expected", [
        (ErrorKind.CONFIG_MISSING, GateState.ENV_MISSING),
        (ErrorKind.SCHEMA_MISSING, GateState.SCHEMA_MISSING),
        (ErrorKind.PERMISSION_DENIED, GateState.NOT_AUTHORIZED),
        (ErrorKind.BACKEND, GateState.NOT_AUTHORIZED),
    ])
    def test_failed_check_never_authorizes(self, kind, expected):
        status = AdminStatus(settings_present=True, bootstrapped=True, is_admin=True, error="boom", kind=kind)
        assert decide_state(True, True, SESSION, status) == expected


class TestFlows:
    @pytest.mark.asyncio
    async def test_fresh_deployment_claim(self, gateway, backend):
        gate = AdminGate(gateway.for_session(None))
        assert await gate.start() == GateState.UNAUTHENTICATED

        signed = await gate.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)
        assert signed.success
        assert gate.state == GateState.CLAIM_AVAILABLE

        claimed = await gate.claim()
        assert claimed.success
        assert gate.state == GateState.AUTHORIZED
        assert gate.authorized
        assert backend.rows("site_settings")[0]["admin_user_id"] == ADMIN_ID

        again = await gate.claim()
        assert not again.success
        assert again.message == "Admin already claimed"
        assert gate.state == GateState.AUTHORIZED
        gate.stop()

    @pytest.mark.asyncio
    async def test_wrong_user(self, gateway, admin_backend):
        gate = AdminGate(gateway.for_session(None))
        await gate.start()
        await gate.sign_in(OTHER_EMAIL, OTHER_PASSWORD)
        assert gate.state == GateState.NOT_AUTHORIZED
        assert gate.status().email == OTHER_EMAIL

        assert not (await gate.claim()).success

        signed_out = await gate.sign_out()
        assert signed_out.success
        assert gate.state == GateState.UNAUTHENTICATED
        assert gate.session is None
        gate.stop()

    @pytest.mark.asyncio
    async def test_without_subscription_actions_refresh(self, gateway, admin_backend):
        gate = AdminGate(gateway.for_session(None))
        assert (await gate.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)).success
        assert gate.state == GateState.AUTHORIZED

    @pytest.mark.asyncio
    async def test_bad_credentials(self, gateway):
        gate = AdminGate(gateway.for_session(None))
        await gate.start()
        result = await gate.sign_in(ADMIN_EMAIL, "wrong")
        assert not result.success
        assert result.message == "Invalid login credentials"
        assert gate.state == GateState.UNAUTHENTICATED
        assert not (await gate.sign_in("", "")).success
        gate.stop()

    @pytest.mark.asyncio
    async def test_claim_requires_session(self, gateway):
        gate = AdminGate(gateway.for_session(None))
        await gate.refresh()
        result = await gate.claim()
        assert not result.success and result.message == "Sign in first"

    @pytest.mark.asyncio
    async def test_bootstrap_token_required(self, gateway, backend):
        backend.seed_settings(bootstrap_token="s3cret")
        gate = AdminGate(await signed_in(gateway, OTHER_EMAIL, OTHER_PASSWORD))
        assert await gate.refresh() == GateState.BOOTSTRAP_TOKEN_REQUIRED

        refused = await gate.claim()
        assert refused.message == "Bootstrap token required"

        assert not (await gate.bootstrap("  ")).success
        wrong = await gate.bootstrap("guess")
        assert wrong.message == "Invalid bootstrap token"
        assert gate.state == GateState.BOOTSTRAP_TOKEN_REQUIRED

        right = await gate.bootstrap(" s3cret ")
        assert right.success
        assert gate.state == GateState.AUTHORIZED


class TestEnvironment:
    @pytest.mark.asyncio
    async def test_env_missing(self):
        gate = AdminGate(BackendGateway(AppConfig(), None))
        assert await gate.refresh() == GateState.ENV_MISSING
        assert "SUPABASE_URL" in gate.message
        assert not (await gate.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)).success

    @pytest.mark.asyncio
    async def test_schema_missing(self, gateway, backend):
        backend.schema_ready = False
        gate = AdminGate(gateway)
        assert await gate.refresh() == GateState.SCHEMA_MISSING
        assert "schema" in gate.message.lower()

    @pytest.mark.asyncio
    async def test_awaiting_bootstrap(self, config):
        store = MemoryBackend(secret=SECRET, settings_row=False)
        store.add_user(ADMIN_EMAIL, ADMIN_PASSWORD)
        gate = AdminGate(await signed_in(BackendGateway(config, store), ADMIN_EMAIL, ADMIN_PASSWORD))
        assert await gate.refresh() == GateState.AWAITING_BOOTSTRAP
        result = await gate.claim()
        assert result.message == "No site_settings row. Run seed SQL first."

    @pytest.mark.asyncio
    async def test_unreachable_backend_is_not_authorized(self, gateway, admin_backend):
        gate = AdminGate(await signed_in(gateway, ADMIN_EMAIL, ADMIN_PASSWORD))
        assert await gate.refresh() == GateState.AUTHORIZED
        admin_backend.reachable = False
        assert await gate.refresh() != GateState.AUTHORIZED


class TestOrdering:
    @pytest.mark.asyncio
    async def test_start_registers_listener(self, gateway, admin_backend):
        scoped = gateway.for_session(None)
        gate = AdminGate(scoped)
        await gate.start()

        # sign in through the gateway directly; only the listener can notice
        assert (await scoped.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)).ok
        assert gate.state == GateState.RESOLVING
        assert await gate.wait_settled(timeout=1) == GateState.AUTHORIZED

        gate.stop()
        await scoped.sign_out()
        assert gate.state == GateState.AUTHORIZED

    @pytest.mark.asyncio
    async def test_stale_result_is_dropped(self, gateway, admin_backend):
        gate = AdminGate(await signed_in(gateway, OTHER_EMAIL, OTHER_PASSWORD))
        await gate.refresh()
        assert gate.state == GateState.NOT_AUTHORIZED

        stale = gate.generation - 1
        assert gate._apply(stale, ADMIN) is False
        assert gate.state == GateState.NOT_AUTHORIZED
        assert gate._apply(gate.generation, ADMIN) is True
        assert gate.state == GateState.AUTHORIZED

    @pytest.mark.asyncio
    async def test_latest_session_wins(self, gateway, admin_backend):
        other_session = (await signed_in(gateway, OTHER_EMAIL, OTHER_PASSWORD)).auth.session
        scoped = gateway.for_session(None)
        gate = AdminGate(scoped)
        await gate.start()

        # two session changes before any scheduled check gets to run
        assert (await scoped.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)).ok
        scoped.auth.set_session("SIGNED_IN", other_session)

        assert await gate.wait_settled(timeout=1) == GateState.NOT_AUTHORIZED
        assert gate.session.user.email == OTHER_EMAIL
        gate.stop()
