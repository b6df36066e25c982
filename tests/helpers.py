from database import BackendGateway

SECRET = "test-secret"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "correct horse battery"
ADMIN_ID = "11111111-1111-1111-1111-111111111111"
OTHER_EMAIL = "visitor@example.com"
OTHER_PASSWORD = "another password"
OTHER_ID = "22222222-2222-2222-2222-222222222222"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def signed_in(gateway: BackendGateway, email: str, password: str) -> BackendGateway:
    """Session-scoped gateway for an already registered user."""
    scoped = gateway.for_session(None)
    result = await scoped.sign_in(email, password)
    assert result.ok, result.error
    return scoped
