import logging
import uuid
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Cookie, Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from admin_gate import AdminGate, GateState
from config import CONFIG_MISSING_MESSAGE, AppConfig
from content import ContentService
from database import Backend, BackendGateway, ErrorKind, Result, create_backend
from logging_config import setup_logging
from schemas import (
    ActionResult,
    AnalyticsEventIn,
    AnalyticsSummary,
    BootstrapRequest,
    GateStatus,
    HealthReport,
    HomeContent,
    LoginRequest,
    Project,
    ProjectInput,
    ProjectSummary,
    SeedSummary,
    SiteSettings,
    SiteSettingsUpdate,
    Token,
    WritingCategory,
    WritingCategoryInput,
    WritingItem,
    WritingItemInput,
    WritingPage,
)
from security import (
    bearer_token,
    session_from_token,
    validate_category_input,
    validate_project_input,
    validate_settings_update,
    validate_writing_item_input,
)

logger = logging.getLogger("portfolio.api")

SID_COOKIE = "analytics_sid"
SID_MAX_AGE = 60 * 60 * 24 * 365

ERROR_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.CONFIG_MISSING: 503,
    ErrorKind.SCHEMA_MISSING: 503,
    ErrorKind.CONFLICT: 409,
    ErrorKind.BACKEND: 502,
}

# ===============
# Response DTOs
# ===============
class SettingsResponse(BaseModel):
    settings: SiteSettings
    notice: Optional[str] = None


class ProjectListResponse(BaseModel):
    projects: List[ProjectSummary] = []
    notice: Optional[str] = None


class WritingResponse(WritingPage):
    notice: Optional[str] = None


class AssignResponse(ActionResult):
    state: str


# =========
# Utilities
# =========

def unwrap(result: Result):
    """Admin side: hand back the data or raise with the sanitized backend text."""
    if result.ok:
        return result.data
    raise HTTPException(status_code=ERROR_STATUS.get(result.kind, 502), detail=result.error)


def reject_invalid(errors) -> None:
    if errors:
        raise HTTPException(status_code=422, detail=[e.model_dump() for e in errors])


def get_content(request: Request) -> ContentService:
    return request.app.state.content


async def get_admin_gate(request: Request, authorization: Optional[str] = Header(None)) -> AdminGate:
    config: AppConfig = request.app.state.config
    gateway: BackendGateway = request.app.state.gateway
    session = session_from_token(bearer_token(authorization), config.jwt_secret)
    gate = AdminGate(gateway.for_session(session))
    await gate.refresh()
    return gate


def require_session(gate: AdminGate = Depends(get_admin_gate)) -> AdminGate:
    if gate.state in (GateState.ENV_MISSING, GateState.SCHEMA_MISSING):
        raise HTTPException(status_code=503, detail=gate.message)
    if gate.session is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return gate


def require_admin(gate: AdminGate = Depends(get_admin_gate)) -> AdminGate:
    if gate.authorized:
        return gate
    if gate.state in (GateState.ENV_MISSING, GateState.SCHEMA_MISSING):
        raise HTTPException(status_code=503, detail=gate.message)
    if gate.state == GateState.UNAUTHENTICATED:
        raise HTTPException(status_code=401, detail="Not authenticated")
    raise HTTPException(status_code=403, detail=gate.message)


def get_admin_content(request: Request, gate: AdminGate = Depends(require_admin)) -> ContentService:
    return request.app.state.content.with_gateway(gate.gateway)


# ==================
# FastAPI app config
# ==================

def create_app(config: Optional[AppConfig] = None, backend: Optional[Backend] = None) -> FastAPI:
    config = config or AppConfig.from_env()
    if backend is None:
        backend = create_backend(config)
    gateway = BackendGateway(config, backend)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(config.log_level, config.log_file)
        logger.info("Portfolio API starting (backend=%s, configured=%s)", config.backend_mode, gateway.env_ready)
        yield
        if backend is not None:
            await backend.aclose()

    app = FastAPI(title="Portfolio API", lifespan=lifespan)
    app.state.config = config
    app.state.gateway = gateway
    app.state.content = ContentService(gateway, settings_ttl=config.settings_ttl, projects_ttl=config.projects_ttl)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)
    return app


# ======
# Routes
# ======

def register_routes(app: FastAPI) -> None:
    @app.get("/")
    def root():
        return {"status": "ok", "service": "portfolio-api"}

    @app.get("/test")
    async def test_backend(request: Request):
        diagnostics = await request.app.state.gateway.diagnose()
        return {
            "backend": "running",
            "mode": request.app.state.config.backend_mode,
            "env": "configured" if diagnostics.env_ready else "missing",
            "schema": "ready" if diagnostics.schema_ready else "not-available",
            "message": diagnostics.message,
        }

    # Public content
    @app.get("/api/settings", response_model=SettingsResponse)
    async def get_settings(content: ContentService = Depends(get_content)):
        settings, notice = await content.public_site_settings()
        return SettingsResponse(settings=settings, notice=notice)

    @app.get("/api/home", response_model=HomeContent)
    async def get_home(content: ContentService = Depends(get_content)):
        return await content.get_home_content()

    @app.get("/api/projects", response_model=ProjectListResponse)
    async def list_projects(
        tag: Optional[str] = None,
        limit: Optional[int] = Query(None, ge=1, le=100),
        content: ContentService = Depends(get_content),
    ):
        projects, notice = await content.public_projects(limit=limit, tag=tag)
        return ProjectListResponse(projects=projects, notice=notice)

    @app.get("/api/projects/{slug}", response_model=Project)
    async def get_project(slug: str, content: ContentService = Depends(get_content)):
        result = await content.get_project_by_slug(slug)
        if result.ok:
            return result.data
        if result.kind == ErrorKind.NOT_FOUND:
            raise HTTPException(status_code=404, detail="Not found")
        raise HTTPException(status_code=503, detail="Content temporarily unavailable")

    @app.get("/api/writing", response_model=WritingResponse)
    async def get_writing(
        featured: bool = False,
        limit: Optional[int] = Query(None, ge=1, le=100),
        content: ContentService = Depends(get_content),
    ):
        page, notice = await content.public_writing(featured_only=featured, limit=limit)
        return WritingResponse(categories=page.categories, items=page.items, notice=notice)

    @app.post("/api/events", status_code=202)
    async def track_event(
        event: AnalyticsEventIn,
        response: Response,
        analytics_sid: Optional[str] = Cookie(None),
        content: ContentService = Depends(get_content),
    ):
        sid = event.sid or analytics_sid or str(uuid.uuid4())
        if sid != analytics_sid:
            response.set_cookie(SID_COOKIE, sid, max_age=SID_MAX_AGE, httponly=True, samesite="lax")
        result = await content.track_event(event, sid)
        return {"ok": result.ok}

    # Auth
    @app.post("/api/auth/login", response_model=Token)
    async def login(data: LoginRequest, request: Request):
        gateway: BackendGateway = request.app.state.gateway
        if not gateway.env_ready:
            raise HTTPException(status_code=503, detail=CONFIG_MISSING_MESSAGE)
        if not data.email.strip() or not data.password:
            raise HTTPException(status_code=401, detail="Email and password are required")
        scoped = gateway.for_session(None)
        signed = await scoped.sign_in(data.email.strip(), data.password)
        if not signed.ok:
            # rejected credentials are 401; an unreachable or broken backend keeps its own status
            if signed.kind == ErrorKind.PERMISSION_DENIED:
                raise HTTPException(status_code=401, detail=signed.error)
            raise HTTPException(status_code=ERROR_STATUS.get(signed.kind, 502), detail=signed.error)
        gate = AdminGate(scoped)
        await gate.refresh()
        session = signed.data
        return Token(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=session.expires_at,
            user=session.user,
            state=gate.state.value,
        )

    @app.post("/api/auth/logout", response_model=ActionResult)
    async def logout(gate: AdminGate = Depends(require_session)):
        return await gate.sign_out()

    # Admin gate
    @app.get("/api/admin/state", response_model=GateStatus)
    def admin_state(gate: AdminGate = Depends(get_admin_gate)):
        return gate.status()

    @app.post("/api/admin/claim", response_model=AssignResponse)
    async def claim_admin(gate: AdminGate = Depends(require_session)):
        result = await gate.claim()
        if not result.success:
            raise HTTPException(status_code=409, detail=result.message)
        return AssignResponse(success=True, message=result.message, state=gate.state.value)

    @app.post("/api/admin/bootstrap", response_model=AssignResponse)
    async def bootstrap_admin(data: BootstrapRequest, gate: AdminGate = Depends(require_session)):
        result = await gate.bootstrap(data.token)
        if not result.success:
            raise HTTPException(status_code=409, detail=result.message)
        return AssignResponse(success=True, message=result.message, state=gate.state.value)

    @app.get("/api/admin/health", response_model=HealthReport)
    async def admin_health(request: Request, authorization: Optional[str] = Header(None)):
        config: AppConfig = request.app.state.config
        session = session_from_token(bearer_token(authorization), config.jwt_secret)
        if session is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        gateway = request.app.state.gateway.for_session(session)
        return await request.app.state.content.with_gateway(gateway).admin_health_check()

    # Admin: settings
    @app.get("/api/admin/settings", response_model=SiteSettings)
    async def admin_get_settings(content: ContentService = Depends(get_admin_content)):
        return unwrap(await content.admin_get_site_settings())

    @app.put("/api/admin/settings", response_model=SiteSettings)
    async def admin_update_settings(update: SiteSettingsUpdate, content: ContentService = Depends(get_admin_content)):
        reject_invalid(validate_settings_update(update))
        return unwrap(await content.admin_update_site_settings(update))

    # Admin: projects
    @app.get("/api/admin/projects", response_model=List[Project])
    async def admin_list_projects(content: ContentService = Depends(get_admin_content)):
        return unwrap(await content.admin_list_projects())

    @app.post("/api/admin/projects", response_model=Project, status_code=201)
    async def admin_create_project(project: ProjectInput, content: ContentService = Depends(get_admin_content)):
        reject_invalid(validate_project_input(project))
        return unwrap(await content.admin_upsert_project(project.model_copy(update={"id": None})))

    @app.get("/api/admin/projects/{project_id}", response_model=Project)
    async def admin_get_project(project_id: str, content: ContentService = Depends(get_admin_content)):
        return unwrap(await content.admin_get_project(project_id))

    @app.put("/api/admin/projects/{project_id}", response_model=Project)
    async def admin_update_project(project_id: str, project: ProjectInput, content: ContentService = Depends(get_admin_content)):
        reject_invalid(validate_project_input(project))
        return unwrap(await content.admin_upsert_project(project.model_copy(update={"id": project_id})))

    @app.delete("/api/admin/projects/{project_id}")
    async def admin_delete_project(project_id: str, content: ContentService = Depends(get_admin_content)):
        unwrap(await content.admin_delete_project(project_id))
        return {"deleted": True}

    # Admin: writing
    @app.get("/api/admin/writing/categories", response_model=List[WritingCategory])
    async def admin_list_categories(content: ContentService = Depends(get_admin_content)):
        return unwrap(await content.admin_list_writing_categories())

    @app.post("/api/admin/writing/categories", response_model=WritingCategory, status_code=201)
    async def admin_create_category(category: WritingCategoryInput, content: ContentService = Depends(get_admin_content)):
        reject_invalid(validate_category_input(category))
        return unwrap(await content.admin_upsert_writing_category(category.model_copy(update={"id": None})))

    @app.put("/api/admin/writing/categories/{category_id}", response_model=WritingCategory)
    async def admin_update_category(
        category_id: str, category: WritingCategoryInput, content: ContentService = Depends(get_admin_content)
    ):
        reject_invalid(validate_category_input(category))
        return unwrap(await content.admin_upsert_writing_category(category.model_copy(update={"id": category_id})))

    @app.delete("/api/admin/writing/categories/{category_id}")
    async def admin_delete_category(category_id: str, content: ContentService = Depends(get_admin_content)):
        unwrap(await content.admin_delete_writing_category(category_id))
        return {"deleted": True}

    @app.get("/api/admin/writing/items", response_model=List[WritingItem])
    async def admin_list_items(content: ContentService = Depends(get_admin_content)):
        return unwrap(await content.admin_list_writing_items())

    @app.post("/api/admin/writing/items", response_model=WritingItem, status_code=201)
    async def admin_create_item(item: WritingItemInput, content: ContentService = Depends(get_admin_content)):
        reject_invalid(validate_writing_item_input(item))
        return unwrap(await content.admin_upsert_writing_item(item.model_copy(update={"id": None})))

    @app.put("/api/admin/writing/items/{item_id}", response_model=WritingItem)
    async def admin_update_item(item_id: str, item: WritingItemInput, content: ContentService = Depends(get_admin_content)):
        reject_invalid(validate_writing_item_input(item))
        return unwrap(await content.admin_upsert_writing_item(item.model_copy(update={"id": item_id})))

    @app.delete("/api/admin/writing/items/{item_id}")
    async def admin_delete_item(item_id: str, content: ContentService = Depends(get_admin_content)):
        unwrap(await content.admin_delete_writing_item(item_id))
        return {"deleted": True}

    # Admin: analytics & seed
    @app.get("/api/admin/analytics", response_model=AnalyticsSummary)
    async def admin_analytics(
        days: int = Query(30, ge=1, le=365),
        content: ContentService = Depends(get_admin_content),
    ):
        return unwrap(await content.admin_analytics(days))

    @app.post("/api/admin/seed", response_model=SeedSummary)
    async def admin_seed(content: ContentService = Depends(get_admin_content)):
        return unwrap(await content.seed_demo_content())


app = create_app()
