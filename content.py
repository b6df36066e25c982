"""
Content read/write service.

Public reads never fail: they fall back to compiled-in defaults (or empty
lists) and return a short notice instead of backend text. Admin reads and
writes return the gateway Result as-is so the operator sees what went wrong.
"""

import asyncio
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from cache import MISSING, TTLCache
from database import BackendGateway, ErrorKind, Query, Result
from defaults import default_site_settings
from schemas import (
    AnalyticsEventIn,
    AnalyticsEventKind,
    AnalyticsSummary,
    CheckItem,
    HealthReport,
    HomeContent,
    PathCount,
    Project,
    ProjectInput,
    ProjectSummary,
    SeedSummary,
    SiteSettings,
    SiteSettingsUpdate,
    WritingCategory,
    WritingCategoryInput,
    WritingItem,
    WritingItemInput,
    WritingPage,
    dump_config,
)
from security import INPUT_LIMITS, safe_slug, safe_text
from validators import (
    category_from_row,
    project_from_row,
    project_summary_from_row,
    settings_from_row,
    writing_item_from_row,
)

logger = logging.getLogger("portfolio.content")

SETTINGS_KEY = "site_settings"
CATEGORIES_KEY = "writing_categories"
PROJECTS_PREFIX = "published_projects:"

PUBLIC_NOTICE = "Some content is temporarily unavailable."
SUMMARY_COLUMNS = "id,slug,title,summary,tags,status,featured,updated_at"
HEALTH_TABLES = ("site_settings", "public_site_settings", "projects", "writing_categories", "writing_items")
DEFAULT_PREVIEW_LIMIT = 3
TOP_N = 5


def _projects_key(limit: Optional[int]) -> str:
    return f"{PROJECTS_PREFIX}{'all' if limit is None else limit}"


def _failed(result: Result) -> Result:
    return Result(error=result.error, kind=result.kind)


class ContentService:
    def __init__(
        self,
        gateway: BackendGateway,
        cache: Optional[TTLCache] = None,
        settings_ttl: float = 60.0,
        projects_ttl: float = 30.0,
    ):
        self.gateway = gateway
        self.cache = cache if cache is not None else TTLCache()
        self.settings_ttl = settings_ttl
        self.projects_ttl = projects_ttl

    def with_gateway(self, gateway: BackendGateway) -> "ContentService":
        """Same cache and TTLs, acting through another (session-scoped) gateway."""
        return ContentService(gateway, self.cache, self.settings_ttl, self.projects_ttl)

    # =============
    # Public reads
    # =============
    async def get_site_settings(self) -> Result[SiteSettings]:
        cached = self.cache.get(SETTINGS_KEY)
        if cached is not MISSING:
            return Result.success(cached)
        version = self.cache.version()
        result = await self.gateway.select_one(Query("public_site_settings"))
        if not result.ok:
            return _failed(result)
        if result.data is None:
            return Result.failure("Site settings not found", ErrorKind.NOT_FOUND)
        settings = settings_from_row(result.data)
        self.cache.set(SETTINGS_KEY, settings, self.settings_ttl, version=version)
        return Result.success(settings)

    async def get_published_projects(self, limit: Optional[int] = None, tag: Optional[str] = None) -> Result[List[ProjectSummary]]:
        if tag:
            # filtered views come from the cached unfiltered list
            result = await self.get_published_projects()
            if not result.ok:
                return result
            wanted = tag.strip().lower()
            tagged = [p for p in result.data if wanted in (t.lower() for t in p.tags)]
            return Result.success(tagged[:limit] if limit is not None else tagged)

        key = _projects_key(limit)
        cached = self.cache.get(key)
        if cached is not MISSING:
            return Result.success(cached)
        query = (
            Query("projects", columns=SUMMARY_COLUMNS)
            .eq("published", True)
            .order_by("featured", descending=True)
            .order_by("updated_at", descending=True)
            .take(limit)
        )
        version = self.cache.version()
        result = await self.gateway.select(query)
        if not result.ok:
            return _failed(result)
        projects = [project_summary_from_row(r) for r in result.data]
        self.cache.set(key, projects, self.projects_ttl, version=version)
        return Result.success(projects)

    async def get_project_by_slug(self, slug: str) -> Result[Project]:
        slug = safe_slug(slug)
        if not slug:
            return Result.failure("Project not found", ErrorKind.NOT_FOUND)
        result = await self.gateway.select_one(Query("projects").eq("slug", slug).eq("published", True))
        if not result.ok:
            return _failed(result)
        if result.data is None:
            return Result.failure("Project not found", ErrorKind.NOT_FOUND)
        return Result.success(project_from_row(result.data))

    async def get_writing_categories(self) -> Result[List[WritingCategory]]:
        cached = self.cache.get(CATEGORIES_KEY)
        if cached is not MISSING:
            return Result.success(cached)
        version = self.cache.version()
        result = await self.gateway.select(Query("writing_categories").eq("enabled", True).order_by("order_index"))
        if not result.ok:
            return _failed(result)
        categories = [category_from_row(r) for r in result.data]
        self.cache.set(CATEGORIES_KEY, categories, self.settings_ttl, version=version)
        return Result.success(categories)

    async def get_writing_items(self, featured_only: bool = False, limit: Optional[int] = None) -> Result[List[WritingItem]]:
        query = Query("writing_items").eq("enabled", True)
        if featured_only:
            query = query.eq("featured", True)
        query = query.order_by("featured", descending=True).order_by("order_index")

        categories, items = await asyncio.gather(self.get_writing_categories(), self.gateway.select(query))
        if not categories.ok:
            return _failed(categories)
        if not items.ok:
            return _failed(items)

        names = {c.id: c.name for c in categories.data if c.enabled}
        visible = [
            writing_item_from_row(r, names.get(r.get("category_id")))
            for r in items.data
            if r.get("enabled") is not False and (r.get("category_id") is None or r.get("category_id") in names)
        ]
        return Result.success(visible[:limit] if limit is not None else visible)

    async def track_event(self, event: AnalyticsEventIn, sid: str) -> Result[None]:
        row = {
            "event": event.event.value,
            "path": safe_text(event.path, INPUT_LIMITS["url"]) or "/",
            "ref": safe_text(event.ref, INPUT_LIMITS["url"]) or None,
            "sid": safe_text(sid, 100),
        }
        result = await self.gateway.insert("analytics_events", row, returning=False)
        if not result.ok:
            return _failed(result)
        return Result.success()

    # -----------------
    # Fallback wrappers
    # -----------------
    async def public_site_settings(self) -> Tuple[SiteSettings, Optional[str]]:
        result = await self.get_site_settings()
        if result.ok:
            return result.data, None
        logger.warning("Serving default site settings: %s", result.error)
        return default_site_settings(), PUBLIC_NOTICE

    async def public_projects(self, limit: Optional[int] = None, tag: Optional[str] = None) -> Tuple[List[ProjectSummary], Optional[str]]:
        result = await self.get_published_projects(limit, tag)
        if result.ok:
            return result.data, None
        logger.warning("Serving empty project list: %s", result.error)
        return [], PUBLIC_NOTICE

    async def public_writing(self, featured_only: bool = False, limit: Optional[int] = None) -> Tuple[WritingPage, Optional[str]]:
        categories, items = await asyncio.gather(
            self.get_writing_categories(),
            self.get_writing_items(featured_only, limit),
        )
        if categories.ok and items.ok:
            return WritingPage(categories=categories.data, items=items.data), None
        logger.warning("Serving partial writing page: %s", categories.error or items.error)
        return WritingPage(
            categories=categories.data if categories.ok else [],
            items=items.data if items.ok else [],
        ), PUBLIC_NOTICE

    async def get_home_content(self) -> HomeContent:
        (settings, settings_notice), (projects, projects_notice), (writing, writing_notice) = await asyncio.gather(
            self.public_site_settings(),
            self.public_projects(),
            self.public_writing(),
        )
        home = settings.home_sections
        return HomeContent(
            settings=settings,
            featured_projects=self._preview(home.section("featured_projects"), projects),
            writing=self._preview(home.section("selected_writing_preview"), writing.items),
            notice=settings_notice or projects_notice or writing_notice,
        )

    @staticmethod
    def _preview(section, entries: List[Any]) -> List[Any]:
        if section is None or not section.visible:
            return []
        limit = section.limit if section.limit is not None else DEFAULT_PREVIEW_LIMIT
        return entries[:limit]

    # ===========
    # Admin side
    # ===========
    async def admin_get_site_settings(self) -> Result[SiteSettings]:
        result = await self.gateway.select_one(Query("site_settings"))
        if not result.ok:
            return _failed(result)
        if result.data is None:
            return Result.failure("Site settings row not found. Run the seed first.", ErrorKind.NOT_FOUND)
        return Result.success(settings_from_row(result.data))

    async def admin_update_site_settings(
        self, update: SiteSettingsUpdate, expected_updated_at: Optional[str] = None
    ) -> Result[SiteSettings]:
        current = await self.admin_get_site_settings()
        if not current.ok:
            return current
        expected = expected_updated_at or update.expected_updated_at
        if expected and current.data.updated_at != expected:
            return Result.failure("Settings were changed elsewhere. Reload and try again.", ErrorKind.CONFLICT)

        values = {
            column: dump_config(getattr(update, column))
            for column in ("nav_config", "home_sections", "theme", "seo", "pages")
            if getattr(update, column) is not None
        }
        if not values:
            return current

        query = Query("site_settings").eq("id", current.data.id)
        if expected:
            query = query.eq("updated_at", expected)
        result = await self.gateway.update(query, values)
        self.cache.invalidate(SETTINGS_KEY)
        if result.kind == ErrorKind.NOT_FOUND and expected:
            return Result.failure("Settings were changed elsewhere. Reload and try again.", ErrorKind.CONFLICT)
        if not result.ok:
            return _failed(result)
        logger.info("Site settings updated (%s)", ", ".join(sorted(values)))
        return Result.success(settings_from_row(result.data))

    async def admin_list_projects(self) -> Result[List[Project]]:
        query = Query("projects").order_by("featured", descending=True).order_by("updated_at", descending=True)
        result = await self.gateway.select(query)
        if not result.ok:
            return _failed(result)
        return Result.success([project_from_row(r) for r in result.data])

    async def admin_get_project(self, project_id: str) -> Result[Project]:
        result = await self.gateway.select_one(Query("projects").eq("id", project_id))
        if not result.ok:
            return _failed(result)
        if result.data is None:
            return Result.failure("Project not found", ErrorKind.NOT_FOUND)
        return Result.success(project_from_row(result.data))

    async def admin_upsert_project(self, project: ProjectInput) -> Result[Project]:
        slug = safe_slug(project.slug, INPUT_LIMITS["slug"])
        row = {
            "slug": slug,
            "title": safe_text(project.title, INPUT_LIMITS["title"]),
            "summary": safe_text(project.summary, INPUT_LIMITS["summary"]),
            "tags": [t for t in (safe_text(t, INPUT_LIMITS["tag_length"]) for t in project.tags) if t],
            "status": project.status.value,
            "detail_level": project.detail_level.value,
            "featured": project.featured,
            "published": project.published,
            "sections_config": dump_config(project.sections_config),
            "content": dump_config(project.content),
            "media": dump_config(project.media),
            "metrics": [m for m in project.metrics if m],
            "decision_log": dump_config(project.decision_log),
        }

        if project.id:
            existing = await self.admin_get_project(project.id)
            if not existing.ok:
                return existing
            if existing.data.published and existing.data.slug != slug:
                return Result.failure("The slug of a published project cannot change", ErrorKind.CONFLICT)
            result = await self.gateway.update(Query("projects").eq("id", project.id), row)
        else:
            result = await self.gateway.insert("projects", row)

        self.cache.invalidate(PROJECTS_PREFIX)
        if not result.ok:
            if result.kind == ErrorKind.CONFLICT:
                return Result.failure(f"A project with slug '{slug}' already exists", ErrorKind.CONFLICT)
            return _failed(result)
        logger.info("Project %s saved", slug)
        return Result.success(project_from_row(result.data))

    async def admin_delete_project(self, project_id: str) -> Result[None]:
        result = await self.gateway.delete(Query("projects").eq("id", project_id))
        self.cache.invalidate(PROJECTS_PREFIX)
        return result

    async def admin_list_writing_categories(self) -> Result[List[WritingCategory]]:
        result = await self.gateway.select(Query("writing_categories").order_by("order_index"))
        if not result.ok:
            return _failed(result)
        return Result.success([category_from_row(r) for r in result.data])

    async def admin_upsert_writing_category(self, category: WritingCategoryInput) -> Result[WritingCategory]:
        row = {
            "name": safe_text(category.name, INPUT_LIMITS["name"]),
            "order_index": category.order_index,
            "enabled": category.enabled,
        }
        if category.id:
            result = await self.gateway.update(Query("writing_categories").eq("id", category.id), row)
        else:
            result = await self.gateway.insert("writing_categories", row)
        self.cache.invalidate(CATEGORIES_KEY)
        if not result.ok:
            return _failed(result)
        return Result.success(category_from_row(result.data))

    async def admin_delete_writing_category(self, category_id: str) -> Result[None]:
        result = await self.gateway.delete(Query("writing_categories").eq("id", category_id))
        self.cache.invalidate(CATEGORIES_KEY)
        return result

    async def admin_list_writing_items(self) -> Result[List[WritingItem]]:
        categories, items = await asyncio.gather(
            self.admin_list_writing_categories(),
            self.gateway.select(Query("writing_items").order_by("featured", descending=True).order_by("order_index")),
        )
        if not categories.ok:
            return categories
        if not items.ok:
            return _failed(items)
        names = {c.id: c.name for c in categories.data}
        return Result.success([writing_item_from_row(r, names.get(r.get("category_id"))) for r in items.data])

    async def admin_upsert_writing_item(self, item: WritingItemInput) -> Result[WritingItem]:
        row = {
            "category_id": item.category_id or None,
            "title": safe_text(item.title, INPUT_LIMITS["title"]),
            "url": safe_text(item.url, INPUT_LIMITS["url"]),
            "platform_label": safe_text(item.platform_label, INPUT_LIMITS["label"]),
            "language": item.language.value,
            "featured": item.featured,
            "enabled": item.enabled,
            "order_index": item.order_index,
            "why_this_matters": safe_text(item.why_this_matters, INPUT_LIMITS["description"]) or None,
            "show_why": item.show_why,
        }
        if item.id:
            result = await self.gateway.update(Query("writing_items").eq("id", item.id), row)
        else:
            result = await self.gateway.insert("writing_items", row)
        self.cache.invalidate("writing_")
        if not result.ok:
            return _failed(result)
        return Result.success(writing_item_from_row(result.data))

    async def admin_delete_writing_item(self, item_id: str) -> Result[None]:
        result = await self.gateway.delete(Query("writing_items").eq("id", item_id))
        self.cache.invalidate("writing_")
        return result

    # ---------
    # Analytics
    # ---------
    async def admin_analytics(self, days: int = 30) -> Result[AnalyticsSummary]:
        since = (datetime.now(timezone.utc) - timedelta(days=max(days, 1))).isoformat()
        query = Query("analytics_events", columns="event,path,sid,ts").gte("ts", since).order_by("ts", descending=True)
        result = await self.gateway.select(query)
        if not result.ok:
            return _failed(result)

        events = result.data
        kinds = Counter(e.get("event") for e in events)
        pages = Counter(e.get("path") for e in events if e.get("event") == AnalyticsEventKind.PAGE_VIEW.value)
        projects = Counter(
            e.get("path") for e in events
            if e.get("event") in (AnalyticsEventKind.PAGE_VIEW.value, AnalyticsEventKind.PROJECT_VIEW.value)
            and str(e.get("path") or "").startswith("/projects/")
        )
        return Result.success(AnalyticsSummary(
            since=since,
            total_visitors=len({e.get("sid") for e in events if e.get("sid")}),
            page_views=kinds[AnalyticsEventKind.PAGE_VIEW.value],
            resume_downloads=kinds[AnalyticsEventKind.RESUME_DOWNLOAD.value],
            contact_clicks=kinds[AnalyticsEventKind.CONTACT_CLICK.value],
            writing_clicks=kinds[AnalyticsEventKind.WRITING_CLICK.value],
            top_pages=[PathCount(path=p, count=c) for p, c in pages.most_common(TOP_N)],
            top_projects=[PathCount(path=p, count=c) for p, c in projects.most_common(TOP_N)],
        ))

    # ------
    # Health
    # ------
    async def admin_health_check(self) -> HealthReport:
        report = HealthReport(timestamp=datetime.now(timezone.utc))
        if not self.gateway.env_ready:
            report.env = CheckItem(ok=False, message="Backend URL or key missing")
            return report
        report.env = CheckItem(ok=True, message="Backend configured")

        table_results = await asyncio.gather(
            *(self.gateway.select(Query(t, columns="id").take(1)) for t in HEALTH_TABLES)
        )
        session, admin = await asyncio.gather(self.gateway.get_session(), self.gateway.rpc("is_admin"))

        for table, result in zip(HEALTH_TABLES, table_results):
            # a policy rejection still proves the relation exists
            ok = result.ok or result.kind == ErrorKind.PERMISSION_DENIED
            report.tables[table] = CheckItem(ok=ok, message="Accessible" if result.ok else result.error)
        missing = [t for t, c in report.tables.items() if not c.ok]
        report.schema_ = CheckItem(
            ok=not missing,
            message="All tables present" if not missing else f"Unavailable: {', '.join(missing)}",
        )

        if session.ok and session.data is not None:
            report.auth = CheckItem(ok=True, message=f"Signed in as {session.data.user.email or session.data.user.id}")
        else:
            report.auth = CheckItem(ok=False, message="No active session")

        if admin.ok:
            report.rls = CheckItem(ok=True, message="is_admin() callable" + (" (admin)" if admin.data else ""))
        else:
            report.rls = CheckItem(ok=False, message=admin.error)
        return report

    async def seed_demo_content(self) -> Result[SeedSummary]:
        result = await self.gateway.rpc("admin_seed_demo")
        self.cache.invalidate()
        if not result.ok:
            return _failed(result)
        data: Dict[str, Any] = result.data if isinstance(result.data, dict) else {}
        if not data.get("success"):
            error = data.get("error") or "Seeding failed"
            kind = ErrorKind.PERMISSION_DENIED if error in ("Not authenticated", "Admin access required") else ErrorKind.BACKEND
            return Result.failure(error, kind)
        logger.info("Demo content seeded: %s", {k: v for k, v in data.items() if k != "success"})
        return Result.success(SeedSummary(
            settings_updated=bool(data.get("settings_updated")),
            projects_inserted=int(data.get("projects_inserted") or 0),
            categories_inserted=int(data.get("categories_inserted") or 0),
            items_inserted=int(data.get("items_inserted") or 0),
        ))
