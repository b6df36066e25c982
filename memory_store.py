"""
In-process backend for local/demo mode and tests.

Mirrors the hosted schema closely enough for the service to run unchanged:
the same tables and public view, the row-level rules (public reads see only
published/enabled rows, writes need the admin), the same remote procedures,
and password sign-in issuing signed JWTs.
"""

import asyncio
import copy
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from database import Backend, BackendError, Query
from defaults import (
    DEFAULT_SETTINGS_ROW,
    DEMO_CATEGORIES,
    DEMO_PROJECTS,
    DEMO_WRITING_ITEMS,
    EMPTY_NAV_CONFIG,
)
from schemas import UNCLAIMED_ADMIN_ID, AnalyticsEventKind, AuthUser, Session
from security import (
    create_access_token,
    decode_access_token,
    hash_bootstrap_token,
    pwd_context,
    verify_bootstrap_token,
)

logger = logging.getLogger("portfolio.memory")

TABLES = ("site_settings", "projects", "writing_categories", "writing_items", "analytics_events")
PUBLIC_SETTINGS_VIEW = "public_site_settings"
SESSION_LIFETIME = timedelta(hours=1)

# Column defaults applied on insert
COLUMN_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "site_settings": {
        "admin_user_id": UNCLAIMED_ADMIN_ID,
        "nav_config": EMPTY_NAV_CONFIG,
        "home_sections": {"sections": []},
        "theme": {"mode": "system", "accentColor": "#135BEC", "font": "inter"},
        "seo": {"title": "Portfolio", "description": ""},
        "pages": {},
        "bootstrap_token_hash": None,
    },
    "projects": {
        "summary": "",
        "tags": [],
        "status": "PUBLIC",
        "detail_level": "STANDARD",
        "featured": False,
        "published": False,
        "sections_config": {},
        "content": {},
        "media": [],
        "metrics": [],
        "decision_log": [],
    },
    "writing_categories": {"order_index": 0, "enabled": True},
    "writing_items": {
        "category_id": None,
        "platform_label": "",
        "language": "AUTO",
        "featured": False,
        "enabled": True,
        "order_index": 0,
        "why_this_matters": None,
        "show_why": False,
    },
    "analytics_events": {"ref": None},
}

HIDDEN_COLUMNS = ("bootstrap_token_hash",)
STAMPED_TABLES = ("site_settings", "projects")
EVENT_KINDS = tuple(kind.value for kind in AnalyticsEventKind)


def _permission_denied(table: str) -> BackendError:
    return BackendError(
        f'new row violates row-level security policy for table "{table}"', code="42501", status=403
    )


def _matches(row: Dict[str, Any], query: Query) -> bool:
    for column, op, value in query.filters:
        current = row.get(column)
        if op == "eq" and current != value:
            return False
        if op == "neq" and current == value:
            return False
        if op in ("gte", "lte"):
            if current is None or value is None:
                return False
            if op == "gte" and not current >= value:
                return False
            if op == "lte" and not current <= value:
                return False
    return True


def _sort(rows: List[Dict[str, Any]], order) -> List[Dict[str, Any]]:
    # stable sorts applied last key first; nulls sort last either way
    for column, descending in reversed(order):
        present = [r for r in rows if r.get(column) is not None]
        missing = [r for r in rows if r.get(column) is None]
        present.sort(key=lambda r: r[column], reverse=descending)
        rows = present + missing
    return rows


def _project(row: Dict[str, Any], columns: str) -> Dict[str, Any]:
    if columns.strip() == "*":
        return dict(row)
    wanted = [c.strip() for c in columns.split(",") if c.strip()]
    return {c: row.get(c) for c in wanted}


class MemoryBackend(Backend):
    def __init__(
        self,
        secret: str = "memory-backend-secret",
        bootstrap_token: Optional[str] = None,
        settings_row: bool = True,
        schema_ready: bool = True,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.secret = secret
        self.schema_ready = schema_ready
        self.reachable = True
        self._clock = clock
        self._last_stamp: Optional[datetime] = None
        self._tables: Dict[str, List[Dict[str, Any]]] = {name: [] for name in TABLES}
        self._users: Dict[str, Dict[str, Any]] = {}
        self._revoked: set = set()
        self._event_ids = 0
        if settings_row:
            self.seed_settings(bootstrap_token=bootstrap_token)

    # ----------
    # Sync setup
    # ----------
    def add_user(self, email: str, password: str, user_id: Optional[str] = None) -> str:
        user_id = user_id or str(uuid.uuid4())
        self._users[email.lower()] = {
            "id": user_id,
            "email": email,
            "password_hash": pwd_context.hash(password),
        }
        return user_id

    def seed_settings(self, row: Optional[Dict[str, Any]] = None, bootstrap_token: Optional[str] = None) -> Dict[str, Any]:
        values = dict(row or {})
        if bootstrap_token:
            values["bootstrap_token_hash"] = hash_bootstrap_token(bootstrap_token)
        self._tables["site_settings"] = []
        return self._store("site_settings", values)

    def add_rows(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert rows without row-level checks."""
        return [self._store(table, dict(r)) for r in rows]

    def set_admin(self, user_id: str) -> None:
        settings = self._settings()
        if settings is None:
            raise ValueError("No site_settings row")
        settings["admin_user_id"] = user_id

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._tables[table])

    # -------
    # Helpers
    # -------
    def _stamp(self) -> str:
        now = self._clock()
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + timedelta(microseconds=1)
        self._last_stamp = now
        return now.isoformat()

    def _store(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        row = copy.deepcopy(COLUMN_DEFAULTS.get(table, {}))
        row.update(copy.deepcopy(values))
        if table == "analytics_events":
            self._event_ids += 1
            row["id"] = self._event_ids
            row.setdefault("ts", self._stamp())
        else:
            row.setdefault("id", str(uuid.uuid4()))
        if table in STAMPED_TABLES:
            row["updated_at"] = self._stamp()
        self._tables[table].append(row)
        return row

    def _settings(self) -> Optional[Dict[str, Any]]:
        rows = self._tables["site_settings"]
        return rows[0] if rows else None

    def _available(self) -> None:
        if not self.reachable:
            raise ConnectionError("Connection refused")

    def _table(self, name: str) -> None:
        self._available()
        known = name in TABLES or name == PUBLIC_SETTINGS_VIEW
        if not self.schema_ready or not known:
            raise BackendError(f'relation "public.{name}" does not exist', code="42P01", status=404)

    def _caller(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        claims = decode_access_token(token, self.secret)
        if claims is None or token in self._revoked:
            raise BackendError("JWT expired", code="PGRST301", status=401)
        return claims.get("sub")

    def _is_admin(self, caller: Optional[str]) -> bool:
        settings = self._settings()
        if caller is None or settings is None:
            return False
        admin = settings.get("admin_user_id")
        return bool(admin) and admin != UNCLAIMED_ADMIN_ID and admin == caller

    def _visible(self, table: str, caller: Optional[str]) -> List[Dict[str, Any]]:
        if table == PUBLIC_SETTINGS_VIEW:
            return [
                {k: v for k, v in r.items() if k not in HIDDEN_COLUMNS + ("admin_user_id",)}
                for r in self._tables["site_settings"]
            ]
        rows = self._tables[table]
        if table == "site_settings":
            return [{k: v for k, v in r.items() if k not in HIDDEN_COLUMNS} for r in rows]
        if self._is_admin(caller):
            return rows
        if table == "projects":
            return [r for r in rows if r.get("published") is True]
        if table == "writing_categories":
            return [r for r in rows if r.get("enabled") is not False]
        if table == "writing_items":
            enabled = {c["id"] for c in self._tables["writing_categories"] if c.get("enabled") is not False}
            return [
                r for r in rows
                if r.get("enabled") is not False and (r.get("category_id") is None or r.get("category_id") in enabled)
            ]
        return []

    def _require_admin(self, table: str, token: Optional[str]) -> str:
        caller = self._caller(token)
        if not self._is_admin(caller):
            raise _permission_denied(table)
        return caller

    def _check_unique(self, table: str, row: Dict[str, Any], ignore: Optional[Dict[str, Any]] = None) -> None:
        for existing in self._tables[table]:
            if existing is ignore:
                continue
            if existing.get("id") == row.get("id"):
                raise BackendError(f'duplicate key value violates unique constraint "{table}_pkey"', code="23505", status=409)
            if table == "projects" and existing.get("slug") == row.get("slug"):
                raise BackendError('duplicate key value violates unique constraint "projects_slug_key"', code="23505", status=409)

    # ------------
    # Backend API
    # ------------
    async def select(self, query: Query, token: Optional[str]) -> List[Dict[str, Any]]:
        self._table(query.table)
        caller = self._caller(token)
        rows = [r for r in self._visible(query.table, caller) if _matches(r, query)]
        rows = _sort(rows, query.order)
        if query.limit is not None:
            rows = rows[: query.limit]
        return [copy.deepcopy(_project(r, query.columns)) for r in rows]

    async def insert(
        self, table: str, row: Dict[str, Any], token: Optional[str], returning: bool = True
    ) -> Dict[str, Any]:
        self._table(table)
        if table == PUBLIC_SETTINGS_VIEW:
            raise _permission_denied(table)
        if table == "analytics_events":
            self._caller(token)
            if row.get("event") not in EVENT_KINDS:
                raise _permission_denied(table)
        else:
            self._require_admin(table, token)
        if "id" in row or table == "projects":
            probe = dict(row)
            probe.setdefault("id", None)
            self._check_unique(table, probe)
        return copy.deepcopy(self._store(table, row))

    async def update(self, query: Query, values: Dict[str, Any], token: Optional[str]) -> List[Dict[str, Any]]:
        self._table(query.table)
        if query.table in (PUBLIC_SETTINGS_VIEW, "analytics_events"):
            raise _permission_denied(query.table)
        self._require_admin(query.table, token)
        changes = {k: copy.deepcopy(v) for k, v in values.items() if k != "id"}
        updated = []
        for row in self._tables[query.table]:
            if not _matches(row, query):
                continue
            candidate = {**row, **changes}
            self._check_unique(query.table, candidate, ignore=row)
            row.update(changes)
            if query.table in STAMPED_TABLES:
                row["updated_at"] = self._stamp()
            updated.append(copy.deepcopy({k: v for k, v in row.items() if k not in HIDDEN_COLUMNS}))
        return updated

    async def delete(self, query: Query, token: Optional[str]) -> None:
        self._table(query.table)
        if query.table == PUBLIC_SETTINGS_VIEW:
            raise _permission_denied(query.table)
        self._require_admin(query.table, token)
        doomed = [r for r in self._tables[query.table] if _matches(r, query)]
        self._tables[query.table] = [r for r in self._tables[query.table] if r not in doomed]
        if query.table == "writing_categories":
            gone = {r["id"] for r in doomed}
            for item in self._tables["writing_items"]:
                if item.get("category_id") in gone:
                    item["category_id"] = None

    async def rpc(self, name: str, params: Dict[str, Any], token: Optional[str]) -> Any:
        self._available()
        handler = getattr(self, f"_rpc_{name}", None)
        if not self.schema_ready or handler is None:
            raise BackendError(
                f"Could not find the function public.{name} in the schema cache", code="PGRST202", status=404
            )
        return await handler(self._caller(token), params or {})

    async def sign_in(self, email: str, password: str) -> Session:
        self._available()
        user = self._users.get((email or "").lower())
        if user is None or not pwd_context.verify(password, user["password_hash"]):
            raise BackendError("Invalid login credentials", code="invalid_credentials", status=400)
        token = create_access_token(
            {"sub": user["id"], "email": user["email"], "role": "authenticated", "jti": str(uuid.uuid4())},
            self.secret,
            SESSION_LIFETIME,
        )
        claims = decode_access_token(token, self.secret)
        logger.info("Signed in %s", user["email"])
        return Session(
            access_token=token,
            refresh_token=str(uuid.uuid4()),
            expires_at=claims["exp"],
            user=AuthUser(id=user["id"], email=user["email"]),
        )

    async def sign_out(self, token: str) -> None:
        self._available()
        self._caller(token)
        self._revoked.add(token)

    # ------------------
    # Remote procedures
    # ------------------
    async def _rpc_is_admin(self, caller: Optional[str], params: Dict[str, Any]) -> bool:
        return self._is_admin(caller)

    async def _rpc_admin_bootstrap_status(self, caller: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        settings = self._settings()
        admin = settings.get("admin_user_id") if settings else None
        return {
            "settings_present": settings is not None,
            "bootstrapped": bool(admin) and admin != UNCLAIMED_ADMIN_ID,
            "token_required": bool(settings and settings.get("bootstrap_token_hash")),
        }

    def _assign_admin(self, caller: Optional[str], token_check: Callable[[Dict[str, Any]], Optional[str]]) -> Dict[str, Any]:
        # check-and-set with no suspension point: first claimant wins
        if caller is None:
            return {"success": False, "error": "Not authenticated"}
        settings = self._settings()
        if settings is None:
            return {"success": False, "error": "No site_settings row. Run seed SQL first."}
        admin = settings.get("admin_user_id")
        if admin and admin != UNCLAIMED_ADMIN_ID:
            return {"success": False, "error": "Admin already claimed"}
        refusal = token_check(settings)
        if refusal:
            return {"success": False, "error": refusal}
        settings["admin_user_id"] = caller
        settings["updated_at"] = self._stamp()
        logger.info("Admin assigned to %s", caller)
        return {"success": True, "admin_user_id": caller}

    async def _rpc_claim_admin(self, caller: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        await asyncio.sleep(0)
        return self._assign_admin(
            caller,
            lambda s: "Bootstrap token required" if s.get("bootstrap_token_hash") else None,
        )

    async def _rpc_bootstrap_set_admin(self, caller: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        await asyncio.sleep(0)
        token = params.get("token") or ""

        def check(settings: Dict[str, Any]) -> Optional[str]:
            hashed = settings.get("bootstrap_token_hash")
            if not hashed:
                return "Bootstrap token not configured"
            if not verify_bootstrap_token(token, hashed):
                return "Invalid bootstrap token"
            return None

        return self._assign_admin(caller, check)

    async def _rpc_admin_seed_demo(self, caller: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        if caller is None:
            return {"success": False, "error": "Not authenticated"}
        if not self._is_admin(caller):
            return {"success": False, "error": "Admin access required"}

        settings_updated = False
        settings = self._settings()
        if settings is not None and not (settings.get("nav_config") or {}).get("links"):
            for column in ("nav_config", "home_sections", "theme", "seo", "pages"):
                settings[column] = copy.deepcopy(DEFAULT_SETTINGS_ROW[column])
            settings["updated_at"] = self._stamp()
            settings_updated = True

        slugs = {p.get("slug") for p in self._tables["projects"]}
        projects = [p for p in DEMO_PROJECTS if p["slug"] not in slugs]
        category_ids = {c.get("id") for c in self._tables["writing_categories"]}
        categories = [c for c in DEMO_CATEGORIES if c["id"] not in category_ids]
        item_ids = {i.get("id") for i in self._tables["writing_items"]}
        items = [i for i in DEMO_WRITING_ITEMS if i["id"] not in item_ids]

        self.add_rows("projects", projects)
        self.add_rows("writing_categories", categories)
        self.add_rows("writing_items", items)
        return {
            "success": True,
            "message": "Demo content seeded",
            "settings_updated": settings_updated,
            "projects_inserted": len(projects),
            "categories_inserted": len(categories),
            "items_inserted": len(items),
        }
