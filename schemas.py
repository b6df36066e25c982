"""
Schemas for the Portfolio CMS

Each table model mirrors one relation in the backing store (snake_case
columns). Configuration shapes are stored as JSON with camelCase keys, so
they carry a camelCase alias generator.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UNCLAIMED_ADMIN_ID = "00000000-0000-0000-0000-000000000000"


class ConfigShape(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Enums
class ProjectStatus(str, Enum):
    PUBLIC = "PUBLIC"
    CONFIDENTIAL = "CONFIDENTIAL"
    CONCEPT = "CONCEPT"


class DetailLevel(str, Enum):
    BRIEF = "BRIEF"
    STANDARD = "STANDARD"
    DEEP = "DEEP"


class WritingLanguage(str, Enum):
    AUTO = "AUTO"
    AR = "AR"
    EN = "EN"


class ThemeMode(str, Enum):
    LIGHT = "light"
    DARK = "dark"
    SYSTEM = "system"


class AnalyticsEventKind(str, Enum):
    PAGE_VIEW = "page_view"
    RESUME_DOWNLOAD = "resume_download"
    CONTACT_CLICK = "contact_click"
    WRITING_CLICK = "writing_click"
    PROJECT_VIEW = "project_view"


FONT_OPTIONS = ("inter", "ibm-plex-serif", "system")

# ==============
# Config shapes
# ==============
class NavLink(ConfigShape):
    href: str
    label: str
    visible: bool


class NavConfig(ConfigShape):
    links: List[NavLink] = Field(default_factory=list)
    cta_button: Optional[NavLink] = None


class HomeSection(ConfigShape):
    id: str
    visible: bool
    order: int
    limit: Optional[int] = None


class HomeSectionsConfig(ConfigShape):
    sections: List[HomeSection] = Field(default_factory=list)

    def section(self, section_id: str) -> Optional[HomeSection]:
        return next((s for s in self.sections if s.id == section_id), None)


class ThemeConfig(ConfigShape):
    mode: ThemeMode = ThemeMode.SYSTEM
    accent_color: Optional[str] = None
    font: Optional[str] = None


class SEOConfig(ConfigShape):
    title: str = ""
    description: str = ""
    og_image: Optional[str] = None
    twitter_handle: Optional[str] = None
    canonical_url: Optional[str] = None
    favicon_url: Optional[str] = None


class ResumePageConfig(ConfigShape):
    enabled: bool = False
    pdf_url: Optional[str] = None
    show_copy_text: bool = True
    show_download: bool = True


class ContactPageConfig(ConfigShape):
    enabled: bool = False
    show_form: bool = False
    email: Optional[str] = None
    linkedin: Optional[str] = None
    github: Optional[str] = None
    calendar: Optional[str] = None


class WritingPageConfig(ConfigShape):
    enabled: bool = True
    auto_hide_if_empty: bool = True


class PagesConfig(ConfigShape):
    resume: ResumePageConfig = Field(default_factory=ResumePageConfig)
    contact: ContactPageConfig = Field(default_factory=ContactPageConfig)
    writing: WritingPageConfig = Field(default_factory=WritingPageConfig)
    methodology: List[str] = Field(default_factory=list)


class ProjectSectionsConfig(ConfigShape):
    show_overview: bool = True
    show_challenge: bool = True
    show_approach: bool = True
    show_outcome: bool = True
    show_images: bool = True
    max_images: int = 3


class ProjectLinks(ConfigShape):
    live: Optional[str] = None
    github: Optional[str] = None


class ProjectContent(ConfigShape):
    overview: Optional[str] = None
    challenge: Optional[str] = None
    approach: Optional[str] = None
    outcome: Optional[str] = None
    note: Optional[str] = None
    links: ProjectLinks = Field(default_factory=ProjectLinks)


class MediaItem(ConfigShape):
    type: str  # image | video
    url: str
    caption: Optional[str] = None


class DecisionLogEntry(ConfigShape):
    decision: str
    tradeoff: str
    outcome: str


# ======
# Tables
# ======
class SiteSettings(BaseModel):
    """
    Singleton settings row
    Table: "site_settings" (public reads go through "public_site_settings")
    """
    id: str = "default"
    admin_user_id: Optional[str] = None
    nav_config: NavConfig = Field(default_factory=NavConfig)
    home_sections: HomeSectionsConfig = Field(default_factory=HomeSectionsConfig)
    theme: ThemeConfig = Field(default_factory=ThemeConfig)
    seo: SEOConfig = Field(default_factory=SEOConfig)
    pages: PagesConfig = Field(default_factory=PagesConfig)
    updated_at: Optional[str] = None


class SiteSettingsUpdate(BaseModel):
    nav_config: Optional[NavConfig] = None
    home_sections: Optional[HomeSectionsConfig] = None
    theme: Optional[ThemeConfig] = None
    seo: Optional[SEOConfig] = None
    pages: Optional[PagesConfig] = None
    expected_updated_at: Optional[str] = Field(None, description="Reject the write if the row changed since this timestamp")


class ProjectSummary(BaseModel):
    id: str
    slug: str
    title: str
    summary: str = ""
    tags: List[str] = []
    status: ProjectStatus = ProjectStatus.PUBLIC
    featured: bool = False


class Project(ProjectSummary):
    """
    Table: "projects"
    """
    detail_level: DetailLevel = DetailLevel.STANDARD
    published: bool = False
    sections_config: ProjectSectionsConfig = Field(default_factory=ProjectSectionsConfig)
    content: ProjectContent = Field(default_factory=ProjectContent)
    media: List[MediaItem] = []
    metrics: List[str] = []
    decision_log: List[DecisionLogEntry] = []
    updated_at: Optional[str] = None


class ProjectInput(BaseModel):
    id: Optional[str] = None
    slug: str = ""
    title: str = ""
    summary: str = ""
    tags: List[str] = []
    status: ProjectStatus = ProjectStatus.PUBLIC
    detail_level: DetailLevel = DetailLevel.STANDARD
    featured: bool = False
    published: bool = False
    sections_config: ProjectSectionsConfig = Field(default_factory=ProjectSectionsConfig)
    content: ProjectContent = Field(default_factory=ProjectContent)
    media: List[MediaItem] = []
    metrics: List[str] = []
    decision_log: List[DecisionLogEntry] = []


class WritingCategory(BaseModel):
    """
    Table: "writing_categories"
    """
    id: str
    name: str
    order_index: int = 0
    enabled: bool = True


class WritingCategoryInput(BaseModel):
    id: Optional[str] = None
    name: str = ""
    order_index: int = 0
    enabled: bool = True


class WritingItem(BaseModel):
    """
    Table: "writing_items"
    """
    id: str
    category_id: Optional[str] = None
    title: str
    url: str
    platform_label: str = ""
    language: WritingLanguage = WritingLanguage.AUTO
    featured: bool = False
    enabled: bool = True
    order_index: int = 0
    why_this_matters: Optional[str] = None
    show_why: bool = False
    category_name: Optional[str] = None


class WritingItemInput(BaseModel):
    id: Optional[str] = None
    category_id: Optional[str] = None
    title: str = ""
    url: str = ""
    platform_label: str = ""
    language: WritingLanguage = WritingLanguage.AUTO
    featured: bool = False
    enabled: bool = True
    order_index: int = 0
    why_this_matters: Optional[str] = None
    show_why: bool = False


class AnalyticsEventIn(BaseModel):
    event: AnalyticsEventKind
    path: str
    ref: Optional[str] = None
    sid: Optional[str] = None


class PathCount(BaseModel):
    path: str
    count: int


class AnalyticsSummary(BaseModel):
    since: str
    total_visitors: int = 0
    page_views: int = 0
    resume_downloads: int = 0
    contact_clicks: int = 0
    writing_clicks: int = 0
    top_projects: List[PathCount] = []
    top_pages: List[PathCount] = []


# =========
# Responses
# =========
class WritingPage(BaseModel):
    categories: List[WritingCategory] = []
    items: List[WritingItem] = []


class HomeContent(BaseModel):
    settings: SiteSettings
    featured_projects: List[ProjectSummary] = []
    writing: List[WritingItem] = []
    notice: Optional[str] = None


class SeedSummary(BaseModel):
    settings_updated: bool = False
    projects_inserted: int = 0
    categories_inserted: int = 0
    items_inserted: int = 0


class ActionResult(BaseModel):
    success: bool
    message: str


class CheckItem(BaseModel):
    ok: bool = False
    message: str = "Not checked"


class HealthReport(BaseModel):
    timestamp: datetime
    env: CheckItem = Field(default_factory=CheckItem)
    schema_: CheckItem = Field(default_factory=CheckItem, alias="schema")
    auth: CheckItem = Field(default_factory=CheckItem)
    rls: CheckItem = Field(default_factory=CheckItem)
    tables: Dict[str, CheckItem] = {}

    model_config = ConfigDict(populate_by_name=True)


class FieldError(BaseModel):
    field: str
    message: str


# ====
# Auth
# ====
class AuthUser(BaseModel):
    id: str
    email: Optional[str] = None


class Session(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    user: AuthUser

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class LoginRequest(BaseModel):
    email: str
    password: str


class Token(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_at: Optional[int] = None
    user: AuthUser
    state: str


class GateStatus(BaseModel):
    state: str
    message: Optional[str] = None
    email: Optional[str] = None


class BootstrapRequest(BaseModel):
    token: str


def dump_config(value: Any) -> Any:
    """Serialize a config shape (or list of shapes) the way it is stored."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, list):
        return [dump_config(v) for v in value]
    return value
