"""
Defensive parsing of loosely-typed JSON configuration.

Every parser is total: it accepts anything (a JSON string, an already
decoded value, a model it produced earlier, or None) and returns a fully
populated model. Wrong-typed fields fall back to that field's default,
unknown keys are dropped and invalid list elements are skipped.
"""

import json
import math
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel

from schemas import (
    FONT_OPTIONS,
    ContactPageConfig,
    DecisionLogEntry,
    DetailLevel,
    HomeSection,
    HomeSectionsConfig,
    MediaItem,
    NavConfig,
    NavLink,
    PagesConfig,
    Project,
    ProjectContent,
    ProjectLinks,
    ProjectSectionsConfig,
    ProjectStatus,
    ProjectSummary,
    ResumePageConfig,
    SEOConfig,
    SiteSettings,
    ThemeConfig,
    ThemeMode,
    WritingCategory,
    WritingItem,
    WritingLanguage,
    WritingPageConfig,
)

E = TypeVar("E", bound=Enum)

MEDIA_TYPES = ("image", "video")


# -----------------
# Primitive checks
# -----------------

def is_string(v: Any) -> bool:
    return isinstance(v, str)


def is_number(v: Any) -> bool:
    # bool is an int subclass; JSON true/false are never numbers here
    if isinstance(v, bool):
        return False
    if isinstance(v, int):
        return True
    return isinstance(v, float) and math.isfinite(v)


def is_boolean(v: Any) -> bool:
    return isinstance(v, bool)


def is_object(v: Any) -> bool:
    return isinstance(v, dict)


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def parse_json(value: Any, fallback: Any = None) -> Any:
    """Decode a JSON string once; pass structured values through."""
    if value is None:
        return fallback
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        try:
            return json.loads(value)
        except (ValueError, RecursionError):
            return fallback
    if isinstance(value, (dict, list, tuple, BaseModel)):
        return _plain(value)
    return fallback


def _load_object(raw: Any) -> Optional[Dict[str, Any]]:
    obj = parse_json(raw)
    return obj if is_object(obj) else None


def _load_array(raw: Any) -> List[Any]:
    arr = parse_json(raw)
    return arr if isinstance(arr, list) else []


def _str(obj: Dict[str, Any], key: str, default: Optional[str] = None) -> Optional[str]:
    value = obj.get(key)
    return value if is_string(value) else default


def _bool(obj: Dict[str, Any], key: str, default: bool) -> bool:
    value = obj.get(key)
    return value if is_boolean(value) else default


def _int(value: Any) -> Optional[int]:
    return int(value) if is_number(value) else None


def _enum(value: Any, enum_type: Type[E], default: E) -> E:
    try:
        return enum_type(value)
    except (ValueError, TypeError):
        return default


# -----------------
# Site settings
# -----------------

def _nav_link(v: Any) -> Optional[NavLink]:
    if not is_object(v):
        return None
    if is_string(v.get("href")) and is_string(v.get("label")) and is_boolean(v.get("visible")):
        return NavLink(href=v["href"], label=v["label"], visible=v["visible"])
    return None


def parse_nav_config(raw: Any) -> NavConfig:
    obj = _load_object(raw)
    if obj is None:
        return NavConfig()
    links = [link for link in map(_nav_link, obj.get("links") if isinstance(obj.get("links"), list) else []) if link]
    return NavConfig(links=links, cta_button=_nav_link(obj.get("ctaButton")))


def _home_section(v: Any) -> Optional[HomeSection]:
    if not is_object(v):
        return None
    if not (is_string(v.get("id")) and is_boolean(v.get("visible")) and is_number(v.get("order"))):
        return None
    limit = _int(v.get("limit"))
    return HomeSection(
        id=v["id"],
        visible=v["visible"],
        order=int(v["order"]),
        limit=limit if limit is not None and limit >= 0 else None,
    )


def parse_home_sections(raw: Any) -> HomeSectionsConfig:
    obj = _load_object(raw)
    if obj is None:
        return HomeSectionsConfig()
    sections = obj.get("sections") if isinstance(obj.get("sections"), list) else []
    return HomeSectionsConfig(sections=[s for s in map(_home_section, sections) if s])


def parse_theme_config(raw: Any) -> ThemeConfig:
    obj = _load_object(raw)
    if obj is None:
        return ThemeConfig()
    font = _str(obj, "font")
    return ThemeConfig(
        mode=_enum(obj.get("mode"), ThemeMode, ThemeMode.SYSTEM),
        accent_color=_str(obj, "accentColor"),
        font=font if font in FONT_OPTIONS else None,
    )


def parse_seo_config(raw: Any) -> SEOConfig:
    obj = _load_object(raw)
    if obj is None:
        return SEOConfig()
    return SEOConfig(
        title=_str(obj, "title", ""),
        description=_str(obj, "description", ""),
        og_image=_str(obj, "ogImage"),
        twitter_handle=_str(obj, "twitterHandle"),
        canonical_url=_str(obj, "canonicalUrl"),
        favicon_url=_str(obj, "faviconUrl"),
    )


def _resume_page(v: Any) -> ResumePageConfig:
    if not is_object(v):
        return ResumePageConfig()
    return ResumePageConfig(
        enabled=_bool(v, "enabled", False),
        pdf_url=_str(v, "pdfUrl"),
        show_copy_text=_bool(v, "showCopyText", True),
        show_download=_bool(v, "showDownload", True),
    )


def _contact_page(v: Any) -> ContactPageConfig:
    if not is_object(v):
        return ContactPageConfig()
    return ContactPageConfig(
        enabled=_bool(v, "enabled", False),
        show_form=_bool(v, "showForm", False),
        email=_str(v, "email"),
        linkedin=_str(v, "linkedin"),
        github=_str(v, "github"),
        calendar=_str(v, "calendar") or _str(v, "calendly"),
    )


def _writing_page(v: Any) -> WritingPageConfig:
    if not is_object(v):
        return WritingPageConfig()
    return WritingPageConfig(
        enabled=_bool(v, "enabled", True),
        auto_hide_if_empty=_bool(v, "autoHideIfEmpty", True),
    )


def parse_pages_config(raw: Any) -> PagesConfig:
    obj = _load_object(raw)
    if obj is None:
        return PagesConfig()
    return PagesConfig(
        resume=_resume_page(obj.get("resume")),
        contact=_contact_page(obj.get("contact")),
        writing=_writing_page(obj.get("writing")),
        methodology=parse_string_array(obj.get("methodology")),
    )


# -----------------
# Projects
# -----------------

def parse_project_sections_config(raw: Any) -> ProjectSectionsConfig:
    obj = _load_object(raw)
    if obj is None:
        return ProjectSectionsConfig()
    max_images = _int(obj.get("maxImages"))
    return ProjectSectionsConfig(
        show_overview=_bool(obj, "showOverview", True),
        show_challenge=_bool(obj, "showChallenge", True),
        show_approach=_bool(obj, "showApproach", True),
        show_outcome=_bool(obj, "showOutcome", True),
        show_images=_bool(obj, "showImages", True),
        max_images=max_images if max_images is not None and max_images >= 0 else 3,
    )


def parse_project_content(raw: Any) -> ProjectContent:
    obj = _load_object(raw)
    if obj is None:
        return ProjectContent()
    links = obj.get("links")
    return ProjectContent(
        overview=_str(obj, "overview"),
        challenge=_str(obj, "challenge"),
        approach=_str(obj, "approach"),
        outcome=_str(obj, "outcome"),
        note=_str(obj, "note"),
        links=ProjectLinks(live=_str(links, "live"), github=_str(links, "github")) if is_object(links) else ProjectLinks(),
    )


def _media_item(v: Any) -> Optional[MediaItem]:
    if not is_object(v) or v.get("type") not in MEDIA_TYPES or not is_string(v.get("url")):
        return None
    return MediaItem(type=v["type"], url=v["url"], caption=_str(v, "caption"))


def parse_media(raw: Any) -> List[MediaItem]:
    return [m for m in map(_media_item, _load_array(raw)) if m]


def parse_metrics(raw: Any) -> List[str]:
    return [m for m in _load_array(raw) if is_string(m)]


def _decision(v: Any) -> Optional[DecisionLogEntry]:
    if not is_object(v):
        return None
    if is_string(v.get("decision")) and is_string(v.get("tradeoff")) and is_string(v.get("outcome")):
        return DecisionLogEntry(decision=v["decision"], tradeoff=v["tradeoff"], outcome=v["outcome"])
    return None


def parse_decision_log(raw: Any) -> List[DecisionLogEntry]:
    return [d for d in map(_decision, _load_array(raw)) if d]


def parse_string_array(raw: Any) -> List[str]:
    return [s for s in _load_array(raw) if is_string(s)]


# -----------------
# Rows
# -----------------

def _row_str(row: Dict[str, Any], key: str, default: str = "") -> str:
    value = row.get(key)
    if value is None:
        return default
    return value if isinstance(value, str) else str(value)


def _opt_str(row: Dict[str, Any], key: str) -> Optional[str]:
    value = row.get(key)
    return None if value is None else _row_str(row, key)


def _row_int(row: Dict[str, Any], key: str, default: int = 0) -> int:
    value = _int(row.get(key))
    return default if value is None else value


def settings_from_row(row: Dict[str, Any]) -> SiteSettings:
    return SiteSettings(
        id=_row_str(row, "id", "default"),
        admin_user_id=_opt_str(row, "admin_user_id"),
        nav_config=parse_nav_config(row.get("nav_config")),
        home_sections=parse_home_sections(row.get("home_sections")),
        theme=parse_theme_config(row.get("theme")),
        seo=parse_seo_config(row.get("seo")),
        pages=parse_pages_config(row.get("pages")),
        updated_at=_opt_str(row, "updated_at"),
    )


def project_summary_from_row(row: Dict[str, Any]) -> ProjectSummary:
    return ProjectSummary(
        id=_row_str(row, "id"),
        slug=_row_str(row, "slug"),
        title=_row_str(row, "title"),
        summary=_row_str(row, "summary"),
        tags=parse_string_array(row.get("tags")),
        status=_enum(row.get("status"), ProjectStatus, ProjectStatus.PUBLIC),
        featured=row.get("featured") is True,
    )


def project_from_row(row: Dict[str, Any]) -> Project:
    summary = project_summary_from_row(row)
    return Project(
        **summary.model_dump(),
        detail_level=_enum(row.get("detail_level"), DetailLevel, DetailLevel.STANDARD),
        published=row.get("published") is True,
        sections_config=parse_project_sections_config(row.get("sections_config")),
        content=parse_project_content(row.get("content")),
        media=parse_media(row.get("media")),
        metrics=parse_metrics(row.get("metrics")),
        decision_log=parse_decision_log(row.get("decision_log")),
        updated_at=_opt_str(row, "updated_at"),
    )


def category_from_row(row: Dict[str, Any]) -> WritingCategory:
    return WritingCategory(
        id=_row_str(row, "id"),
        name=_row_str(row, "name"),
        order_index=_row_int(row, "order_index"),
        enabled=row.get("enabled") is not False,
    )


def writing_item_from_row(row: Dict[str, Any], category_name: Optional[str] = None) -> WritingItem:
    return WritingItem(
        id=_row_str(row, "id"),
        category_id=_opt_str(row, "category_id"),
        title=_row_str(row, "title"),
        url=_row_str(row, "url"),
        platform_label=_row_str(row, "platform_label"),
        language=_enum(row.get("language"), WritingLanguage, WritingLanguage.AUTO),
        featured=row.get("featured") is True,
        enabled=row.get("enabled") is not False,
        order_index=_row_int(row, "order_index"),
        why_this_matters=_opt_str(row, "why_this_matters"),
        show_why=row.get("show_why") is True,
        category_name=category_name,
    )
