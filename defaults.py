"""
Compiled-in content: the default site settings used whenever the stored row is
missing or unreadable, and the demo rows written by the seed procedure.
"""

from typing import Any, Dict, List

from schemas import SiteSettings
from validators import settings_from_row

DEFAULT_METHODOLOGY = [
    "Start with why: every product decision ties back to user value.",
    "Ship fast, learn faster: small iterations, measurable outcomes.",
    "Write it down: decisions, trade-offs and context matter.",
    "Build bridges: engineers, designers and stakeholders aligned.",
]

DEFAULT_SETTINGS_ROW: Dict[str, Any] = {
    "id": "default",
    "admin_user_id": None,
    "nav_config": {
        "links": [
            {"href": "/", "label": "Home", "visible": True},
            {"href": "/projects", "label": "Projects", "visible": True},
            {"href": "/writing", "label": "Writing", "visible": True},
            {"href": "/contact", "label": "Contact", "visible": True},
        ],
        "ctaButton": {"href": "/resume", "label": "Resume", "visible": True},
    },
    "home_sections": {
        "sections": [
            {"id": "hero", "visible": True, "order": 1},
            {"id": "experience_snapshot", "visible": True, "order": 2},
            {"id": "featured_projects", "visible": True, "order": 3, "limit": 3},
            {"id": "how_i_work", "visible": True, "order": 4},
            {"id": "selected_writing_preview", "visible": True, "order": 5, "limit": 3},
            {"id": "contact_cta", "visible": True, "order": 6},
        ]
    },
    "theme": {"mode": "system", "accentColor": "#135BEC", "font": "inter"},
    "seo": {
        "title": "Portfolio",
        "description": "Product and engineering work, case studies and writing.",
    },
    "pages": {
        "resume": {"enabled": True, "pdfUrl": None, "showCopyText": True, "showDownload": True},
        "contact": {"enabled": True, "email": "hello@example.com", "showForm": False},
        "writing": {"enabled": True, "autoHideIfEmpty": True},
        "methodology": DEFAULT_METHODOLOGY,
    },
}

# Freshly migrated row: sentinel admin and an empty nav, which the seed
# procedure recognizes as "still at defaults"
EMPTY_NAV_CONFIG: Dict[str, Any] = {
    "links": [],
    "ctaButton": {"visible": False, "href": "/resume", "label": "Resume"},
}


def default_site_settings() -> SiteSettings:
    """A fresh, fully populated default settings object."""
    return settings_from_row(DEFAULT_SETTINGS_ROW)


DEMO_PROJECTS: List[Dict[str, Any]] = [
    {
        "slug": "ai-product-assistant",
        "title": "AI Product Assistant",
        "summary": "Internal AI tool that helps product managers write better user stories and PRDs.",
        "tags": ["AI", "LLM", "Product"],
        "status": "PUBLIC",
        "detail_level": "STANDARD",
        "featured": True,
        "published": True,
        "sections_config": {
            "showOverview": True, "showChallenge": True, "showApproach": True,
            "showOutcome": True, "showImages": False, "maxImages": 3,
        },
        "content": {
            "overview": "An assistant that suggests improvements and flags gaps across product documentation.",
            "challenge": "Documentation quality varied across teams and caused rework during sprints.",
            "approach": "Retrieval-augmented generation grounded in historical PRDs, shipped as a Slack integration.",
            "outcome": "Documentation time down 40%, first-pass acceptance up from 60% to 85%.",
            "links": {"live": None, "github": None},
        },
        "media": [],
        "metrics": ["40% reduction in doc time", "85% first-pass acceptance", "Adopted by 12 teams"],
        "decision_log": [
            {
                "decision": "Use RAG over fine-tuning",
                "tradeoff": "More complex pipeline but better accuracy with company context",
                "outcome": "Suggestions were 3x more relevant than generic output",
            },
            {
                "decision": "Slack-first integration",
                "tradeoff": "Limited formatting vs dedicated UI",
                "outcome": "Higher adoption due to lower friction",
            },
        ],
    },
    {
        "slug": "enterprise-analytics-platform",
        "title": "Enterprise Analytics Platform",
        "summary": "Confidential real-time data visualization and predictive analytics project.",
        "tags": ["Engineering", "Platform", "Data"],
        "status": "CONFIDENTIAL",
        "detail_level": "BRIEF",
        "featured": False,
        "published": True,
        "sections_config": {
            "showOverview": True, "showChallenge": False, "showApproach": False,
            "showOutcome": True, "showImages": False, "maxImages": 0,
        },
        "content": {
            "overview": "Real-time analytics dashboard processing millions of events daily.",
            "outcome": "500+ daily active users with sub-second query response times.",
            "note": "Details limited due to NDA.",
            "links": {},
        },
        "media": [],
        "metrics": ["500+ daily active users", "1M+ events/day", "Sub-second queries"],
        "decision_log": [],
    },
    {
        "slug": "voice-notes-concept",
        "title": "Voice Notes App",
        "summary": "Concept for a voice-first note-taking app with transcription and automatic tagging.",
        "tags": ["Startups", "Product", "Mobile"],
        "status": "CONCEPT",
        "detail_level": "STANDARD",
        "featured": False,
        "published": True,
        "sections_config": {
            "showOverview": True, "showChallenge": True, "showApproach": True,
            "showOutcome": True, "showImages": False, "maxImages": 2,
        },
        "content": {
            "overview": "Voice memos transcribed, tagged and organized automatically.",
            "challenge": "Voice memo apps lack organization; recordings are never revisited.",
            "approach": "Offline-first with on-device processing and a cloud fallback.",
            "outcome": "Validated through 15 user interviews.",
            "links": {},
        },
        "media": [],
        "metrics": ["15 user interviews", "80% willingness to pay"],
        "decision_log": [
            {
                "decision": "Offline-first architecture",
                "tradeoff": "More complex sync logic but better privacy",
                "outcome": "Users trusted the app with sensitive notes",
            }
        ],
    },
]

DEMO_CATEGORIES: List[Dict[str, Any]] = [
    {"id": "c0000001-0000-0000-0000-000000000001", "name": "Technical", "order_index": 1, "enabled": True},
    {"id": "c0000002-0000-0000-0000-000000000002", "name": "Product", "order_index": 2, "enabled": True},
    {"id": "c0000003-0000-0000-0000-000000000003", "name": "بالعربية", "order_index": 3, "enabled": True},
]

DEMO_WRITING_ITEMS: List[Dict[str, Any]] = [
    {
        "id": "d0000001-0000-0000-0000-000000000001",
        "category_id": "c0000001-0000-0000-0000-000000000001",
        "title": "Building Resilient APIs with Rate Limiting",
        "url": "https://medium.com/@example/rate-limiting-patterns",
        "platform_label": "Medium",
        "language": "EN",
        "featured": True,
        "enabled": True,
        "order_index": 1,
        "why_this_matters": "Token bucket, sliding window and distributed rate limiting for production systems.",
        "show_why": True,
    },
    {
        "id": "d0000002-0000-0000-0000-000000000002",
        "category_id": "c0000001-0000-0000-0000-000000000001",
        "title": "TypeScript Patterns for React Applications",
        "url": "https://github.com/example/typescript-react-patterns",
        "platform_label": "GitHub",
        "language": "EN",
        "featured": False,
        "enabled": True,
        "order_index": 2,
        "why_this_matters": None,
        "show_why": False,
    },
    {
        "id": "d0000003-0000-0000-0000-000000000003",
        "category_id": "c0000002-0000-0000-0000-000000000002",
        "title": "Writing User Stories That Engineers Love",
        "url": "https://linkedin.com/pulse/user-stories-example",
        "platform_label": "LinkedIn",
        "language": "EN",
        "featured": True,
        "enabled": True,
        "order_index": 1,
        "why_this_matters": "A practical guide to stories that are clear, testable and get built correctly.",
        "show_why": True,
    },
    {
        "id": "d0000004-0000-0000-0000-000000000004",
        "category_id": "c0000003-0000-0000-0000-000000000003",
        "title": "مقدمة في إدارة المنتجات التقنية",
        "url": "https://linkedin.com/pulse/intro-pm-arabic-example",
        "platform_label": "LinkedIn",
        "language": "AR",
        "featured": False,
        "enabled": True,
        "order_index": 1,
        "why_this_matters": None,
        "show_why": False,
    },
]
