# board_fallback.py - Keyword-driven board synthesis used when the AI path fails
#
# The template table is ordered and evaluated first-match-wins; the order is
# part of the behaviour (a prompt mentioning both an online store and an app
# gets the e-commerce board). Everything here is a pure function of the prompt.

import copy
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from board_schema import (
    DEFAULT_COLORS, default_board_settings, default_column_settings,
)

Predicate = Callable[[str], bool]


@dataclass(frozen=True)
class FallbackTemplate:
    key: str
    board_name: str
    description: str
    columns: Sequence[Tuple[str, str]]  # (name, color)
    tasks: Sequence[Dict[str, Any]]
    tags: Sequence[Tuple[str, str, str]]  # (name, color, category)
    checklists: Sequence[Dict[str, Any]] = ()
    goals: Sequence[str] = ()
    key_features: Sequence[str] = ()
    target_users: Sequence[str] = ()
    board_type: str = "kanban"


def keywords(*words: str) -> Predicate:
    """Case-insensitive whole-word match on any of ``words`` (``*`` = any suffix)."""
    parts = [re.escape(w).replace(r"\*", r"\w*") for w in words]
    pattern = re.compile(r"\b(?:" + "|".join(parts) + r")\b", re.IGNORECASE)
    return lambda prompt: bool(pattern.search(prompt))


# ============================================================================
# TEMPLATES
# ============================================================================

ECOMMERCE = FallbackTemplate(
    key="ecommerce",
    board_name="E-commerce Store Launch",
    description="Plan, build and launch an online store, from catalog to checkout.",
    columns=(
        ("Backlog", "#64748B"),
        ("To Do", "#3B82F6"),
        ("In Progress", "#F59E0B"),
        ("Review", "#8B5CF6"),
        ("Done", "#10B981"),
    ),
    tasks=(
        {"title": "Set up product catalog", "description": "Define categories, attributes and import the initial product list with photos and prices.",
         "priority": "high", "estimatedHours": 16, "tags": ["Catalog", "Backend"], "column": "To Do"},
        {"title": "Integrate payment gateway", "description": "Connect the payment provider, handle refunds and test card flows end to end.",
         "priority": "critical", "estimatedHours": 24, "tags": ["Payments", "Backend"], "column": "Backlog"},
        {"title": "Design checkout flow", "description": "Single-page checkout with guest purchase, address validation and order summary.",
         "priority": "high", "estimatedHours": 12, "tags": ["Frontend", "UX"], "column": "In Progress"},
        {"title": "Configure shipping rates", "description": "Set zones, carriers and free-shipping thresholds.",
         "priority": "medium", "estimatedHours": 6, "tags": ["Operations"], "column": "Backlog"},
        {"title": "Write product descriptions", "description": "SEO-friendly copy for the top 50 products.",
         "priority": "medium", "estimatedHours": 10, "tags": ["Marketing"], "column": "To Do"},
        {"title": "Set up order confirmation emails", "description": "Transactional templates for order placed, shipped and delivered.",
         "priority": "low", "estimatedHours": 4, "tags": ["Operations"], "column": "Backlog"},
    ),
    tags=(
        ("Catalog", "#3B82F6", "type"),
        ("Payments", "#EF4444", "type"),
        ("Frontend", "#22C55E", "department"),
        ("Backend", "#6366F1", "department"),
        ("UX", "#EC4899", "department"),
        ("Operations", "#F59E0B", "department"),
        ("Marketing", "#14B8A6", "department"),
    ),
    checklists=(
        {"title": "Launch readiness", "items": (
            {"text": "Test checkout with real card", "priority": "critical", "estimatedMinutes": 30},
            {"text": "Verify tax settings", "priority": "high", "estimatedMinutes": 20},
            {"text": "Publish privacy and returns policies", "priority": "medium", "estimatedMinutes": 45},
        )},
    ),
    goals=("Launch the online store", "Accept payments securely", "Ship orders reliably"),
    key_features=("Product catalog", "Checkout", "Payments", "Shipping"),
    target_users=("Online shoppers", "Store operators"),
)

SOFTWARE = FallbackTemplate(
    key="software",
    board_name="Software Development Sprint",
    description="Track features, bugs and releases through a development workflow.",
    columns=(
        ("Backlog", "#64748B"),
        ("To Do", "#3B82F6"),
        ("In Progress", "#F59E0B"),
        ("Code Review", "#8B5CF6"),
        ("Testing", "#06B6D4"),
        ("Done", "#22C55E"),
    ),
    tasks=(
        {"title": "Define requirements and user stories", "description": "Capture the core user journeys and acceptance criteria.",
         "priority": "high", "estimatedHours": 8, "tags": ["Planning"], "column": "To Do"},
        {"title": "Set up repository and CI pipeline", "description": "Create the repo, branch protection and automated build and test runs.",
         "priority": "high", "estimatedHours": 6, "tags": ["DevOps"], "column": "In Progress"},
        {"title": "Design database schema", "description": "Model the main entities and their relationships; write migrations.",
         "priority": "medium", "estimatedHours": 10, "tags": ["Backend"], "column": "Backlog"},
        {"title": "Implement authentication", "description": "Sign-up, login and session handling with tests.",
         "priority": "critical", "estimatedHours": 16, "tags": ["Backend", "Security"], "column": "Backlog"},
        {"title": "Build main dashboard UI", "description": "Responsive layout with the primary navigation and widgets.",
         "priority": "medium", "estimatedHours": 14, "tags": ["Frontend"], "column": "Backlog"},
        {"title": "Write integration tests", "description": "Cover the critical API flows before the first release.",
         "priority": "medium", "estimatedHours": 8, "tags": ["QA"], "column": "Backlog"},
    ),
    tags=(
        ("Planning", "#A855F7", "type"),
        ("Backend", "#3B82F6", "department"),
        ("Frontend", "#22C55E", "department"),
        ("DevOps", "#F97316", "department"),
        ("Security", "#EF4444", "type"),
        ("QA", "#06B6D4", "department"),
        ("Bug", "#DC2626", "type"),
    ),
    checklists=(
        {"title": "Definition of done", "items": (
            {"text": "Code reviewed and approved", "priority": "high", "estimatedMinutes": 30},
            {"text": "Tests passing in CI", "priority": "high", "estimatedMinutes": 15},
            {"text": "Documentation updated", "priority": "medium", "estimatedMinutes": 20},
        )},
    ),
    goals=("Ship a working first release", "Keep quality high with reviews and tests"),
    key_features=("Authentication", "Dashboard", "CI pipeline"),
    target_users=("Developers", "Product owners"),
)

MARKETING = FallbackTemplate(
    key="marketing",
    board_name="Marketing Campaign",
    description="Plan, produce and measure a multi-channel marketing campaign.",
    columns=(
        ("Ideas", "#64748B"),
        ("Planning", "#3B82F6"),
        ("In Production", "#F59E0B"),
        ("Scheduled", "#8B5CF6"),
        ("Published", "#10B981"),
    ),
    tasks=(
        {"title": "Define campaign goals and KPIs", "description": "Agree on target reach, conversions and budget.",
         "priority": "high", "estimatedHours": 4, "tags": ["Strategy"], "column": "Planning"},
        {"title": "Research target audience", "description": "Build two or three personas from customer data and surveys.",
         "priority": "high", "estimatedHours": 8, "tags": ["Research"], "column": "Planning"},
        {"title": "Create content calendar", "description": "Map posts, emails and ads across the campaign weeks.",
         "priority": "medium", "estimatedHours": 6, "tags": ["Content"], "column": "Ideas"},
        {"title": "Design social media assets", "description": "Banner, post and story formats for each channel.",
         "priority": "medium", "estimatedHours": 12, "tags": ["Design", "Social"], "column": "In Production"},
        {"title": "Set up email sequence", "description": "Three-step nurture sequence with A/B tested subject lines.",
         "priority": "medium", "estimatedHours": 6, "tags": ["Email"], "column": "Ideas"},
        {"title": "Configure analytics tracking", "description": "UTM conventions and a dashboard for campaign KPIs.",
         "priority": "low", "estimatedHours": 3, "tags": ["Analytics"], "column": "Ideas"},
    ),
    tags=(
        ("Strategy", "#A855F7", "type"),
        ("Research", "#0EA5E9", "type"),
        ("Content", "#22C55E", "type"),
        ("Design", "#EC4899", "department"),
        ("Social", "#3B82F6", "type"),
        ("Email", "#F59E0B", "type"),
        ("Analytics", "#64748B", "department"),
    ),
    checklists=(
        {"title": "Pre-launch review", "items": (
            {"text": "Proofread all copy", "priority": "high", "estimatedMinutes": 40},
            {"text": "Check links and UTM tags", "priority": "medium", "estimatedMinutes": 20},
            {"text": "Get stakeholder sign-off", "priority": "high", "estimatedMinutes": 30},
        )},
    ),
    goals=("Grow awareness", "Drive qualified leads"),
    key_features=("Content calendar", "Social assets", "Email nurture"),
    target_users=("Prospective customers", "Marketing team"),
)

GENERIC = FallbackTemplate(
    key="generic",
    board_name="Generated Board",
    description="A starter board generated from your request.",
    columns=(
        ("To Do", "#6B7280"),
        ("In Progress", "#3B82F6"),
        ("Done", "#10B981"),
    ),
    tasks=(
        {"title": "Define project scope", "description": "Write down the goal, the deliverables and what is out of scope.",
         "priority": "high", "estimatedHours": 2, "tags": ["Planning"], "column": "To Do"},
        {"title": "Break work into tasks", "description": "Split the scope into tasks small enough to finish in a day or two.",
         "priority": "medium", "estimatedHours": 2, "tags": ["Planning"], "column": "To Do"},
        {"title": "Review progress", "description": "Check what is done and adjust priorities.",
         "priority": "low", "estimatedHours": 1, "tags": ["Review"], "column": "To Do"},
    ),
    tags=(
        ("Planning", "#3B82F6", "type"),
        ("Review", "#6B7280", "status"),
    ),
    goals=("Organize the work",),
    key_features=("Task tracking",),
    target_users=("Team members",),
)

# Ordered: first match wins
FALLBACK_TEMPLATES: Tuple[Tuple[Predicate, FallbackTemplate], ...] = (
    (keywords("e-commerce", "ecommerce", "online store", "online shop", "webshop", "shop*", "store*",
              "checkout", "retail", "storefront"), ECOMMERCE),
    (keywords("software", "app", "apps", "application*", "api", "website", "web app", "develop*",
              "coding", "code", "sprint", "bug*", "backend", "frontend", "mobile", "saas"), SOFTWARE),
    (keywords("marketing", "campaign*", "seo", "social media", "brand*", "advertis*", "newsletter",
              "content calendar", "promotion*"), MARKETING),
)


def match_template(prompt: Optional[str]) -> FallbackTemplate:
    text = prompt or ""
    for predicate, template in FALLBACK_TEMPLATES:
        if predicate(text):
            return template
    return GENERIC


# ============================================================================
# SYNTHESIS
# ============================================================================

def _build_board(template: FallbackTemplate) -> Dict[str, Any]:
    columns = [
        {
            "name": name,
            "position": index,
            "color": color,
            "backgroundColor": DEFAULT_COLORS["column_background"],
            "limit": None,
            "settings": default_column_settings(),
        }
        for index, (name, color) in enumerate(template.columns)
    ]

    per_column: Dict[str, int] = {}
    tasks = []
    for spec in template.tasks:
        column = spec["column"]
        position = per_column.get(column, 0)
        per_column[column] = position + 1
        tasks.append({
            "title": spec["title"],
            "description": spec["description"],
            "priority": spec["priority"],
            "color": DEFAULT_COLORS["task"],
            "assignees": [],
            "tags": list(spec["tags"]),
            "dueDate": None,
            "estimatedHours": spec["estimatedHours"],
            "position": position,
            "column": column,
        })

    tags = [
        {
            "name": name,
            "color": color,
            "textColor": DEFAULT_COLORS["text"],
            "category": category,
            "description": "",
            "scope": "board",
        }
        for name, color, category in template.tags
    ]

    checklists = [
        {
            "title": checklist["title"],
            "items": [dict(item, position=j) for j, item in enumerate(checklist["items"])],
        }
        for checklist in template.checklists
    ]

    return {
        "board": {
            "name": template.board_name,
            "description": template.description,
            "type": template.board_type,
            "visibility": "private",
            "settings": default_board_settings(),
        },
        "columns": columns,
        "tasks": tasks,
        "tags": tags,
        "checklists": copy.deepcopy(checklists),
    }


def synthesize(prompt: Optional[str]) -> Dict[str, Any]:
    """Complete board for ``prompt`` without calling any remote service."""
    return _build_board(match_template(prompt))


def fallback_analysis(prompt: Optional[str]) -> Dict[str, List[str]]:
    template = match_template(prompt)
    return {
        "goals": list(template.goals),
        "keyFeatures": list(template.key_features),
        "targetUsers": list(template.target_users),
    }
