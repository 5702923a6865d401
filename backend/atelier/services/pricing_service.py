"""Credit cost resolution.

Costs start from compiled-in defaults and are overridden by active rows in
``credit_pricing`` matched by ``action_type`` slug. Resolution never fails:
a bad override or an unreachable table falls back to the defaults.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.credit_pricing import CreditPricing

logger = logging.getLogger(__name__)

DEFAULT_CREDIT_COSTS: dict[str, int] = {
    "base_generation": 2,
    "ai_edit": 1,
    "background_change": 1,
    "chat_generation": 2,
    "chat_refinement": 1,
    "chat_conversation": 0,
    "improvement": 1,
    "watermark_removal": 0,
}

# Operation action -> slug of its base cost.
ACTION_BASE_SLUGS: dict[str, str] = {
    "generation": "base_generation",
    "background_change": "background_change",
    "chat_generation": "chat_generation",
    "chat_refinement": "chat_refinement",
    "chat_conversation": "chat_conversation",
    "improvement": "improvement",
    "watermark_removal": "watermark_removal",
}

EDIT_REMOVE_BACKGROUND = "remove_background"
EDIT_CHANGE_BACKGROUND = "change_background"
EDIT_ADD_LOGO = "add_logo"


@dataclass(frozen=True)
class OperationSpec:
    action: str = "generation"
    remove_background: bool = False
    # Background selection type; "original" keeps the photo's background and is free.
    change_background: Optional[str] = None
    add_logo: bool = False

    @classmethod
    def from_input(cls, input_data: dict[str, Any] | None, action: str = "generation") -> "OperationSpec":
        """Read edit flags from a generation request's ``aiTools`` block."""
        tools = (input_data or {}).get("aiTools") or (input_data or {}).get("ai_tools") or {}
        if not isinstance(tools, dict):
            tools = {}

        change_background = None
        background = tools.get("changeBackground") or {}
        if isinstance(background, dict) and background.get("enabled"):
            selection = background.get("selection") or {}
            if isinstance(selection, dict) and selection.get("type"):
                change_background = str(selection["type"])

        logo = tools.get("addLogo") or {}
        add_logo = isinstance(logo, dict) and bool(logo.get("enabled")) and bool(logo.get("logo"))

        return cls(
            action=action,
            remove_background=bool(tools.get("removeBackground")),
            change_background=change_background,
            add_logo=add_logo,
        )

    def chargeable_edits(self) -> list[str]:
        edits = []
        if self.remove_background:
            edits.append(EDIT_REMOVE_BACKGROUND)
        if self.change_background and self.change_background != "original":
            edits.append(EDIT_CHANGE_BACKGROUND)
        if self.add_logo:
            edits.append(EDIT_ADD_LOGO)
        return edits


@dataclass(frozen=True)
class CostBreakdown:
    base: int
    edits: dict[str, int] = field(default_factory=dict)
    total: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"base": self.base, **self.edits, "total": self.total}


def load_pricing(db: Session) -> dict[str, int]:
    """Defaults overlaid with valid active overrides."""
    costs = dict(DEFAULT_CREDIT_COSTS)
    try:
        rows = db.execute(
            select(CreditPricing.action_type, CreditPricing.credits_required).where(
                CreditPricing.is_active.is_(True)
            )
        ).all()
    except SQLAlchemyError:
        logger.exception("Failed to load credit pricing overrides; using defaults")
        db.rollback()
        return costs

    for action_type, credits_required in rows:
        if action_type not in costs:
            continue
        try:
            value = int(credits_required)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-integer credit price action_type=%s", action_type)
            continue
        if value < 0:
            logger.warning("Ignoring negative credit price action_type=%s value=%d", action_type, value)
            continue
        costs[action_type] = value
    return costs


def resolve_cost(db: Session, user_id: str | None, operation: OperationSpec) -> CostBreakdown:
    # Pricing is the same for every account today; user_id is kept for per-plan pricing.
    slug = ACTION_BASE_SLUGS.get(operation.action)
    if slug is None:
        # Callers validate actions; an unknown one is priced as a full generation.
        logger.warning("Unknown operation action=%s, pricing as base_generation", operation.action)
        slug = "base_generation"
    costs = load_pricing(db)
    base = costs[slug]
    edits = {edit: costs["ai_edit"] for edit in operation.chargeable_edits()}
    return CostBreakdown(base=base, edits=edits, total=base + sum(edits.values()))


def action_cost(db: Session, action: str) -> int:
    return resolve_cost(db, None, OperationSpec(action=action)).total
