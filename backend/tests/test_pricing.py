from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from atelier.services.pricing_service import (
    DEFAULT_CREDIT_COSTS,
    OperationSpec,
    action_cost,
    load_pricing,
    resolve_cost,
)
from tests.factories import set_price


def test_base_generation_uses_defaults(db):
    breakdown = resolve_cost(db, None, OperationSpec())
    assert breakdown.base == 2
    assert breakdown.edits == {}
    assert breakdown.total == 2


def test_edits_are_priced_individually(db):
    spec = OperationSpec.from_input(
        {
            "aiTools": {
                "removeBackground": True,
                "changeBackground": {"enabled": True, "selection": {"type": "studio"}},
                "addLogo": {"enabled": True, "logo": "data:image/png;base64,AAAA"},
            }
        }
    )
    breakdown = resolve_cost(db, "user-1", spec)
    assert breakdown.edits == {"remove_background": 1, "change_background": 1, "add_logo": 1}
    assert breakdown.total == 5
    assert breakdown.as_dict() == {
        "base": 2,
        "remove_background": 1,
        "change_background": 1,
        "add_logo": 1,
        "total": 5,
    }


def test_original_background_and_logo_without_image_are_free(db):
    spec = OperationSpec.from_input(
        {
            "aiTools": {
                "changeBackground": {"enabled": True, "selection": {"type": "original"}},
                "addLogo": {"enabled": True},
            }
        }
    )
    assert spec.chargeable_edits() == []
    assert resolve_cost(db, None, spec).total == 2


def test_active_overrides_replace_defaults(db):
    set_price(db, "base_generation", 4)
    set_price(db, "ai_edit", 3)
    set_price(db, "improvement", 5, is_active=False)

    spec = OperationSpec.from_input({"aiTools": {"removeBackground": True}})
    assert resolve_cost(db, None, spec).total == 7
    assert action_cost(db, "improvement") == DEFAULT_CREDIT_COSTS["improvement"]


def test_unknown_and_negative_overrides_are_ignored(db):
    set_price(db, "teleport", 9)
    set_price(db, "base_generation", -1)

    costs = load_pricing(db)
    assert "teleport" not in costs
    assert costs["base_generation"] == 2


def test_unreadable_pricing_table_falls_back_to_defaults():
    session = MagicMock()
    session.execute.side_effect = OperationalError("SELECT", {}, Exception("no such table"))

    assert load_pricing(session) == DEFAULT_CREDIT_COSTS
    session.rollback.assert_called_once()


def test_unknown_action_is_priced_as_a_full_generation(db):
    set_price(db, "base_generation", 4)

    breakdown = resolve_cost(db, None, OperationSpec(action="teleport", remove_background=True))

    assert breakdown.base == 4
    assert breakdown.total == 5


def test_watermark_removal_is_free_by_default(db):
    assert action_cost(db, "watermark_removal") == 0
