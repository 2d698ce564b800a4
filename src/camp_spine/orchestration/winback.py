"""Win-back email sequence for families who cancelled premium.

Three emails: one right away, a retention offer four days later, and a
last reminder seven days after that.  The run is abandoned as soon as the
family is back on the premium plan.  Every email goes through
:func:`camp_spine.ops.outbound.guarded_send` keyed by run and step, so a
replayed step never mails twice.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from camp_spine.core.errors import DispatchError, ValidationError
from camp_spine.core.models import FamilyPlan, SequenceAnchor
from camp_spine.core.overlay import CityDirectory
from camp_spine.core.repositories import FamilyRepository
from camp_spine.ops.outbound import guarded_send
from camp_spine.orchestration.sequence import SequenceDefinition, SequenceStep, StepContext

WINBACK = "winback"

DEFAULT_BRAND = "Camp Spine"


def family_resubscribed(ctx: Any, family_id: str) -> bool:
    family = FamilyRepository(ctx.conn).get(family_id)
    return bool(family) and family["plan"] == FamilyPlan.PREMIUM.value


def _subjects(brand: str, saved_count: int) -> dict[int, str]:
    if saved_count > 0:
        first = f"Your {saved_count} saved camps are waiting for you"
    else:
        first = f"We miss you at {brand}"
    return {
        1: first,
        2: f"Special offer: Come back to {brand} Premium",
        3: f"Last chance: Your {brand} savings expire soon",
    }


def _send_winback_email(step: StepContext) -> None:
    ctx = step.ctx
    families = FamilyRepository(ctx.conn)
    family = families.get(step.subject_id)
    if family is None:
        raise ValidationError(f"Family '{step.subject_id}' not found", field="subject_id")
    if step.dispatcher is None:
        raise DispatchError("No dispatcher configured for win-back emails").with_context(
            run_id=step.run_id,
        )

    city = CityDirectory(ctx.conn).get(family.get("city_id"))
    brand = city.brand_name if city else DEFAULT_BRAND
    saved_count = families.count_subscriptions(family["id"])
    payload = {
        "subject": _subjects(brand, saved_count)[step.step_index],
        "family_name": family["display_name"],
        "brand_name": brand,
        "from_email": city.from_email if city else None,
        "saved_count": saved_count,
        "step": step.step_name,
    }

    result = guarded_send(
        ctx,
        step.dedup_key,
        step.dispatcher,
        family["email"],
        f"winback_{step.step_index}",
        payload,
    )
    if not result.success:
        raise DispatchError(result.error.message).with_context(run_id=step.run_id)


def build_winback_sequence() -> SequenceDefinition:
    return SequenceDefinition(
        name=WINBACK,
        steps=(
            SequenceStep("we_miss_you", _send_winback_email, timedelta(days=4)),
            SequenceStep("retention_offer", _send_winback_email, timedelta(days=7)),
            SequenceStep("final_reminder", _send_winback_email),
        ),
        anchor=SequenceAnchor.PREVIOUS,
        should_abandon=family_resubscribed,
        feature_flag="winback_sequence",
        description="Win back families who cancelled premium",
    )
