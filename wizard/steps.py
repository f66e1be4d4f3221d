"""Step catalog and sequencing rules for the Business Onboarding wizard

Deterministic, no I/O. The visible step list is always recomputed from
form data, never mutated in place, so an index into the visible list is only
meaningful together with the list it came from.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Callable, Optional

from wizard.config import NO_DIRECTOR_BUSINESS_TYPES
from wizard.state import set_form_data, set_step_status


def _always(form_data: dict) -> bool:
    return True


def _needs_directors(form_data: dict) -> bool:
    return not excludes_directors(business_type_of(form_data))


@dataclass(frozen=True)
class StepDefinition:
    key: str
    label: str
    description: str
    # How the step is submitted: "form" (draft save), "documents" (KYC upload), "review" (finalize)
    component: str
    is_applicable: Callable[[dict], bool] = _always


STEP_CATALOG: tuple[StepDefinition, ...] = (
    StepDefinition("businessDetails", "Business Details",
                   "Provide core business information like name, type, and registration.", "form"),
    StepDefinition("businessAddress", "Business Address",
                   "Provide registered office, postal, and contact details.", "form"),
    StepDefinition("directors", "Directors",
                   "List all directors associated with this business.", "form", _needs_directors),
    StepDefinition("financialInfo", "Financial Info",
                   "Provide tax, revenue, and ownership information.", "form"),
    StepDefinition("kycDocuments", "KYC Documents",
                   "Upload required business documents.", "documents"),
    StepDefinition("admins", "Administrators",
                   "Add administrators who will manage this business account.", "form"),
    StepDefinition("declaration", "Declaration",
                   "Confirm and agree to the information submitted.", "review"),
)

CATALOG_KEYS = tuple(step.key for step in STEP_CATALOG)


# ────────── BUSINESS TYPE ──────────

def type_code(business_type) -> str:
    """Business type as picked in the form ({"type", "name"}) or as stored ("sole_proprietorship")."""
    if isinstance(business_type, Mapping):
        business_type = business_type.get("type")
    return business_type if isinstance(business_type, str) else ""


def business_type_of(form_data: dict) -> str:
    details = form_data.get("businessDetails") or {}
    meta = form_data.get("meta") or {}
    return type_code(details.get("businessType")) or type_code(meta.get("businessType"))


def excludes_directors(business_type) -> bool:
    return type_code(business_type) in NO_DIRECTOR_BUSINESS_TYPES


# ────────── SEQUENCER ──────────

def visible_steps(form_data: dict, catalog=STEP_CATALOG) -> list[StepDefinition]:
    """Catalog filtered by applicability, catalog order preserved."""
    return [step for step in catalog if step.is_applicable(form_data)]


def can_navigate_to(index: int, step_status: dict, steps: list[StepDefinition]) -> bool:
    """A step is reachable if it is done, it is the first step, or its left sibling is done."""
    if index < 0 or index >= len(steps):
        return False

    def done(key):
        status = step_status.get(key) or {}
        return bool(status.get("isDone"))

    if done(steps[index].key) or index == 0:
        return True
    return done(steps[index - 1].key)


def resolve_active_index_after_filter_change(previous_key: Optional[str], steps: list[StepDefinition],
                                             previous_index: int = 0) -> int:
    """Where the active step lands after the visible list changed.

    A still-visible step keeps focus. A step that disappeared hands focus to the
    next catalog step that is still visible (directors → financialInfo). Anything
    past the end clamps to the last visible step.
    """
    if not steps:
        return 0
    keys = [step.key for step in steps]
    if previous_key in keys:
        return keys.index(previous_key)

    if previous_key in CATALOG_KEYS:
        for key in CATALOG_KEYS[CATALOG_KEYS.index(previous_key) + 1:]:
            if key in keys:
                return keys.index(key)
        return len(steps) - 1

    return max(0, min(previous_index, len(steps) - 1))


def next_index(index: int, steps: list[StepDefinition]) -> int:
    return min(index + 1, max(len(steps) - 1, 0))


def previous_index(index: int, steps: list[StepDefinition]) -> int:
    return max(index - 1, 0)


def index_of(key: str, steps: list[StepDefinition]) -> int:
    for i, step in enumerate(steps):
        if step.key == key:
            return i
    return -1


# ────────── BUSINESS TYPE SIDE EFFECTS ──────────

def business_type_change_actions(previous_type, new_type) -> list[dict]:
    """Actions that keep step flags consistent with a business type change.

    The document catalog is type dependent, so every change drops the collected
    documents and the KYC completion flag. The directors flag follows
    applicability: done when the step no longer applies, cleared when it
    applies again.
    """
    previous_code, new_code = type_code(previous_type), type_code(new_type)
    if previous_code == new_code:
        return []

    actions = []
    if excludes_directors(new_code):
        actions.append(set_step_status({"directors": {"isDone": True}}))
        actions.append(set_form_data({"directors": []}))
    elif excludes_directors(previous_code):
        actions.append(set_step_status({"directors": {"isDone": False}}))

    actions.append(set_step_status({"kycDocuments": {"isDone": False}}))
    actions.append(set_form_data({"kycDocuments": {"docs": []}}))
    return actions


def sync_directors_status(state) -> Optional[dict]:
    """Auto-complete the directors step while the business type excludes it."""
    if not excludes_directors(business_type_of(state["form_data"])):
        return None
    status = state.get("step_status", {}).get("directors") or {}
    if status.get("isDone"):
        return None
    return set_step_status({"directors": {"isDone": True}})
