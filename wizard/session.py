"""One onboarding wizard session: store, navigation, and step submission

Ordering per step: validate → save → reconcile → advance. The active step
only moves once the save has resolved, and only if the user is still on the
step that was submitted.
"""
from __future__ import annotations

from datetime import date
from typing import Callable, Optional

from wizard import kyc
from wizard.completion import CompletionGate
from wizard.config import COMPLETION_DISPLAY_DELAY
from wizard.state import WizardStore, set_form_data
from wizard.steps import (
    STEP_CATALOG, business_type_change_actions, business_type_of, can_navigate_to,
    index_of, next_index, previous_index, resolve_active_index_after_filter_change,
    sync_directors_status, type_code, visible_steps,
)
from wizard.sync import SyncResult, load_draft, refetch_and_reconcile, save_step
from wizard.validation import LIST_STEPS, list_items, validate_step

STEPS_BY_KEY = {step.key: step for step in STEP_CATALOG}


class WizardSession:
    def __init__(self, api, draft: Optional[dict] = None,
                 on_draft_saved: Optional[Callable] = None,
                 on_success: Optional[Callable] = None,
                 completion_delay: float = COMPLETION_DISPLAY_DELAY):
        self.api = api
        self.on_draft_saved = on_draft_saved
        self.on_success = on_success
        self.completion_delay = completion_delay

        self.store = WizardStore()
        self._unsubscribe = self.store.subscribe(self._on_change)
        self.gate = CompletionGate(self.store, api, on_success, completion_delay)
        self.error = ""

        self._active_key = STEP_CATALOG[0].key
        # Bumped on every navigation; a response from an older generation may not navigate
        self._generation = 0
        self._busy: set[str] = set()

        # KYC requirements; None means they must be (re)loaded
        self.requirements: Optional[list[kyc.DocumentRequirement]] = None
        self._kyc_epoch = 0

        if draft:
            load_draft(self.store, draft)

    # ────────── STATE ──────────

    @property
    def state(self):
        return self.store.state

    @property
    def business_id(self):
        return self.store.business_id

    def visible(self):
        return visible_steps(self.store.form_data)

    @property
    def active_index(self) -> int:
        return max(index_of(self._active_key, self.visible()), 0)

    @property
    def active_step(self):
        return self.visible()[self.active_index]

    def is_busy(self, step_key: str) -> bool:
        return step_key in self._busy

    def _on_change(self, previous, current):
        """React to state changes: business type side effects, KYC invalidation, focus."""
        previous_type = business_type_of(previous["form_data"])
        new_type = business_type_of(current["form_data"])
        if previous_type != new_type:
            if previous_type and new_type:
                print(f"[STEPS] Business type changed {previous_type} → {new_type}")
                for action in business_type_change_actions(previous_type, new_type):
                    self.store.dispatch(action)
            self._invalidate_requirements()

        if previous["business_id"] is None and current["business_id"] is not None:
            self._invalidate_requirements()

        action = sync_directors_status(self.store.state)
        if action is not None:
            self.store.dispatch(action)

        steps = self.visible()
        if self._active_key not in [step.key for step in steps]:
            index = resolve_active_index_after_filter_change(self._active_key, steps)
            print(f"[STEPS] {self._active_key} no longer applies, moving to {steps[index].key}")
            self._active_key = steps[index].key
            self._generation += 1

    def _invalidate_requirements(self):
        self.requirements = None
        self._kyc_epoch += 1

    # ────────── NAVIGATION ──────────

    def _move_to(self, key: str):
        self._active_key = key
        self._generation += 1

    def go_to(self, index: int) -> bool:
        """Direct jump (stepper click). Refused unless the sequencing rule allows it."""
        steps = self.visible()
        if not can_navigate_to(index, self.store.state["step_status"], steps):
            return False
        if steps[index].key != self._active_key:
            self._move_to(steps[index].key)
        return True

    def back(self) -> None:
        steps = self.visible()
        self._move_to(steps[previous_index(self.active_index, steps)].key)

    def _advance_from(self, step_key: str, generation: int) -> None:
        if generation != self._generation or self._active_key != step_key:
            print(f"[STEPS] {step_key} resolved after navigation away, not advancing")
            return
        steps = self.visible()
        self._move_to(steps[next_index(index_of(step_key, steps), steps)].key)

    # ────────── LIFECYCLE ──────────

    async def open(self) -> SyncResult:
        """Pull the authoritative record when the wizard opens on an existing draft."""
        return await refetch_and_reconcile(self.store, self.api)

    def close(self) -> None:
        """Host dialog closed: drop everything so nothing leaks into the next session.

        The store is replaced rather than reset, so a save still in flight
        lands in the dropped store.
        """
        self.gate.cancel()
        self._unsubscribe()
        self.store = WizardStore()
        self._unsubscribe = self.store.subscribe(self._on_change)
        self.gate = CompletionGate(self.store, self.api, self.on_success, self.completion_delay)
        self._active_key = STEP_CATALOG[0].key
        self._generation += 1
        self._busy.clear()
        self._invalidate_requirements()
        self.error = ""

    # ────────── FORM STEPS ──────────

    def change_business_type(self, business_type) -> None:
        """Business type picked in the form, applied before the step is saved."""
        meta = dict(self.store.form_data.get("meta") or {})
        meta["businessType"] = type_code(business_type)
        if isinstance(business_type, dict) and business_type.get("name"):
            meta["businessTypeName"] = business_type["name"]
        self.store.dispatch(set_form_data({
            "businessDetails": {"businessType": business_type},
            "meta": meta,
        }))

    async def submit(self, step_key: str, data) -> SyncResult:
        """Validate, save, reconcile, then advance.

        Raises StepValidationError before any network call. A second submit of
        the same step while the first is in flight is suppressed.
        """
        step = STEPS_BY_KEY.get(step_key)
        if step is None or step_key not in [s.key for s in self.visible()]:
            return SyncResult(ok=False, message=f"Step {step_key} is not part of this onboarding")
        if step.component != "form":
            return SyncResult(ok=False, message=f"Step {step_key} is not submitted as a form")
        if step_key in self._busy:
            return SyncResult(ok=False, message="Already saving", duplicate=True)

        validate_step(step_key, data)
        if step_key in LIST_STEPS:
            data = list_items(step_key, data)
        if step_key == "businessDetails" and isinstance(data.get("dateOfRegistration"), date):
            data = {**data, "dateOfRegistration": data["dateOfRegistration"].isoformat()}

        generation, store = self._generation, self.store
        self._busy.add(step_key)
        try:
            result = await save_step(store, self.api, step_key, data)
        finally:
            if store is self.store:
                self._busy.discard(step_key)

        if store is not self.store:
            print(f"[SESSION] {step_key} saved after the wizard closed, ignoring")
            return result
        if not result.ok:
            self.error = result.message
            return result

        self.error = result.warning
        if self.on_draft_saved is not None:
            self.on_draft_saved(result.business_id)
        self._advance_from(step_key, generation)
        return result

    async def admins_prefill(self) -> list[dict]:
        """Administrators already on file, for the admins step."""
        if self.business_id is None:
            return []
        resp = await self.api.get_business_admins(self.business_id)
        if not resp.get("success") or not isinstance(resp.get("data"), list):
            return []
        return [
            {
                "firstName": a.get("firstName") or a.get("first_name") or "",
                "lastName": a.get("lastName") or a.get("last_name") or "",
                "middleName": a.get("middleName") or a.get("middle_name") or "",
                "email": a.get("email") or "",
            }
            for a in resp["data"] if isinstance(a, dict)
        ]

    # ────────── KYC STEP ──────────

    async def load_kyc(self, force: bool = False) -> SyncResult:
        """Reconcile the document catalog against uploaded documents.

        Re-runs only when the business id first appeared, the business type
        changed, or force is set.
        """
        if self.requirements is not None and not force:
            return SyncResult(ok=True, business_id=self.business_id)

        epoch = self._kyc_epoch
        requirements, result = await kyc.load_requirements(self.store, self.api)
        if epoch != self._kyc_epoch:
            # Type or business changed while loading; the next load picks up the new catalog
            print("[KYC] Discarding requirements loaded for a superseded business type")
            return SyncResult(ok=False, message="Document requirements changed, reload.",
                              business_id=self.business_id)
        if result.ok:
            self.requirements = requirements
        else:
            self.error = result.message
        return result

    def attach_document(self, index: int, file: Optional[kyc.PendingFile], expires_on=None) -> None:
        if self.requirements is None or not 0 <= index < len(self.requirements):
            raise IndexError(f"No KYC document at position {index}")
        self.requirements[index].attach(file, expires_on)

    async def submit_kyc(self) -> SyncResult:
        step_key = kyc.STEP_KEY
        if step_key in self._busy:
            return SyncResult(ok=False, message="Already uploading", duplicate=True)
        if self.requirements is None:
            loaded = await self.load_kyc()
            if not loaded.ok:
                return loaded

        generation, store = self._generation, self.store
        self._busy.add(step_key)
        try:
            result = await kyc.submit_documents(store, self.api, self.requirements)
        finally:
            if store is self.store:
                self._busy.discard(step_key)

        if store is not self.store:
            print("[SESSION] Documents uploaded after the wizard closed, ignoring")
            return result
        if not result.ok:
            self.error = result.message
            return result
        if self.requirements is not None:
            self.requirements = kyc.refresh(self.requirements, self.store.form_data["kycDocuments"]["docs"])
        self.error = result.warning
        self._advance_from(step_key, generation)
        return result

    # ────────── COMPLETION ──────────

    def summary(self) -> dict:
        return self.gate.summary()

    async def finalize(self) -> SyncResult:
        gate = self.gate
        result = await gate.finalize()
        if gate is not self.gate:
            # Closed while finalizing; the host is already gone
            gate.cancel()
            return result
        if not result.ok and not result.duplicate:
            self.error = result.message
        return result

    def snapshot(self) -> dict:
        """JSON-safe view of the session for the hosting surface."""
        steps = self.visible()
        status = self.store.state["step_status"]
        return {
            "business_id": self.business_id,
            "active_index": self.active_index,
            "active_step": self._active_key,
            "steps": [
                {
                    "key": step.key,
                    "label": step.label,
                    "description": step.description,
                    "is_done": bool((status.get(step.key) or {}).get("isDone")),
                    "can_navigate": can_navigate_to(i, status, steps),
                    "busy": step.key in self._busy,
                }
                for i, step in enumerate(steps)
            ],
            "form_data": self.store.form_data,
            "step_status": status,
            "completion": self.gate.status,
            "error": self.error,
        }
