"""State definition and reducer for the Business Onboarding wizard

The store is a pure reducer: action in, new state out. It never raises, since
the same state drives rendering and has to survive partial backend responses.
"""
from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any, Callable, Optional, TypedDict


# ────────── ACTIONS ──────────

SET_BUSINESS_ID = "SET_BUSINESS_ID"
SET_FORM_DATA = "SET_FORM_DATA"
SET_STEP_STATUS = "SET_STEP_STATUS"
RESET_FORM = "RESET_FORM"


def set_business_id(business_id) -> dict:
    return {"type": SET_BUSINESS_ID, "payload": business_id}


def set_form_data(partial: dict) -> dict:
    return {"type": SET_FORM_DATA, "payload": partial}


def set_step_status(partial: dict) -> dict:
    return {"type": SET_STEP_STATUS, "payload": partial}


def reset_form() -> dict:
    return {"type": RESET_FORM}


# ────────── STATE SHAPE ──────────

class StepStatus(TypedDict):
    isDone: bool


class WizardState(TypedDict):
    # Assigned by the backend on the first successful draft save
    business_id: Optional[Any]

    # Step key → step record (camelCase fields)
    form_data: dict[str, Any]

    # Step key → {"isDone": bool}; a missing key means not done
    step_status: dict[str, StepStatus]


BUSINESS_DETAILS = {
    "businessName": "",
    "registrationNumber": "",
    "natureOfBusiness": "",
    "countryOfRegistration": "",
    "dateOfRegistration": None,
    "businessType": "",     # type code, or {"type", "name"} as picked in the form
    "businessLevel": "",
}

BUSINESS_ADDRESS = {
    "registeredOffice": "",
    "registeredOfficeAddress": "",
    "address": "",
    "city": "",
    "state": "",
    "postalCode": "",
    "postalAddress": "",
    "postalCity": "",
    "postalState": "",
    "postalPostalCode": "",
    "postalCountry": "",
    "dialCode": "",
    "phone": "",
    "businessEmail": "",
    "websiteUrl": "",
}

FINANCIAL_INFO = {
    "sourceOfWealth": "",
    "sourceOfFunds": "",
    "expectedAnnualTurnover": "",
    "tinNumber": "",
}

DECLARATION = {
    "agreed": False,
    "fullName": "",
    "completed": False,
}

META = {
    "businessStatus": "",
    "verificationStatus": "",
    "kycStatus": "",
    "businessType": "",
    "businessTypeName": "",
    "correctionComments": None,
}

DIRECTOR = {"name": "", "email": "", "position": ""}
ADMIN = {"firstName": "", "lastName": "", "middleName": "", "email": ""}

# An uploaded KYC record as held in formData.kycDocuments.docs
KYC_DOC = {
    "id": None,
    "docId": None,
    "docName": "Document",
    "requirementLevel": "required",
    "expiresType": "never",
    "approvalStatus": None,
    "url": None,
    "expiresOn": None,
}

RECORD_SHAPES = {
    "businessDetails": BUSINESS_DETAILS,
    "businessAddress": BUSINESS_ADDRESS,
    "financialInfo": FINANCIAL_INFO,
    "declaration": DECLARATION,
    "meta": META,
}

LIST_ITEM_SHAPES = {
    "directors": DIRECTOR,
    "admins": ADMIN,
}


def initial_state() -> WizardState:
    """Fresh starting state; nothing shared with earlier sessions."""
    return WizardState(
        business_id=None,
        form_data={
            "businessDetails": dict(BUSINESS_DETAILS),
            "businessAddress": dict(BUSINESS_ADDRESS),
            "directors": [dict(DIRECTOR)],
            "financialInfo": dict(FINANCIAL_INFO),
            "kycDocuments": {"docs": []},
            "admins": [dict(ADMIN)],
            "declaration": dict(DECLARATION),
            "meta": dict(META),
        },
        step_status={},
    )


def is_done(state: WizardState, step_key: str) -> bool:
    status = state.get("step_status", {}).get(step_key)
    return bool(status and status.get("isDone"))


# ────────── NORMALISATION ──────────

def _coerce(shape: dict, incoming) -> dict:
    """Known fields only; None falls back to the field's default."""
    if not isinstance(incoming, Mapping):
        return {}
    out = {}
    for field, default in shape.items():
        if field not in incoming:
            continue
        value = incoming[field]
        out[field] = copy.copy(default) if value is None else value
    return out


def _index(key) -> Optional[int]:
    try:
        return int(str(key).strip())
    except ValueError:
        return None


def as_list(incoming) -> list:
    """A list, or the values of a mapping: index order when every key is an index, else insertion order."""
    if isinstance(incoming, list):
        return incoming
    if isinstance(incoming, tuple):
        return list(incoming)
    if isinstance(incoming, Mapping):
        keys = list(incoming.keys())
        indexes = [_index(k) for k in keys]
        if None not in indexes:
            keys = [k for _, k in sorted(zip(indexes, keys), key=lambda pair: pair[0])]
        return [incoming[k] for k in keys]
    return []


def _normalize_items(shape: dict, items) -> list[dict]:
    return [{**shape, **_coerce(shape, item)} for item in as_list(items)]


# ────────── MERGE STRATEGIES ──────────

def _shallow_merge(key: str, existing, incoming):
    shape = RECORD_SHAPES[key]
    base = existing if isinstance(existing, Mapping) else shape
    return {**base, **_coerce(shape, incoming)}


def _replace(key: str, existing, incoming):
    shape = RECORD_SHAPES[key]
    return {**copy.deepcopy(shape), **_coerce(shape, incoming)}


def _replace_list(key: str, existing, incoming):
    return _normalize_items(LIST_ITEM_SHAPES[key], incoming)


def _normalize_docs(key: str, existing, incoming):
    if isinstance(incoming, Mapping):
        if "docs" not in incoming:
            return existing if isinstance(existing, Mapping) else {"docs": []}
        incoming = incoming["docs"]
    return {"docs": _normalize_items(KYC_DOC, incoming)}


MERGE_STRATEGIES: dict[str, Callable] = {
    "businessDetails": _shallow_merge,
    "businessAddress": _shallow_merge,
    "directors": _replace_list,
    "financialInfo": _shallow_merge,
    "kycDocuments": _normalize_docs,
    "admins": _replace_list,
    "declaration": _shallow_merge,
    "meta": _replace,
}


# ────────── REDUCER ──────────

def reduce(state: WizardState, action: dict) -> WizardState:
    """Apply one action and return the new state. The input is not mutated."""
    if not isinstance(action, Mapping):
        return state
    kind = action.get("type")
    payload = action.get("payload")

    if kind == SET_BUSINESS_ID:
        if state.get("business_id") is not None or payload is None or payload == "":
            return state
        return {**state, "business_id": payload}

    if kind == SET_FORM_DATA:
        if not isinstance(payload, Mapping):
            return state
        form_data = dict(state["form_data"])
        for key, incoming in payload.items():
            merge = MERGE_STRATEGIES.get(key)
            if merge is None:
                continue
            form_data[key] = merge(key, form_data.get(key), incoming)
        return {**state, "form_data": form_data}

    if kind == SET_STEP_STATUS:
        if not isinstance(payload, Mapping):
            return state
        step_status = dict(state.get("step_status", {}))
        for key, status in payload.items():
            if isinstance(status, Mapping):
                step_status[key] = {"isDone": bool(status.get("isDone"))}
        return {**state, "step_status": step_status}

    if kind == RESET_FORM:
        return initial_state()

    return state


class WizardStore:
    """Holds the state for one wizard session; every mutation goes through dispatch."""

    def __init__(self, state: Optional[WizardState] = None):
        self.state: WizardState = state or initial_state()
        self._listeners: list[Callable[[WizardState, WizardState], None]] = []

    def dispatch(self, action: dict) -> WizardState:
        previous = self.state
        self.state = reduce(previous, action)
        if self.state is not previous:
            for listener in list(self._listeners):
                listener(previous, self.state)
        return self.state

    def subscribe(self, listener: Callable[[WizardState, WizardState], None]) -> Callable[[], None]:
        """Register a (previous, current) listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def business_id(self):
        return self.state.get("business_id")

    @property
    def form_data(self) -> dict:
        return self.state["form_data"]
