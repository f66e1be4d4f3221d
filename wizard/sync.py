"""Draft synchronization between the wizard store and the backend record

Two-phase per step: apply the submitted step locally, then refetch the full
business record and fold it back in. This module is the only place that
knows both naming conventions: backend snake_case on one side, wizard
camelCase step records on the other.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from wizard.state import WizardStore, set_business_id, set_form_data, set_step_status
from wizard.steps import type_code


@dataclass
class SyncResult:
    ok: bool
    message: str = ""
    business_id: Optional[object] = None
    # Save went through but the refetch did not; state is stale but consistent
    warning: str = ""
    # Repeat submission that was suppressed without reaching the backend
    duplicate: bool = False


# ────────── FIELD MAPS (wizard field → backend field) ──────────

BUSINESS_DETAILS_FIELDS = {
    "businessName": "business_name",
    "registrationNumber": "registration_number",
    "natureOfBusiness": "nature_of_business",
    "countryOfRegistration": "country_of_registration",
    "dateOfRegistration": "date_of_registration",
    "businessType": "business_type",
    "businessLevel": "business_level",
}

BUSINESS_ADDRESS_FIELDS = {
    "registeredOffice": "registered_office",
    "registeredOfficeAddress": "registered_office_address",
    "address": "address",
    "city": "city",
    "state": "state",
    "postalCode": "postal_code",
    "postalAddress": "postal_address",
    "postalCity": "postal_city",
    "postalState": "postal_state",
    "postalPostalCode": "postal_postal_code",
    "postalCountry": "postal_country",
    "dialCode": "mobile_country_code",
    "phone": "mobile_number",
    "businessEmail": "business_email",
    "websiteUrl": "website_url",
}

FINANCIAL_INFO_FIELDS = {
    "sourceOfWealth": "source_of_wealth",
    "sourceOfFunds": "source_of_funds",
    "expectedAnnualTurnover": "expected_annual_turnover",
    "tinNumber": "tin_number",
}

META_FIELDS = {
    "businessStatus": "status",
    "verificationStatus": "verification_status",
    "kycStatus": "kyc_status",
    "businessType": "business_type",
    "businessTypeName": "business_type_name",
    "correctionComments": "correction_comments",
}

DIRECTOR_FIELDS = {"name": "name", "email": "email", "position": "position"}

ADMIN_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "middleName": "middle_name",
    "email": "email",
}

KYC_DOC_FIELDS = {
    "id": "id",
    "docId": "doc_id",
    "docName": "doc_name",
    "requirementLevel": "requirement_level",
    "expiresType": "expires_type",
    "approvalStatus": "approval_status",
    "url": "url",
    "expiresOn": "expires_on",
}

RECORD_FIELD_MAPS = {
    "businessDetails": BUSINESS_DETAILS_FIELDS,
    "businessAddress": BUSINESS_ADDRESS_FIELDS,
    "financialInfo": FINANCIAL_INFO_FIELDS,
    "meta": META_FIELDS,
}

# step key → (backend list field, item field map)
LIST_FIELD_MAPS = {
    "directors": ("directors_names", DIRECTOR_FIELDS),
    "admins": ("admins", ADMIN_FIELDS),
    "kycDocuments": ("kyc_docs", KYC_DOC_FIELDS),
}


# ────────── BACKEND → WIZARD ──────────

def _pick(record: dict, fields: dict) -> dict:
    return {ours: record[theirs] for ours, theirs in fields.items() if theirs in record}


def _items_in(value) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return list(value.values())
    return []


def record_to_form_data(record: dict) -> dict:
    """Backend business record → formData partial.

    Only steps with at least one field present in the record are returned,
    so a partial response never clobbers unrelated local data.
    """
    if not isinstance(record, dict):
        return {}

    partial = {}
    for step_key, fields in RECORD_FIELD_MAPS.items():
        picked = _pick(record, fields)
        if picked:
            partial[step_key] = picked

    for step_key, (backend_field, fields) in LIST_FIELD_MAPS.items():
        if backend_field not in record:
            continue
        items = [_pick(item, fields) for item in _items_in(record[backend_field]) if isinstance(item, dict)]
        partial[step_key] = {"docs": items} if step_key == "kycDocuments" else items

    return partial


# ────────── WIZARD → BACKEND ──────────

def _wire_value(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    return value


def step_to_payload(step_key: str, step_data) -> dict:
    """Submitted step data → backend field names for save-draft."""
    if step_key in ("directors", "admins"):
        backend_field, fields = LIST_FIELD_MAPS[step_key]
        items = step_data if isinstance(step_data, list) else _items_in(step_data)
        return {backend_field: [
            {theirs: _wire_value(item.get(ours)) for ours, theirs in fields.items() if ours in item}
            for item in items if isinstance(item, dict)
        ]}

    fields = RECORD_FIELD_MAPS.get(step_key)
    if fields is None or not isinstance(step_data, dict):
        return dict(step_data) if isinstance(step_data, dict) else {}

    payload = {}
    for ours, theirs in fields.items():
        if ours not in step_data:
            continue
        value = step_data[ours]
        if ours == "businessType":
            value = type_code(value) or value
        elif ours == "businessLevel" and isinstance(value, dict):
            value = value.get("level", "")
        payload[theirs] = _wire_value(value)
    return payload


# ────────── PROTOCOL ──────────

def load_draft(store: WizardStore, record: dict) -> None:
    """Seed a fresh session from an existing draft row."""
    if not isinstance(record, dict):
        return
    if record.get("business_id") is not None:
        store.dispatch(set_business_id(record["business_id"]))
    partial = record_to_form_data(record)
    if partial:
        store.dispatch(set_form_data(partial))


async def refetch_and_reconcile(store: WizardStore, api) -> SyncResult:
    """Fold the authoritative business record into the store.

    A failed fetch leaves local state untouched. A response for a business
    other than the one the store now holds (session reset mid-flight) is dropped.
    """
    business_id = store.business_id
    if business_id is None:
        return SyncResult(ok=True)

    resp = await api.get_business(business_id)
    record = resp.get("data")
    if not resp.get("success") or not isinstance(record, dict):
        message = resp.get("message") or "Failed to load form data."
        print(f"[SYNC] Refetch failed for business {business_id}: {message}")
        return SyncResult(ok=False, message=message, business_id=business_id)

    if store.business_id != business_id:
        print(f"[SYNC] Dropping stale refetch for business {business_id}")
        return SyncResult(ok=True, business_id=store.business_id)

    partial = record_to_form_data(record)
    if partial:
        store.dispatch(set_form_data(partial))
    print(f"[SYNC] Reconciled business {business_id}: {', '.join(partial) or 'no fields'}")
    return SyncResult(ok=True, message="Form updated successfully!", business_id=business_id)


async def save_step(store: WizardStore, api, step_key: str, step_data) -> SyncResult:
    """Persist one step and reconcile.

    On failure nothing in the store changes: no business id, no completion flag.
    """
    business_id = store.business_id
    resp = await api.save_draft(business_id, step_key, step_to_payload(step_key, step_data))

    if not resp.get("success"):
        message = resp.get("message") or "Failed to save draft"
        print(f"[SYNC] Save failed for {step_key}: {message}")
        return SyncResult(ok=False, message=message, business_id=business_id)

    data = resp.get("data") if isinstance(resp.get("data"), dict) else {}
    if business_id is None and data.get("business_id") is not None:
        store.dispatch(set_business_id(data["business_id"]))
        print(f"[SYNC] Draft created, business id {data['business_id']}")

    store.dispatch(set_form_data({step_key: step_data}))
    store.dispatch(set_step_status({step_key: {"isDone": True}}))

    refetched = await refetch_and_reconcile(store, api)
    return SyncResult(
        ok=True,
        message=resp.get("message") or "Saved as draft",
        business_id=store.business_id,
        warning="" if refetched.ok else refetched.message,
    )
