"""Completion gate for the Business Onboarding wizard

pending → completed, one way. The finalize call reaches the backend at most
once at a time, and never again after it succeeded.
"""
from __future__ import annotations

import asyncio
from datetime import date
from typing import Callable, Optional

from wizard.config import COMPLETION_DISPLAY_DELAY
from wizard.state import WizardStore, set_form_data, set_step_status
from wizard.steps import business_type_of, excludes_directors
from wizard.sync import SyncResult

PENDING = "pending"
COMPLETED = "completed"

BUSINESS_TYPE_LABELS = {
    "sole_proprietorship": "Sole Proprietorship",
    "partnership": "Partnership",
    "private_limited": "Private Limited",
    "public_limited": "Public Limited",
    "non_profit": "Non-profit",
}

EMPTY = "---"


def _show(value) -> str:
    if value is None or value == "":
        return EMPTY
    if isinstance(value, date):
        return value.strftime("%d.%m.%Y")
    return str(value)


def _show_date(value) -> str:
    if isinstance(value, str) and len(value) >= 10:
        try:
            return date.fromisoformat(value[:10]).strftime("%d.%m.%Y")
        except ValueError:
            return value
    return _show(value)


def business_type_label(form_data: dict) -> str:
    meta = form_data.get("meta") or {}
    if meta.get("businessTypeName"):
        return meta["businessTypeName"]
    raw = (form_data.get("businessDetails") or {}).get("businessType")
    if isinstance(raw, dict) and raw.get("name"):
        return raw["name"]
    code = business_type_of(form_data)
    return BUSINESS_TYPE_LABELS.get(code, code) or EMPTY


def summarize(form_data: dict) -> dict:
    """Read-only projection of everything collected, section → label → display value."""
    details = form_data.get("businessDetails") or {}
    address = form_data.get("businessAddress") or {}
    financial = form_data.get("financialInfo") or {}

    level = details.get("businessLevel")
    if isinstance(level, dict):
        level = level.get("alias") or level.get("level")

    phone = EMPTY
    if address.get("dialCode") and address.get("phone"):
        phone = f"{address['dialCode']} {address['phone']}"

    sections = {
        "Business Details": {
            "Business Name": _show(details.get("businessName")),
            "Registration Number": _show(details.get("registrationNumber")),
            "Nature of Business": _show(details.get("natureOfBusiness")),
            "Country of Registration": _show(details.get("countryOfRegistration")),
            "Date of Registration": _show_date(details.get("dateOfRegistration")),
            "Business Type": business_type_label(form_data),
            "Business Level": _show(level),
        },
        "Business Address": {
            "Registered Office": _show(address.get("registeredOffice")),
            "Registered Office Address": _show(address.get("registeredOfficeAddress")),
            "Postal Address": _show(address.get("postalAddress")),
            "Postal Code": _show(address.get("postalCode")),
            "Mobile Number": phone,
            "Business Email": _show(address.get("businessEmail")),
            "Website": _show(address.get("websiteUrl")),
            "Address": _show(address.get("address")),
        },
    }

    if not excludes_directors(business_type_of(form_data)):
        sections["Directors"] = [
            {"Name": _show(d.get("name")), "Email": _show(d.get("email")), "Position": _show(d.get("position"))}
            for d in form_data.get("directors") or []
        ]

    sections["Financial Info"] = {
        "Source of Wealth": _show(financial.get("sourceOfWealth")),
        "Source of Funds": _show(financial.get("sourceOfFunds")),
        "Expected Annual Turnover": _show(financial.get("expectedAnnualTurnover")),
        "TIN Number": _show(financial.get("tinNumber")),
    }
    sections["KYC Documents"] = [
        {
            "Document": _show(doc.get("docName")),
            "Status": _show(doc.get("approvalStatus")),
            "Expires On": _show_date(doc.get("expiresOn")),
            "File": _show(doc.get("url")),
        }
        for doc in (form_data.get("kycDocuments") or {}).get("docs", [])
    ]
    sections["Administrators"] = [
        {
            "Name": " ".join(p for p in (a.get("firstName"), a.get("middleName"), a.get("lastName")) if p) or EMPTY,
            "Email": _show(a.get("email")),
        }
        for a in form_data.get("admins") or []
    ]
    return sections


class CompletionGate:
    """Single idempotent finalize for one wizard session."""

    def __init__(self, store: WizardStore, api, on_success: Optional[Callable] = None,
                 delay: float = COMPLETION_DISPLAY_DELAY):
        self.store = store
        self.api = api
        self.on_success = on_success
        self.delay = delay
        self.status = PENDING
        self.error = ""
        self._in_flight = False
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def summary(self) -> dict:
        return summarize(self.store.form_data)

    async def finalize(self) -> SyncResult:
        """Call complete-onboarding once.

        Repeated calls while in flight or after completion are dropped without
        touching the backend and come back with duplicate=True.
        """
        business_id = self.store.business_id
        if self._in_flight or self.status == COMPLETED:
            print(f"[GATE] Duplicate finalize ignored for business {business_id}")
            return SyncResult(ok=self.status == COMPLETED, business_id=business_id, duplicate=True)

        if business_id is None:
            self.error = "Nothing to finalize: the draft has not been saved yet."
            return SyncResult(ok=False, message=self.error)

        self._in_flight = True
        self.error = ""
        try:
            resp = await self.api.complete_onboarding(business_id)
        finally:
            self._in_flight = False

        if not resp.get("success"):
            self.error = resp.get("message") or "Failed to complete onboarding."
            print(f"[GATE] Finalize failed for business {business_id}: {self.error}")
            return SyncResult(ok=False, message=self.error, business_id=business_id)

        self.status = COMPLETED
        self.store.dispatch(set_form_data({"declaration": {"completed": True}}))
        self.store.dispatch(set_step_status({"declaration": {"isDone": True}}))
        print(f"[GATE] Business {business_id} onboarding completed")

        if self.on_success is not None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.delay, self.on_success, business_id)

        return SyncResult(
            ok=True,
            message=resp.get("message") or "Business onboarding completed successfully!",
            business_id=business_id,
        )

    def cancel(self) -> None:
        """Drop a scheduled success callback (host closed before it fired)."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
