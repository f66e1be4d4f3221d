"""KYC document reconciliation for the Business Onboarding wizard

Merges the document-type catalog for the business's current type with the
documents already uploaded for it, producing one DocumentRequirement per
catalog entry. Requirements are ephemeral: recomputed whenever the business
id first appears or the business type changes, never stored in the wizard state.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from wizard.config import ALLOWED_KYC_TYPES, MAX_KYC_FILE_SIZE
from wizard.state import WizardStore, set_form_data, set_step_status
from wizard.sync import SyncResult, record_to_form_data, refetch_and_reconcile
from wizard.validation import StepValidationError

STEP_KEY = "kycDocuments"

# Older catalogs say "mandatory"
REQUIRED_LEVELS = {"required", "mandatory"}


@dataclass
class PendingFile:
    """A file attached in this session, not yet uploaded."""
    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

    def problem(self) -> Optional[str]:
        if self.content_type not in ALLOWED_KYC_TYPES:
            return "Only PNG, JPEG or PDF files are accepted"
        if self.size > MAX_KYC_FILE_SIZE:
            return f"Max file size is {MAX_KYC_FILE_SIZE // (1024 * 1024)}MB"
        return None


def _to_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


class DocumentRequirement(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    doc_type_id: Any
    doc_name: str = "Document"
    requirement_level: Literal["required", "optional"] = "required"
    expiry_policy: Literal["never", "date"] = "never"
    uploaded_record_id: Optional[Any] = None
    approval_status: Optional[Literal["pending", "approved", "declined"]] = None
    stored_file_reference: Optional[str] = None
    expires_on: Optional[date] = None
    pending_local_file: Optional[PendingFile] = None

    @field_validator("requirement_level", mode="before")
    @classmethod
    def _level(cls, v):
        return "required" if v in REQUIRED_LEVELS or v is None else "optional"

    @field_validator("expiry_policy", mode="before")
    @classmethod
    def _policy(cls, v):
        return "date" if v == "date" else "never"

    @field_validator("approval_status", mode="before")
    @classmethod
    def _status(cls, v):
        return v if v in ("pending", "approved", "declined") else None

    @field_validator("expires_on", mode="before")
    @classmethod
    def _expiry(cls, v):
        return _to_date(v)

    @property
    def is_required(self) -> bool:
        return self.requirement_level == "required"

    def is_expired(self, today: Optional[date] = None) -> bool:
        """Expired once the expiry day itself has started."""
        today = today or date.today()
        return self.expires_on is not None and self.expires_on <= today

    def show_upload(self, today: Optional[date] = None) -> bool:
        """Approved and still valid hides the upload control; anything else shows it."""
        if self.approval_status != "approved":
            return True
        if self.expiry_policy == "never":
            return False
        return self.is_expired(today)

    def satisfies_gate(self) -> bool:
        if not self.is_required:
            return True
        return (
            self.pending_local_file is not None
            or self.uploaded_record_id is not None
            or bool(self.stored_file_reference)
            or self.approval_status == "pending"
        )

    def attach(self, file: Optional[PendingFile], expires_on=None) -> None:
        self.pending_local_file = file
        if expires_on is not None:
            self.expires_on = _to_date(expires_on)

    def as_record(self) -> dict:
        """Shape held in formData.kycDocuments.docs."""
        return {
            "id": self.uploaded_record_id,
            "docId": self.doc_type_id,
            "docName": self.doc_name,
            "requirementLevel": self.requirement_level,
            "expiresType": self.expiry_policy,
            "approvalStatus": self.approval_status,
            "url": self.stored_file_reference,
            "expiresOn": self.expires_on.isoformat() if self.expires_on else None,
        }


# ────────── RECONCILIATION ──────────

def _same_id(a, b) -> bool:
    return a is not None and b is not None and str(a) == str(b)


def reconcile(catalog: list[dict], uploaded: list[dict]) -> list[DocumentRequirement]:
    """One requirement per catalog entry, in catalog order.

    catalog:  [{"id", "doc_name", "requirement_level", "expires_type"}] (backend)
    uploaded: formData.kycDocuments.docs (wizard shape)
    """
    requirements = []
    for entry in catalog or []:
        if not isinstance(entry, dict):
            continue
        existing = next((doc for doc in uploaded or [] if _same_id(doc.get("docId"), entry.get("id"))), None)
        existing = existing or {}
        requirements.append(DocumentRequirement(
            doc_type_id=entry.get("id"),
            doc_name=entry.get("doc_name") or "Document",
            requirement_level=entry.get("requirement_level"),
            expiry_policy=entry.get("expires_type"),
            uploaded_record_id=existing.get("id"),
            approval_status=existing.get("approvalStatus"),
            stored_file_reference=existing.get("url") or None,
            expires_on=existing.get("expiresOn"),
        ))
    return requirements


def refresh(requirements: list[DocumentRequirement], uploaded: list[dict]) -> list[DocumentRequirement]:
    """Re-merge against a new uploaded list without fetching the catalog again."""
    catalog = [
        {
            "id": req.doc_type_id,
            "doc_name": req.doc_name,
            "requirement_level": req.requirement_level,
            "expires_type": req.expiry_policy,
        }
        for req in requirements
    ]
    return reconcile(catalog, uploaded)


def is_ready(requirements: list[DocumentRequirement]) -> bool:
    return all(req.satisfies_gate() for req in requirements)


def needs_upload(requirements: list[DocumentRequirement]) -> bool:
    return any(req.pending_local_file is not None for req in requirements)


def check(requirements: list[DocumentRequirement]) -> None:
    """Raise StepValidationError for missing required files or unacceptable attachments."""
    errors = {}
    for i, req in enumerate(requirements):
        if req.pending_local_file is not None:
            problem = req.pending_local_file.problem()
            if problem:
                errors[f"docs.{i}.file"] = problem
                continue
        if not req.satisfies_gate():
            errors[f"docs.{i}.file"] = "This file is required"
    if errors:
        raise StepValidationError(STEP_KEY, errors)


# ────────── PROTOCOL ──────────

async def load_requirements(store: WizardStore, api) -> tuple[list[DocumentRequirement], SyncResult]:
    """Refetch the record, fetch the catalog for the current type, reconcile.

    A failed refetch still reconciles against the local documents; a failed
    catalog fetch returns no requirements and the error.
    """
    business_id = store.business_id
    if business_id is None:
        return [], SyncResult(ok=False, message="Save the business details first.")

    refetched = await refetch_and_reconcile(store, api)

    resp = await api.kyc_doc_types(business_id)
    if not resp.get("success") or not isinstance(resp.get("data"), list):
        message = resp.get("message") or "Failed to fetch KYC document types"
        print(f"[KYC] Catalog fetch failed for business {business_id}: {message}")
        return [], SyncResult(ok=False, message=message, business_id=business_id)

    uploaded = store.form_data.get("kycDocuments", {}).get("docs", [])
    requirements = reconcile(resp["data"], uploaded)
    print(f"[KYC] {len(requirements)} document types for business {business_id}, "
          f"{sum(1 for r in requirements if r.uploaded_record_id is not None)} already uploaded")
    return requirements, SyncResult(
        ok=True, business_id=business_id, warning="" if refetched.ok else refetched.message,
    )


async def submit_documents(store: WizardStore, api, requirements: list[DocumentRequirement]) -> SyncResult:
    """Upload attached files in one batch, or skip the call when there is nothing new.

    Raises StepValidationError before any network call when a required
    document is missing or an attachment is unacceptable.
    """
    business_id = store.business_id
    if business_id is None:
        return SyncResult(ok=False, message="Save the business details first.")

    check(requirements)

    if not needs_upload(requirements):
        store.dispatch(set_step_status({STEP_KEY: {"isDone": True}}))
        print(f"[KYC] Nothing new to upload for business {business_id}, step marked done")
        return SyncResult(ok=True, message="Documents already on file", business_id=business_id)

    docs = [
        {
            "doc_id": req.doc_type_id,
            "file": req.pending_local_file,
            "expires_on": req.expires_on.isoformat() if req.expires_on else None,
        }
        for req in requirements
    ]
    resp = await api.upload_kyc_documents(business_id, docs)
    if not resp.get("success"):
        message = resp.get("message") or "Upload failed."
        print(f"[KYC] Upload failed for business {business_id}: {message}")
        return SyncResult(ok=False, message=message, business_id=business_id)

    returned = resp.get("data")
    if isinstance(returned, list):
        store.dispatch(set_form_data(record_to_form_data({"kyc_docs": returned})))
    else:
        store.dispatch(set_form_data({STEP_KEY: {"docs": [req.as_record() for req in requirements]}}))
    store.dispatch(set_step_status({STEP_KEY: {"isDone": True}}))

    uploaded_count = sum(1 for req in requirements if req.pending_local_file is not None)
    for req in requirements:
        req.pending_local_file = None
    print(f"[KYC] Uploaded {uploaded_count} document(s) for business {business_id}")

    refetched = await refetch_and_reconcile(store, api)
    return SyncResult(
        ok=True,
        message=resp.get("message") or "Documents uploaded",
        business_id=business_id,
        warning="" if refetched.ok else refetched.message,
    )
