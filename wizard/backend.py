"""Admin console backend calls used by the Business Onboarding wizard

Every call returns the backend's own envelope, {"success", "data", "message"}.
Transport and HTTP failures are folded into the same shape with
success=False, so callers only ever handle one result type.
"""
from __future__ import annotations

import json
from typing import Optional

import httpx

from wizard.config import ONBOARDING_API_URL, ONBOARDING_API_TOKEN, REQUEST_TIMEOUT


def _failure(message: str) -> dict:
    return {"success": False, "data": None, "message": message}


class OnboardingAPI:
    """Thin async client for the onboarding endpoints.

    One instance per process; the underlying httpx client reuses connections
    across calls. Token refresh lives in the console's auth layer, not here.
    """

    def __init__(self, base_url: str = ONBOARDING_API_URL, token: str = ONBOARDING_API_TOKEN,
                 timeout: float = REQUEST_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout, transport=transport,
        )

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            print(f"[API] {method} {path} failed: {e}")
            return _failure("Network error.")

        try:
            body = resp.json()
        except (json.JSONDecodeError, ValueError):
            print(f"[API] {method} {path} returned non-JSON ({resp.status_code}): {resp.text[:200]}")
            return _failure(f"API returned {resp.status_code}")

        if not isinstance(body, dict):
            return _failure(f"Unexpected response from {path}")

        if resp.status_code >= 400:
            message = body.get("message") or body.get("error") or f"API returned {resp.status_code}"
            print(f"[API] {method} {path} -> {resp.status_code}: {message}")
            return _failure(message)

        body.setdefault("success", False)
        body.setdefault("data", None)
        body.setdefault("message", "")
        return body

    # ────────── DRAFTS ──────────

    async def save_draft(self, business_id, step: str, data: dict) -> dict:
        """Partial upsert of one step. No business_id creates the record."""
        payload = {"step": step, "data": data}
        if business_id is not None:
            payload["business_id"] = business_id
        return await self._request("POST", "/onboarding/save-draft", json=payload)

    async def get_business(self, business_id) -> dict:
        """Full business record, keyed in backend field names."""
        return await self._request("POST", "/onboarding/get-business", json={"business_id": business_id})

    async def get_business_admins(self, business_id) -> dict:
        return await self._request("POST", "/onboarding/get-business-admins", json={"business_id": business_id})

    # ────────── KYC ──────────

    async def kyc_doc_types(self, business_id) -> dict:
        """Document catalog for the business's current type."""
        return await self._request("POST", "/onboarding/kyc-doc-types", json={"business_id": business_id})

    async def upload_kyc_documents(self, business_id, docs: list[dict]) -> dict:
        """Batched multipart upload.

        docs: [{"doc_id", "file": PendingFile | None, "expires_on": "YYYY-MM-DD" | None}]
        """
        form = {"business_id": str(business_id)}
        files = []
        for i, doc in enumerate(docs):
            form[f"docs[{i}][doc_id]"] = str(doc["doc_id"])
            if doc.get("expires_on"):
                form[f"docs[{i}][expires_on]"] = doc["expires_on"]
            pending = doc.get("file")
            if pending is not None:
                files.append((f"docs[{i}][file]", (pending.filename, pending.content, pending.content_type)))
        return await self._request("POST", "/onboarding/upload-kyc-documents", data=form, files=files or None)

    # ────────── COMPLETION ──────────

    async def complete_onboarding(self, business_id) -> dict:
        return await self._request("POST", "/onboarding/complete", json={"business_id": business_id})

    # ────────── LOOKUPS ──────────

    async def business_types(self) -> dict:
        """[{"type", "name"}]"""
        return await self._request("GET", "/auth/business-types")

    async def business_levels(self) -> dict:
        """[{"level", "alias"}]"""
        return await self._request("GET", "/auth/business-levels")
