"""In-memory stand-in for the admin console onboarding endpoints, served through httpx.MockTransport"""
import asyncio
import json
import re

import httpx

from wizard.backend import OnboardingAPI

BASE_URL = "http://backend.test/api/v1/admin"
PREFIX = "/api/v1/admin"


DETAILS = {
    "businessName": "Acme Trading Ltd",
    "registrationNumber": "RC-102938",
    "natureOfBusiness": "Import and export",
    "countryOfRegistration": "Nigeria",
    "dateOfRegistration": "2019-04-12",
    "businessType": {"type": "private_limited", "name": "Private Limited"},
    "businessLevel": {"level": "tier_2", "alias": "Tier 2"},
}

SOLE_DETAILS = {
    **DETAILS,
    "businessName": "Bisi Tailoring",
    "businessType": {"type": "sole_proprietorship", "name": "Sole Proprietorship"},
}

ADDRESS = {
    "registeredOffice": "Head office",
    "registeredOfficeAddress": "12 Marina Road",
    "address": "12 Marina Road, Lagos Island",
    "city": "Lagos",
    "state": "Lagos",
    "postalCode": "101001",
    "postalAddress": "PO Box 4410",
    "dialCode": "+234",
    "phone": "8031234567",
    "businessEmail": "ops@acme.example",
    "websiteUrl": "https://acme.example",
}

DIRECTORS = [{"name": "Ada Obi", "email": "ada@acme.example", "position": "Managing Director"}]

FINANCIAL = {
    "sourceOfWealth": "Retained earnings",
    "sourceOfFunds": "Trade revenue",
    "expectedAnnualTurnover": "250000",
    "tinNumber": "TIN-8812",
}

ADMINS = [{"firstName": "Tunde", "lastName": "Bello", "middleName": "", "email": "tunde@acme.example"}]

DOC_TYPES = [
    {"id": 1, "doc_name": "Certificate of Incorporation", "requirement_level": "required", "expires_type": "never"},
    {"id": 2, "doc_name": "Proof of Address", "requirement_level": "required", "expires_type": "date"},
    {"id": 3, "doc_name": "Tax Clearance", "requirement_level": "optional", "expires_type": "date"},
]

BUSINESS_TYPES = [
    {"type": "sole_proprietorship", "name": "Sole Proprietorship"},
    {"type": "private_limited", "name": "Private Limited"},
]

BUSINESS_LEVELS = [{"level": "tier_1", "alias": "Tier 1"}, {"level": "tier_2", "alias": "Tier 2"}]


def _form_fields(body: str) -> dict:
    return dict(re.findall(r'name="([^"]+)"\r\n\r\n(.*?)\r\n', body))


def _form_files(body: str) -> dict:
    return dict(re.findall(r'name="(docs\[\d+\]\[file\])"; filename="([^"]+)"', body))


class FakeBackend:
    """Keeps business records keyed by id, in backend field names.

    fail:   paths (e.g. "/onboarding/save-draft") answering success=false
    hold:   when set, the paths in held wait on it before answering
    """

    held = ("/onboarding/save-draft", "/onboarding/complete")

    def __init__(self):
        self.records = {}
        self.calls = []
        self.uploads = []
        self.doc_types = list(DOC_TYPES)
        self.fail = set()
        self.hold = None
        self.waiting = False
        self.next_id = 100

    def api(self) -> OnboardingAPI:
        return OnboardingAPI(base_url=BASE_URL, token="test-token", transport=httpx.MockTransport(self.handler))

    def calls_to(self, path: str) -> int:
        return sum(1 for p in self.calls if p == path)

    def add_business(self, record: dict):
        self.records[record["business_id"]] = dict(record)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len(PREFIX):]
        self.calls.append(path)

        if path in self.fail:
            return httpx.Response(200, json={"success": False, "data": None, "message": f"{path} rejected"})

        if path in self.held and self.hold is not None:
            self.waiting = True
            await self.hold.wait()
            self.waiting = False

        if path == "/auth/business-types":
            return httpx.Response(200, json={"success": True, "data": BUSINESS_TYPES})
        if path == "/auth/business-levels":
            return httpx.Response(200, json={"success": True, "data": BUSINESS_LEVELS})
        if path == "/onboarding/upload-kyc-documents":
            return self._upload(request)

        body = json.loads(request.content or b"{}")
        business_id = body.get("business_id")

        if path == "/onboarding/save-draft":
            if business_id is None:
                business_id = self.next_id
                self.next_id += 1
                self.records[business_id] = {"business_id": business_id, "status": "draft"}
            self.records[business_id].update(body["data"])
            return httpx.Response(200, json={
                "success": True, "data": {"business_id": business_id}, "message": "Saved as draft",
            })

        record = self.records.get(business_id)
        if record is None:
            return httpx.Response(404, json={"success": False, "message": "Business not found"})

        if path == "/onboarding/get-business":
            return httpx.Response(200, json={"success": True, "data": record})
        if path == "/onboarding/get-business-admins":
            return httpx.Response(200, json={"success": True, "data": record.get("admins", [])})
        if path == "/onboarding/kyc-doc-types":
            return httpx.Response(200, json={"success": True, "data": self.doc_types})
        if path == "/onboarding/complete":
            record["status"] = "completed"
            return httpx.Response(200, json={"success": True, "message": "Business onboarding completed successfully!"})

        return httpx.Response(404, json={"success": False, "message": f"No route {path}"})

    def _upload(self, request: httpx.Request) -> httpx.Response:
        body = request.content.decode("latin-1")
        fields, files = _form_fields(body), _form_files(body)
        self.uploads.append({"fields": fields, "files": files})

        record = self.records[int(fields["business_id"])]
        docs = {str(d["doc_id"]): d for d in record.get("kyc_docs", [])}
        names = {str(t["id"]): t["doc_name"] for t in self.doc_types}
        for name, filename in files.items():
            i = re.match(r"docs\[(\d+)\]", name).group(1)
            doc_id = fields[f"docs[{i}][doc_id]"]
            docs[doc_id] = {
                "id": 500 + len(self.uploads) * 10 + int(i),
                "doc_id": int(doc_id),
                "doc_name": names.get(doc_id, "Document"),
                "approval_status": "pending",
                "url": f"/files/{filename}",
                "expires_on": fields.get(f"docs[{i}][expires_on]"),
            }
        record["kyc_docs"] = list(docs.values())
        return httpx.Response(200, json={"success": True, "data": record["kyc_docs"], "message": "Documents uploaded"})
