"""Per-step validation contract for the Business Onboarding wizard

Runs before any network call. Failures never reach the backend.
"""
from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from wizard.state import as_list

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
URL_RE = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)


class StepValidationError(Exception):
    """Local, pre-submit validation failure. errors maps field path → message."""

    def __init__(self, step_key: str, errors: dict[str, str]):
        self.step_key = step_key
        self.errors = errors
        super().__init__(f"{step_key}: " + "; ".join(f"{k}: {v}" for k, v in errors.items()))


def _required(value, label: str):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"{label} is required")
    return value


def _email(value: str, label: str) -> str:
    _required(value, label)
    if not EMAIL_RE.match(value.strip()):
        raise ValueError("Invalid email")
    return value


class _StepForm(BaseModel):
    model_config = ConfigDict(extra="ignore", validate_default=True)


class BusinessDetailsForm(_StepForm):
    businessName: Optional[str] = None
    registrationNumber: Optional[str] = None
    natureOfBusiness: Optional[str] = None
    countryOfRegistration: Optional[str] = None
    dateOfRegistration: Optional[date] = None
    businessType: Union[str, dict, None] = None
    businessLevel: Union[str, dict, None] = None

    @field_validator("businessName", "registrationNumber", "natureOfBusiness", "countryOfRegistration",
                     mode="after")
    @classmethod
    def _present(cls, v, info):
        labels = {
            "businessName": "Business name",
            "registrationNumber": "Registration number",
            "natureOfBusiness": "Nature of business",
            "countryOfRegistration": "Country of registration",
        }
        return _required(v, labels[info.field_name])

    @field_validator("businessType", "businessLevel", mode="after")
    @classmethod
    def _picked(cls, v, info):
        label = "Business type" if info.field_name == "businessType" else "Business level"
        if isinstance(v, dict):
            code = v.get("type") if info.field_name == "businessType" else v.get("level")
            _required(code, label)
            return v
        return _required(v, label)

    @field_validator("dateOfRegistration", mode="before")
    @classmethod
    def _blank_date(cls, v):
        return None if v == "" else v

    @field_validator("dateOfRegistration", mode="after")
    @classmethod
    def _not_future(cls, v):
        _required(v, "Date of registration")
        if v > date.today():
            raise ValueError("Registration date can't be in the future")
        return v


class BusinessAddressForm(_StepForm):
    registeredOffice: Optional[str] = None
    registeredOfficeAddress: Optional[str] = None
    postalAddress: Optional[str] = None
    postalCode: Optional[str] = None
    dialCode: Optional[str] = None
    phone: Optional[str] = None
    businessEmail: Optional[str] = None
    websiteUrl: Optional[str] = None
    address: Optional[str] = None

    @field_validator("registeredOffice", "registeredOfficeAddress", "postalAddress", "postalCode",
                     "dialCode", "phone", "address", mode="after")
    @classmethod
    def _present(cls, v, info):
        labels = {
            "registeredOffice": "Registered office",
            "registeredOfficeAddress": "Registered office address",
            "postalAddress": "Postal address",
            "postalCode": "Postal code",
            "dialCode": "Dial code",
            "phone": "Phone number",
            "address": "Business address",
        }
        return _required(v, labels[info.field_name])

    @field_validator("businessEmail", mode="after")
    @classmethod
    def _business_email(cls, v):
        return _email(v, "Business email")

    @field_validator("websiteUrl", mode="after")
    @classmethod
    def _website(cls, v):
        if v and not URL_RE.match(v.strip()):
            raise ValueError("Enter a valid website URL")
        return v


class DirectorForm(_StepForm):
    name: Optional[str] = None
    email: Optional[str] = None
    position: Optional[str] = None

    @field_validator("name", "position", mode="after")
    @classmethod
    def _present(cls, v, info):
        return _required(v, info.field_name.capitalize())

    @field_validator("email", mode="after")
    @classmethod
    def _valid_email(cls, v):
        return _email(v, "Email")


class DirectorsForm(_StepForm):
    directors: list[DirectorForm] = Field(default_factory=list)

    @field_validator("directors", mode="after")
    @classmethod
    def _at_least_one(cls, v):
        if not v:
            raise ValueError("Add at least one director")
        return v


class FinancialInfoForm(_StepForm):
    sourceOfWealth: Optional[str] = Field(None, max_length=255)
    sourceOfFunds: Optional[str] = Field(None, max_length=255)
    expectedAnnualTurnover: Any = None
    tinNumber: Optional[str] = None

    @field_validator("sourceOfWealth", "sourceOfFunds", mode="after")
    @classmethod
    def _present(cls, v, info):
        label = "Source of wealth" if info.field_name == "sourceOfWealth" else "Source of funds"
        return _required(v, label)

    @field_validator("expectedAnnualTurnover", mode="after")
    @classmethod
    def _positive_number(cls, v):
        _required(v, "Expected annual turnover")
        try:
            amount = float(v)
        except (TypeError, ValueError):
            raise ValueError("Expected turnover must be a number")
        if amount <= 0:
            raise ValueError("Turnover must be a positive number")
        return v


class AdminForm(_StepForm):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    middleName: Optional[str] = None
    email: Optional[str] = None

    @field_validator("firstName", "lastName", mode="after")
    @classmethod
    def _present(cls, v, info):
        label = "First name" if info.field_name == "firstName" else "Last name"
        return _required(v, label)

    @field_validator("email", mode="after")
    @classmethod
    def _valid_email(cls, v):
        return _email(v, "Email")


class AdminsForm(_StepForm):
    admins: list[AdminForm] = Field(default_factory=list)

    @field_validator("admins", mode="after")
    @classmethod
    def _at_least_one(cls, v):
        if not v:
            raise ValueError("Add at least one administrator")
        return v


class DeclarationForm(_StepForm):
    # Admin onboarding auto-completes the declaration
    pass


STEP_FORMS = {
    "businessDetails": BusinessDetailsForm,
    "businessAddress": BusinessAddressForm,
    "directors": DirectorsForm,
    "financialInfo": FinancialInfoForm,
    "admins": AdminsForm,
    "declaration": DeclarationForm,
}

# List steps arrive as a list, wrapped under the step key, or index-keyed
LIST_STEPS = {"directors", "admins"}


def list_items(step_key: str, data) -> list:
    """Items of a list step, read the same way the store reads them."""
    if isinstance(data, Mapping) and step_key in data:
        data = data[step_key]
    return as_list(data)


def validate_step(step_key: str, data) -> None:
    """Raise StepValidationError if the step data breaks the contract."""
    form = STEP_FORMS.get(step_key)
    if form is None:
        return
    if step_key in LIST_STEPS:
        data = {step_key: list_items(step_key, data)}
    if not isinstance(data, dict):
        raise StepValidationError(step_key, {"__root__": "Step data must be an object"})

    try:
        form.model_validate(data)
    except ValidationError as e:
        errors = {}
        for err in e.errors():
            path = ".".join(str(p) for p in err["loc"]) or "__root__"
            message = err["msg"]
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
            errors.setdefault(path, message)
        raise StepValidationError(step_key, errors)
