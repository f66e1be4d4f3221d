"""Configuration for the Business Onboarding Wizard"""
import os
from dotenv import load_dotenv

load_dotenv()

# Admin console backend
ONBOARDING_API_URL = os.getenv("ONBOARDING_API_URL", "http://localhost:8105/api/v1/admin")
ONBOARDING_API_TOKEN = os.getenv("ONBOARDING_API_TOKEN", "")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "15"))

PORT = int(os.getenv("PORT", "8001"))

# Business types with no directors step (comma separated)
NO_DIRECTOR_BUSINESS_TYPES = frozenset(
    t.strip() for t in os.getenv("NO_DIRECTOR_BUSINESS_TYPES", "sole_proprietorship").split(",") if t.strip()
)

# Seconds the confirmation stays on screen before the host is told to close
COMPLETION_DISPLAY_DELAY = float(os.getenv("COMPLETION_DISPLAY_DELAY", "2.0"))

# KYC uploads
MAX_KYC_FILE_SIZE = int(os.getenv("MAX_KYC_FILE_SIZE", str(4 * 1024 * 1024)))
ALLOWED_KYC_TYPES = {"image/png", "image/jpeg", "application/pdf"}
