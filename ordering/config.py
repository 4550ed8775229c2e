"""Configuration for the report ordering core"""
import os
from dotenv import load_dotenv

load_dotenv()

PORT = int(os.getenv("PORT", "8001"))

# Australian Business Register (organisation name suggestions)
ABR_GUID = os.getenv("ABR_GUID", "")
ABR_MAX_RESULTS = int(os.getenv("ABR_MAX_RESULTS", "10"))

# Report-generation backend (create-report, matches, land-title counts, email)
REPORT_API_BASE_URL = os.getenv("REPORT_API_BASE_URL", "http://localhost:3001")

# ASIC related-entity search provider
RELATED_ENTITY_API_URL = os.getenv("RELATED_ENTITY_API_URL", "")
RELATED_ENTITY_API_TOKEN = os.getenv("RELATED_ENTITY_API_TOKEN", "")

# Produced report storage
REPORTS_URL_TEMPLATE = os.getenv(
    "REPORTS_URL_TEMPLATE",
    "https://reports.s3.ap-southeast-2.amazonaws.com/{filename}",
)

# Timing
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))
REPORT_TIMEOUT_SECONDS = float(os.getenv("REPORT_TIMEOUT_SECONDS", "120"))
LOOKUP_DEBOUNCE_SECONDS = float(os.getenv("LOOKUP_DEBOUNCE_SECONDS", "0.5"))
DOWNLOAD_PACING_SECONDS = float(os.getenv("DOWNLOAD_PACING_SECONDS", "0.5"))

# Organisation suggestions only fire once the query is this long
MIN_SUGGESTION_QUERY_LENGTH = 2
