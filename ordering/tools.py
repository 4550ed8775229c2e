"""External calls for the report ordering core"""
from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Optional
import httpx

from ordering.config import (
    ABR_GUID, ABR_MAX_RESULTS, HTTP_TIMEOUT_SECONDS, REPORT_API_BASE_URL,
    REPORT_TIMEOUT_SECONDS, RELATED_ENTITY_API_TOKEN, RELATED_ENTITY_API_URL,
)
from ordering.errors import SubmissionError
from ordering.schemas import LandTitleCountsQuery, ReportRequest
from ordering.state import CompanyDetails, DirectorInfo

# Persistent HTTP client, reuses connections across lookups and report requests
_http_client = httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)


def _api(path: str) -> str:
    return f"{REPORT_API_BASE_URL.rstrip('/')}{path}"


# ────────── ABR LOOKUP ──────────

async def abr_lookup(search_term: str, search_type: str = "name") -> dict:
    """Search the Australian Business Register for organisation suggestions."""
    if not ABR_GUID:
        return _mock_abr_lookup(search_term, search_type)

    try:
        if search_type == "abn":
            url = "https://abr.business.gov.au/json/AbnDetails.aspx"
            params = {
                "abn": search_term.replace(" ", ""),
                "callback": "c",
                "guid": ABR_GUID,
            }
        else:
            url = "https://abr.business.gov.au/json/MatchingNames.aspx"
            params = {
                "name": search_term,
                "maxResults": str(ABR_MAX_RESULTS),
                "callback": "c",
                "guid": ABR_GUID,
            }

        resp = await _http_client.get(url, params=params)
        if resp.status_code != 200:
            return {"results": [], "count": 0, "error": f"ABR API returned {resp.status_code}"}

        return _parse_jsonp_response(resp.text, search_type)

    except httpx.HTTPError as e:
        print(f"[ABR] Lookup error: {e}")
        return {"results": [], "count": 0, "error": str(e)}


def _parse_jsonp_response(jsonp_text: str, search_type: str) -> dict:
    """Parse ABR JSONP response into ranked suggestions."""
    try:
        # Strip JSONP callback wrapper: c({...})
        match = re.search(r'\w+\((.*)\)', jsonp_text, re.DOTALL)
        if not match:
            return {"results": [], "count": 0, "error": "Failed to parse JSONP"}

        data = json.loads(match.group(1))

        if search_type == "abn":
            abn = data.get("Abn", "")
            if not abn:
                return {"results": [], "count": 0, "error": data.get("Message") or "No result"}

            return {
                "results": [{
                    "abn": abn,
                    "name": data.get("EntityName") or "Unknown",
                    "status": data.get("AbnStatus") or "Active",
                    "score": 100,  # exact match
                }],
                "count": 1,
            }

        results = []
        for entry in data.get("Names", [])[:ABR_MAX_RESULTS]:
            results.append({
                "abn": entry.get("Abn", ""),
                "name": entry.get("Name") or "Unknown",
                "status": entry.get("AbnStatus") or "Active",
                "score": entry.get("Score") or 0,
            })
        results.sort(key=lambda r: r["score"], reverse=True)
        return {"results": results, "count": len(results)}

    except (json.JSONDecodeError, KeyError, AttributeError) as e:
        return {"results": [], "count": 0, "error": f"Parse error: {e}"}


def _mock_abr_lookup(search_term: str, search_type: str) -> dict:
    """Mock ABR response for development."""
    if search_type == "abn":
        clean_abn = search_term.replace(" ", "")
        return {
            "results": [{
                "abn": clean_abn,
                "name": f"Business with ABN {clean_abn}",
                "status": "Active",
                "score": 100,
            }],
            "count": 1,
        }

    name_title = search_term.strip().title()
    term = search_term.lower()
    return {
        "results": [{
            "abn": "51824753556",
            "name": name_title if "pty" in term or "ltd" in term else f"{name_title} Pty Ltd",
            "status": "Active",
            "score": 90,
        }],
        "count": 1,
    }


# ────────── COMPANY EXTRACT ──────────

async def fetch_company_extract(abn: str) -> dict:
    """Get (or trigger) the current ASIC extract used to confirm an organisation."""
    try:
        resp = await _http_client.post(
            _api("/api/get-report-data"),
            json={"abn": abn, "type": "asic-current"},
        )
        if resp.status_code != 200:
            print(f"[LOOKUP] Company extract failed: {resp.status_code}")
            return {"available": False, "error": f"API returned {resp.status_code}"}

        data = resp.json()
        if not isinstance(data, dict):
            return {"available": False, "error": "Unexpected extract response"}
        rdata = (data.get("data") or {}).get("rdata")
        return {"available": bool(data.get("available")) and rdata is not None, "rdata": rdata}

    except (httpx.HTTPError, ValueError) as e:
        print(f"[LOOKUP] Company extract error: {e}")
        return {"available": False, "error": str(e)}


def extract_company_details(rdata: Optional[dict]) -> tuple[CompanyDetails, list[DirectorInfo]]:
    """Director counts and current-director list from an ASIC extract."""
    extracts = (rdata or {}).get("asic_extracts") or []
    if not extracts:
        return {"directors": 0, "past_directors": 0, "shareholders": 0}, []

    extract = extracts[0]
    all_directors = extract.get("directors") or []
    current = [d for d in all_directors if d.get("status") == "Current"]

    directors = []
    for director in current:
        full_name = (director.get("name") or "").strip()
        parts = full_name.split()
        directors.append({
            "first_name": parts[0] if parts else "",
            "last_name": " ".join(parts[1:]),
            "dob": _format_dob(director.get("dob")),
            "full_name": full_name,
        })

    details: CompanyDetails = {
        "directors": len(current),
        "past_directors": len(all_directors) - len(current),
        "shareholders": len(extract.get("shareholders") or []),
    }
    return details, directors


def _format_dob(value) -> str:
    """DD/MM/YYYY from whatever the extract carries."""
    if not value:
        return ""
    text = str(value)
    if "/" in text:
        return text
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).strftime("%d/%m/%Y")
    except ValueError:
        return text


# ────────── PERSON / RECORD MATCHES ──────────

async def _get_matches(url: str, params: dict, tag: str, headers: Optional[dict] = None) -> dict:
    try:
        resp = await _http_client.get(url, params={k: v for k, v in params.items() if v}, headers=headers)
        if resp.status_code != 200:
            print(f"[LOOKUP] {tag} search failed: {resp.status_code}")
            return {"matches": [], "error": f"API returned {resp.status_code}"}

        data = resp.json()
        if isinstance(data, list):
            matches = data
        else:
            if data.get("success") is False:
                return {"matches": [], "error": data.get("message") or data.get("error") or "Search failed"}
            matches = data.get("matches") or data.get("results") or []

        print(f"[LOOKUP] {tag}: {len(matches)} matches")
        return {"matches": matches, "count": len(matches)}

    except (httpx.HTTPError, ValueError) as e:
        print(f"[LOOKUP] {tag} error: {e}")
        return {"matches": [], "error": str(e)}


async def bankruptcy_matches(first_name: str, last_name: str, dob: str = "") -> dict:
    """Search the insolvency index for people matching the name (and DOB)."""
    return await _get_matches(
        _api("/api/bankruptcy/matches"),
        {"firstName": first_name, "lastName": last_name, "dateOfBirth": dob},
        "Bankruptcy",
    )


async def related_entity_matches(first_name: str, last_name: str,
                                 dob_from: str = "", dob_to: str = "") -> dict:
    """Search ASIC officeholder records for entities related to a person."""
    if not RELATED_ENTITY_API_URL:
        return await _get_matches(
            _api("/api/director-related/matches"),
            {"firstName": first_name, "lastName": last_name, "dobFrom": dob_from, "dobTo": dob_to},
            "Related entity",
        )
    return await _get_matches(
        RELATED_ENTITY_API_URL,
        {"last_name": last_name, "first_name": first_name, "dob_from": dob_from, "dob_to": dob_to},
        "Related entity",
        headers={"Authorization": f"Bearer {RELATED_ENTITY_API_TOKEN}", "Accept": "application/json"},
    )


async def court_matches(first_name: str, last_name: str, state: str = "", court_type: str = "ALL") -> dict:
    """Search court name indexes for a person, optionally within one jurisdiction."""
    return await _get_matches(
        _api("/api/court/name-search"),
        {"firstName": first_name, "lastName": last_name, "state": state, "courtType": court_type},
        "Court",
    )


async def land_title_person_names(first_name: str, last_name: str, state: str) -> dict:
    """Registered proprietor names that match a person in one state."""
    try:
        resp = await _http_client.post(
            _api("/api/land-title/search-person-names"),
            json={"firstName": first_name, "lastName": last_name, "state": state},
        )
        if resp.status_code != 200:
            return {"matches": [], "error": f"API returned {resp.status_code}"}
        data = resp.json()
        if not isinstance(data, dict):
            return {"matches": [], "error": "Unexpected name search response"}
        if not data.get("success", True):
            return {"matches": [], "error": data.get("message") or "Search failed"}
        names = data.get("personNames") or []
        return {"matches": [{"name": n, "state": state} for n in names], "count": len(names)}

    except (httpx.HTTPError, ValueError) as e:
        print(f"[LOOKUP] Land title names error: {e}")
        return {"matches": [], "error": str(e)}


# ────────── LAND TITLE COUNTS ──────────

async def land_title_counts(query: LandTitleCountsQuery) -> dict:
    """Current/historical title counts and title references for a party across states."""
    try:
        resp = await _http_client.post(_api("/api/land-title/counts"), json=query.payload())
        if resp.status_code != 200:
            print(f"[LOOKUP] Land title counts failed: {resp.status_code}")
            return {"error": f"API returned {resp.status_code}"}

        data = resp.json()
        if not isinstance(data, dict):
            return {"error": "Unexpected counts response"}
        if not data.get("success", True):
            return {"error": data.get("message") or data.get("error") or "Counts lookup failed"}

        references = [
            {"title_reference": r.get("titleReference", ""), "jurisdiction": r.get("jurisdiction", "")}
            for r in data.get("titleReferences") or []
        ]
        return {
            "current": int(data.get("current") or 0),
            "historical": int(data.get("historical") or 0),
            "title_references": references,
        }

    except (httpx.HTTPError, ValueError) as e:
        print(f"[LOOKUP] Land title counts error: {e}")
        return {"error": str(e)}


# ────────── REPORTS ──────────

async def create_report(request: ReportRequest) -> str:
    """Ask the report-generation service for one report. Returns the produced filename."""
    payload = request.payload()
    try:
        resp = await _http_client.post(_api("/api/create-report"), json=payload,
                                       timeout=REPORT_TIMEOUT_SECONDS)
    except httpx.HTTPError as e:
        raise SubmissionError(f"{request.type} report request failed: {e}", report_type=request.type) from e

    if resp.status_code != 200:
        raise SubmissionError(f"{request.type} report returned {resp.status_code}", report_type=request.type)

    try:
        data = resp.json()
    except ValueError as e:
        raise SubmissionError(f"{request.type} report response was not JSON", report_type=request.type) from e

    if not isinstance(data, dict):
        raise SubmissionError(f"{request.type} report response was not an object", report_type=request.type)

    filename = data.get("report")
    if not filename or not isinstance(filename, str):
        raise SubmissionError(data.get("message") or f"{request.type} report produced no file",
                              report_type=request.type)
    return filename


async def send_reports(email: str, filenames: list[str], matter_name: str = "Matter",
                       document_id: Optional[str] = None) -> dict:
    """Hand produced reports to the email-delivery service."""
    body = {"email": email, "pdfFilenames": filenames, "matterName": matter_name}
    if document_id:
        body["documentId"] = document_id
    try:
        resp = await _http_client.post(_api("/api/send-reports"), json=body)
        if resp.status_code != 200:
            print(f"[EMAIL] Send failed: {resp.status_code}")
            return {"success": False, "error": f"API returned {resp.status_code}"}
        data = resp.json()
        if not isinstance(data, dict):
            return {"success": False, "error": "Unexpected response from the email service"}
        print(f"[EMAIL] Sent {len(filenames)} report(s) to {email}")
        return {"success": bool(data.get("success")), "message": data.get("message", "")}

    except (httpx.HTTPError, ValueError) as e:
        print(f"[EMAIL] Send error: {e}")
        return {"success": False, "error": str(e)}


async def download_report(url: str, filename: str) -> dict:
    """Retrieve one produced report from storage."""
    try:
        resp = await _http_client.get(url)
        if resp.status_code != 200:
            return {"filename": filename, "url": url, "ok": False, "error": f"Storage returned {resp.status_code}"}
        return {"filename": filename, "url": url, "ok": True, "content": resp.content}

    except httpx.HTTPError as e:
        print(f"[DOWNLOAD] {filename} error: {e}")
        return {"filename": filename, "url": url, "ok": False, "error": str(e)}
