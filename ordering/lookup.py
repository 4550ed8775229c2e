"""Lookup adapter: debounced, token-tagged calls to the search providers.

Every call takes a fresh token for its kind. A result is only applied when its
token is still the latest one for that kind; anything older comes back with
status "stale" and the caller drops it. Debounced kinds wait before firing and
give up ("superseded") if a newer call arrived in the meantime.
"""
from __future__ import annotations

import asyncio
import itertools
from typing import Awaitable, Callable, Optional, TypedDict

from ordering import tools
from ordering.config import LOOKUP_DEBOUNCE_SECONDS, MIN_SUGGESTION_QUERY_LENGTH
from ordering.schemas import LandTitleCountsQuery, OrganisationSuggestion

DEBOUNCED_KINDS = frozenset({"organisation", "land_title_name"})


class LookupResult(TypedDict):
    kind: str
    token: int
    status: str          # ok | error | stale | superseded | skipped
    results: list
    data: dict
    error: str


def _result(kind: str, token: int, status: str, results=None, data=None, error: str = "") -> LookupResult:
    return {"kind": kind, "token": token, "status": status,
            "results": results or [], "data": data or {}, "error": error}


def _normalise(query: str) -> str:
    return " ".join(query.split()).lower()


def _dashed_dob(dob: str) -> str:
    return dob.replace("/", "-") if dob else ""


class LookupAdapter:

    def __init__(self, debounce_seconds: float = LOOKUP_DEBOUNCE_SECONDS,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.debounce_seconds = debounce_seconds
        self._sleep = sleep
        self._tokens = itertools.count(1)
        self._latest: dict[str, int] = {}
        self._suppressed: dict[str, str] = {}

    # ────────── TOKENS ──────────

    def begin(self, kind: str) -> int:
        token = next(self._tokens)
        self._latest[kind] = token
        return token

    def is_current(self, kind: str, token: int) -> bool:
        return self._latest.get(kind) == token

    def invalidate(self, kind: str) -> None:
        """Make every in-flight call of this kind stale."""
        self.begin(kind)

    def suppress_next(self, kind: str, query: str) -> None:
        """Skip the next query of this kind if it equals `query`.

        Picking a suggestion writes its text back into the input; that echo must
        not start a new search.
        """
        self._suppressed[kind] = _normalise(query)

    async def _run(self, kind: str, call: Callable[[], Awaitable[dict]],
                   query: Optional[str] = None) -> tuple[LookupResult, dict]:
        token = self.begin(kind)

        if query is not None and kind in self._suppressed:
            suppressed = self._suppressed.pop(kind)
            if suppressed == _normalise(query):
                return _result(kind, token, "skipped"), {}

        if kind in DEBOUNCED_KINDS and self.debounce_seconds > 0:
            await self._sleep(self.debounce_seconds)
            if not self.is_current(kind, token):
                return _result(kind, token, "superseded"), {}

        raw = await call()

        if not self.is_current(kind, token):
            print(f"[LOOKUP] Discarded stale {kind} result (token {token})")
            return _result(kind, token, "stale"), {}
        if raw.get("error"):
            return _result(kind, token, "error", error=str(raw["error"])), raw
        return _result(kind, token, "ok"), raw

    # ────────── ORGANISATION ──────────

    async def organisation_suggestions(self, query: str) -> LookupResult:
        query = query.strip()
        if len(query) < MIN_SUGGESTION_QUERY_LENGTH:
            token = self.begin("organisation")
            return _result("organisation", token, "skipped")

        compact = query.replace(" ", "")
        search_type = "abn" if compact.isdigit() else "name"
        result, raw = await self._run(
            "organisation", lambda: tools.abr_lookup(query, search_type), query=query,
        )
        if result["status"] == "ok":
            result["results"] = [
                OrganisationSuggestion(**entry).model_dump() for entry in raw.get("results", [])
            ]
        return result

    async def company_extract(self, abn: str) -> LookupResult:
        result, raw = await self._run("company_extract", lambda: tools.fetch_company_extract(abn))
        if result["status"] != "ok":
            return result
        if not raw.get("available"):
            result["status"] = "error"
            result["error"] = "Company extract is not available yet"
            return result
        details, directors = tools.extract_company_details(raw.get("rdata"))
        result["data"] = {"details": details, "directors": directors}
        result["results"] = directors
        return result

    # ────────── PERSON RECORDS ──────────

    async def bankruptcy_matches(self, first_name: str, last_name: str, dob: str = "") -> LookupResult:
        result, raw = await self._run(
            "bankruptcy", lambda: tools.bankruptcy_matches(first_name, last_name, dob),
        )
        result["results"] = raw.get("matches", []) if result["status"] == "ok" else []
        return result

    async def related_entity_matches(self, first_name: str, last_name: str, dob: str = "") -> LookupResult:
        dob = _dashed_dob(dob)
        result, raw = await self._run(
            "related", lambda: tools.related_entity_matches(first_name, last_name, dob, dob),
        )
        result["results"] = raw.get("matches", []) if result["status"] == "ok" else []
        return result

    async def court_matches(self, first_name: str, last_name: str,
                            court_type: str = "ALL", state: str = "") -> LookupResult:
        result, raw = await self._run(
            "court", lambda: tools.court_matches(first_name, last_name, state, court_type),
        )
        result["results"] = raw.get("matches", []) if result["status"] == "ok" else []
        return result

    async def land_title_names(self, first_name: str, last_name: str, states: list[str]) -> LookupResult:
        async def call() -> dict:
            matches: list = []
            for state in states:
                found = await tools.land_title_person_names(first_name, last_name, state)
                if found.get("error"):
                    return found
                matches.extend(found.get("matches", []))
            return {"matches": matches}

        result, raw = await self._run("land_title_name", call)
        result["results"] = raw.get("matches", []) if result["status"] == "ok" else []
        return result

    # ────────── LAND TITLE COUNTS ──────────

    async def land_title_counts(self, option: str, queries: list[LandTitleCountsQuery]) -> LookupResult:
        """Counts for one land-title option; several queries (one per director) are summed."""
        async def call() -> dict:
            if not queries:
                return {"error": "Nothing to count titles for"}
            total = {"current": 0, "historical": 0, "title_references": []}
            for query in queries:
                counts = await tools.land_title_counts(query)
                if counts.get("error"):
                    return counts
                total["current"] += counts.get("current", 0)
                total["historical"] += counts.get("historical", 0)
                total["title_references"].extend(counts.get("title_references", []))
            return total

        # Each option keeps its own token so two dialogs never cancel each other
        kind = f"land_title_counts:{option}"
        result, raw = await self._run(kind, call)
        if result["status"] == "ok":
            result["data"] = {
                "current": raw.get("current", 0),
                "historical": raw.get("historical", 0),
                "title_references": raw.get("title_references", []),
            }
        return result
