"""Reconciliation pass run once per committed store mutation.

`reconcile` takes the draft produced by a mutator and returns the state that
gets committed. It is pure: the draft is copied, never modified in place.
"""
from __future__ import annotations

import copy

from ordering.catalog import (
    ADDITIONAL_BASE_PRICES,
    ASIC_TYPES,
    DIRECTOR_SCOPED,
    DISAMBIGUATION_STAGES,
    LAND_TITLE_OPTIONS,
    MAIN_DUPLICATES,
    ORGANISATION_ADDITIONAL,
    SEARCH_PRICES,
    SELECT_ALL,
    Category,
    SearchType,
    main_searches,
)
from ordering.state import OrderState, empty_company_details, empty_flags


def offered_additional(state: OrderState) -> list[dict]:
    """Enrichment menu for the current main selection, without SELECT ALL."""
    category = Category(state["category"])
    selected = state["selected_searches"]

    if category == Category.ORGANISATION:
        if SearchType.DOCUMENT_SEARCH.value in selected:
            return []
        hidden = {dup.value for main, dup in MAIN_DUPLICATES.items() if main.value in selected}
        directors = state["company_details"]["directors"]
        menu = []
        for option in ORGANISATION_ADDITIONAL:
            if option.value in hidden:
                continue
            base = ADDITIONAL_BASE_PRICES[option.value]
            entry = {"name": option.value, "price": str(base), "available": None}
            if option.value in DIRECTOR_SCOPED:
                entry["available"] = directors
                if directors is not None:
                    entry["price"] = str(base * directors)
            menu.append(entry)
        return menu

    if category == Category.INDIVIDUAL:
        return [
            {"name": s, "price": str(SEARCH_PRICES[s]), "available": None}
            for s in main_searches(category)
            if s not in selected
        ]

    return []


def offered_names(state: OrderState) -> list[str]:
    return [o["name"] for o in state["offered_additional"]]


def active_stages(state: OrderState) -> list[str]:
    """Disambiguation stages the current individual selection calls for, in run order."""
    if Category(state["category"]) != Category.INDIVIDUAL:
        return []
    selected = state["selected_searches"] | state["selected_additional"]
    return [stage for stage, search in DISAMBIGUATION_STAGES if search in selected]


def clear_identity(state: OrderState) -> None:
    """Drop everything tied to the previous category's identity."""
    state["flags"] = empty_flags()
    state["pending_company"] = None
    state["company_name"] = ""
    state["abn"] = ""
    state["company_details"] = empty_company_details()
    state["directors"] = []
    state["first_name"] = ""
    state["last_name"] = ""
    state["dob"] = ""
    state["selected_records"] = {}
    state["land_titles"] = {}
    state["land_title_states"] = []
    state["land_title_select_all"] = False
    state["bulk_locked"] = set()
    state["document_id"] = ""
    state["address"] = ""


def _derive_select_all(members: set[str], offered: list[str]) -> None:
    members.discard(SELECT_ALL)
    if offered and all(o in members for o in offered):
        members.add(SELECT_ALL)


def reconcile(draft: OrderState, previous_category: str | None = None) -> OrderState:
    state = copy.deepcopy(draft)
    category = Category(state["category"])

    # A category switch invalidates identity before anything is recomputed from it
    if previous_category is not None and Category(previous_category) != category:
        clear_identity(state)

    offered_main = main_searches(category)
    state["selected_searches"] &= set(offered_main) | {SELECT_ALL}

    # 1. enrichment menu follows the main selection and director count
    state["offered_additional"] = offered_additional(state)
    offered = offered_names(state)

    # 2. drop enrichment that is no longer offered
    for option in list(state["selected_additional"]):
        if option == SELECT_ALL or option in offered:
            continue
        state["selected_additional"].discard(option)
        state["bulk_locked"].discard(option)
        # The same option picked as a main search keeps its configuration
        if option in LAND_TITLE_OPTIONS and option not in state["selected_searches"]:
            state["land_titles"].pop(option, None)

    # Land-title configuration only lives while its option is selected
    selected_any = state["selected_searches"] | state["selected_additional"]
    for option in list(state["land_titles"]):
        if option not in selected_any:
            del state["land_titles"][option]
    if not any(o in state["land_titles"] for o in LAND_TITLE_OPTIONS):
        state["land_title_select_all"] = False

    # 3. sub-types need their parent; SELECT ALL markers are derived
    if category != Category.ORGANISATION or SearchType.ASIC.value not in state["selected_searches"]:
        state["selected_asic_types"] = set()
    if SearchType.COURT.value not in selected_any:
        state["selected_court_type"] = ""
    if SearchType.DOCUMENT_SEARCH.value not in state["selected_searches"]:
        state["document_id"] = ""

    _derive_select_all(state["selected_searches"], offered_main)
    _derive_select_all(state["selected_asic_types"], [t.value for t in ASIC_TYPES])
    _derive_select_all(state["selected_additional"], offered)

    # 4. a confirmed name needs a picked record for every search that asks for one
    if state["flags"]["individual_name_confirmed"] and any(
            stage not in state["selected_records"] for stage in active_stages(state)):
        state["flags"]["individual_name_confirmed"] = False

    return state
