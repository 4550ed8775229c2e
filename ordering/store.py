"""Selection store: the committed configuration of an order.

Every mutator copies the committed state, applies its change, runs the
resolver once and swaps the result in with a single assignment, so a reader
never sees a state that breaks the selection invariants.

Options that need a confirmation dialog are never written straight into the
committed state. The mutator stages them and hands the staged change back; a
modal flow later commits it (with its sub-selection) or discards it.
"""
from __future__ import annotations

import copy
import itertools
from typing import Callable, Optional, TypedDict

from ordering.catalog import (
    ASIC_EXCLUSIVE,
    ASIC_TYPES,
    AUSTRALIAN_STATES,
    LAND_TITLE_OPTIONS,
    SELECT_ALL,
    AsicType,
    Category,
    CourtType,
    LandTitleDetail,
    SearchType,
    additional_flow,
    main_flow,
    main_searches,
)
from ordering.errors import FlowStateError, OrderValidationError
from ordering.resolver import offered_names, reconcile
from ordering.state import (
    CompanyDetails,
    DirectorInfo,
    OrderState,
    default_land_title,
    empty_company_details,
    new_order_state,
)


class StagedChange(TypedDict):
    id: int
    scope: str      # "main" | "additional"
    option: str
    flow: str       # flow kind from the catalog


RESET_SCOPES = ("main", "sub_type", "enrichment", "land_title", "all")


class SelectionStore:

    def __init__(self, state: Optional[OrderState] = None):
        self._state: OrderState = reconcile(state or new_order_state())
        self._staged: dict[int, StagedChange] = {}
        self._stage_ids = itertools.count(1)

    # ────────── READ ──────────

    @property
    def state(self) -> OrderState:
        """Committed state. Treat as read-only; use snapshot() to keep a copy."""
        return self._state

    @property
    def category(self) -> Category:
        return Category(self._state["category"])

    def snapshot(self) -> OrderState:
        return copy.deepcopy(self._state)

    def staged(self) -> list[StagedChange]:
        return list(self._staged.values())

    def is_selected(self, option: str) -> bool:
        return option in self._state["selected_searches"] or option in self._state["selected_additional"]

    # ────────── TRANSACTIONS ──────────

    def _draft(self) -> OrderState:
        return copy.deepcopy(self._state)

    def _commit(self, draft: OrderState, previous_category: str | None = None) -> OrderState:
        self._state = reconcile(draft, previous_category)
        return self._state

    def stage(self, scope: str, option: str, flow: str) -> StagedChange:
        change: StagedChange = {"id": next(self._stage_ids), "scope": scope, "option": option, "flow": flow}
        self._staged[change["id"]] = change
        return change

    def transact(self, apply: Callable[[OrderState], None]) -> OrderState:
        """Apply an arbitrary change as one committed mutation."""
        draft = self._draft()
        apply(draft)
        return self._commit(draft)

    def commit_staged(self, change: StagedChange, apply: Callable[[OrderState], None] | None = None) -> OrderState:
        """Make a staged option final, together with whatever its flow decided."""
        if change["id"] not in self._staged:
            raise FlowStateError(f"{change['option']} is no longer pending confirmation")
        draft = self._draft()
        key = "selected_searches" if change["scope"] == "main" else "selected_additional"
        draft[key].add(change["option"])
        if apply:
            apply(draft)
        del self._staged[change["id"]]
        state = self._commit(draft)
        print(f"[STORE] Committed {change['scope']} option {change['option']}")
        return state

    def discard_staged(self, change: StagedChange) -> None:
        if self._staged.pop(change["id"], None) is not None:
            print(f"[STORE] Discarded pending {change['scope']} option {change['option']}")

    # ────────── CATEGORY ──────────

    def set_category(self, category: Category | str) -> OrderState:
        category = Category(category)
        previous = self._state["category"]
        if category.value == previous:
            return self._state
        draft = self._draft()
        draft["category"] = category.value
        draft["selected_searches"] = set()
        draft["selected_asic_types"] = set()
        draft["selected_court_type"] = ""
        draft["selected_additional"] = set()
        self._staged.clear()
        print(f"[STORE] Category {previous} -> {category.value}")
        return self._commit(draft, previous)

    # ────────── MAIN SEARCHES ──────────

    def toggle_main(self, search: str) -> list[StagedChange]:
        """Toggle a main search. Returns the options staged for confirmation."""
        search = str(getattr(search, "value", search))
        category = self.category
        offered = main_searches(category)
        if search != SELECT_ALL and search not in offered:
            raise OrderValidationError(f"{search} is not offered for {category.value}")

        draft = self._draft()
        selected = draft["selected_searches"]
        staged: list[StagedChange] = []

        if search == SELECT_ALL:
            if SELECT_ALL in selected:
                locked = [s for s in selected if s in draft["bulk_locked"]]
                if locked:
                    raise OrderValidationError(f"{', '.join(sorted(locked))} locked by select all; reset first")
                selected.clear()
                self._drop_staged("main")
            else:
                for s in offered:
                    if s in selected:
                        continue
                    flow = main_flow(category, s)
                    if flow:
                        staged.append(self.stage("main", s, flow))
                    else:
                        selected.add(s)
        elif search in selected:
            if search in draft["bulk_locked"]:
                raise OrderValidationError(f"{search} was configured by select all; reset the selection to remove it")
            selected.discard(search)
        else:
            flow = main_flow(category, search)
            if flow:
                staged.append(self.stage("main", search, flow))
            else:
                selected.add(search)

        self._commit(draft)
        return staged

    # ────────── SUB-TYPES ──────────

    def toggle_sub_type(self, sub_type: str) -> OrderState:
        sub_type = str(getattr(sub_type, "value", sub_type))
        selected = self._state["selected_searches"]
        draft = self._draft()

        if sub_type in {t.value for t in CourtType}:
            if not self.is_selected(SearchType.COURT.value):
                raise OrderValidationError("Select COURT before choosing a court type")
            draft["selected_court_type"] = sub_type
            return self._commit(draft)

        if sub_type not in {t.value for t in AsicType}:
            raise OrderValidationError(f"Unknown sub-type {sub_type}")
        if self.category != Category.ORGANISATION or SearchType.ASIC.value not in selected:
            raise OrderValidationError("Select ASIC before choosing an ASIC type")
        draft["selected_asic_types"] = toggle_asic_type(draft["selected_asic_types"], sub_type)
        return self._commit(draft)

    # ────────── ENRICHMENT ──────────

    def toggle_enrichment(self, option: str) -> list[StagedChange]:
        """Toggle an additional search. Returns the options staged for confirmation."""
        option = str(getattr(option, "value", option))
        category = self.category
        offered = offered_names(self._state)
        draft = self._draft()
        selected = draft["selected_additional"]
        staged: list[StagedChange] = []

        if option == SELECT_ALL:
            if SELECT_ALL in selected:
                # Deselecting everything is the explicit bulk reset
                selected.clear()
                draft["bulk_locked"] = set()
                draft["land_title_select_all"] = False
                self._drop_staged("additional")
            else:
                for o in offered:
                    if o in selected:
                        continue
                    flow = additional_flow(category, o)
                    if flow:
                        staged.append(self.stage("additional", o, flow))
                    else:
                        selected.add(o)
        else:
            if option not in offered:
                raise OrderValidationError(f"{option} is not available as an additional search")
            if option in selected:
                if option in draft["bulk_locked"]:
                    raise OrderValidationError(f"{option} was configured by select all; reset the selection to remove it")
                selected.discard(option)
            else:
                flow = additional_flow(category, option)
                if flow:
                    staged.append(self.stage("additional", option, flow))
                else:
                    selected.add(option)

        self._commit(draft)
        return staged

    # ────────── LAND TITLE ──────────

    def set_land_title_detail(self, option: str, detail: LandTitleDetail | str) -> OrderState:
        detail = LandTitleDetail(detail)
        current = self._state["land_titles"].get(option)
        if not current or not self.is_selected(option):
            raise OrderValidationError(f"{option} has no land title selection")
        if detail != LandTitleDetail.SUMMARY and (
                current["current_count"] is None or current["historical_count"] is None):
            raise OrderValidationError(f"Title counts for {option} have not been fetched yet")

        def apply(draft: OrderState) -> None:
            draft["land_titles"][option]["detail"] = detail.value

        return self.transact(apply)

    def set_land_title_add_on(self, option: str, enabled: bool) -> OrderState:
        if option not in self._state["land_titles"] or not self.is_selected(option):
            raise OrderValidationError(f"{option} has no land title selection")

        def apply(draft: OrderState) -> None:
            draft["land_titles"][option]["add_on"] = bool(enabled)

        return self.transact(apply)

    def set_land_title_states(self, states: list[str]) -> OrderState:
        states = [s.upper() for s in states]
        unknown = [s for s in states if s not in AUSTRALIAN_STATES]
        if unknown:
            raise OrderValidationError(f"Unknown state(s): {', '.join(unknown)}")
        if states == self._state["land_title_states"]:
            return self._state

        def apply(draft: OrderState) -> None:
            draft["land_title_states"] = states
            _forget_counts(draft, LAND_TITLE_OPTIONS)

        return self.transact(apply)

    def lock_options(self, options: list[str]) -> OrderState:
        def apply(draft: OrderState) -> None:
            draft["bulk_locked"] |= {o for o in options if o in draft["selected_additional"]
                                     or o in draft["selected_searches"]}

        return self.transact(apply)

    def set_land_title_select_all(self, value: bool) -> OrderState:
        def apply(draft: OrderState) -> None:
            draft["land_title_select_all"] = bool(value)

        return self.transact(apply)

    # ────────── IDENTITY ──────────

    def set_pending_company(self, name: str, abn: str) -> OrderState:
        """A suggestion was picked; it still has to be confirmed."""
        abn = (abn or "").replace(" ", "")
        if not abn:
            raise OrderValidationError("A company needs an ABN")

        def apply(draft: OrderState) -> None:
            _forget_company(draft)
            draft["pending_company"] = {"name": name or "Unknown", "abn": abn}

        return self.transact(apply)

    def clear_company(self) -> OrderState:
        return self.transact(_forget_company)

    def confirm_organisation(self, details: CompanyDetails, directors: list[DirectorInfo]) -> OrderState:
        """Called by the organisation confirmation flow once the extract is read."""
        pending = self._state["pending_company"]
        if not pending:
            raise OrderValidationError("Pick a company before confirming it")

        def apply(draft: OrderState) -> None:
            draft["company_name"] = pending["name"]
            draft["abn"] = pending["abn"]
            draft["company_details"] = details
            draft["directors"] = list(directors)
            if Category(draft["category"]) == Category.LAND_TITLE:
                draft["flags"]["land_title_organisation_confirmed"] = True
            else:
                draft["flags"]["organisation_confirmed"] = True

        return self.transact(apply)

    def set_individual(self, first_name: str, last_name: str, dob: str = "") -> OrderState:
        first_name, last_name, dob = first_name.strip(), last_name.strip(), dob.strip()
        current = self._state
        if (first_name, last_name, dob) == (current["first_name"], current["last_name"], current["dob"]):
            return current

        def apply(draft: OrderState) -> None:
            draft["first_name"] = first_name
            draft["last_name"] = last_name
            draft["dob"] = dob
            draft["flags"]["individual_name_confirmed"] = False
            draft["selected_records"] = {}
            _forget_counts(draft, {SearchType.LAND_TITLE.value, SearchType.LAND_TITLE_INDIVIDUAL.value})

        return self.transact(apply)

    def confirm_individual_name(self, records: dict[str, dict]) -> OrderState:
        def apply(draft: OrderState) -> None:
            draft["selected_records"] = dict(records)
            draft["flags"]["individual_name_confirmed"] = True

        return self.transact(apply)

    def set_document_id(self, document_id: str) -> OrderState:
        if SearchType.DOCUMENT_SEARCH.value not in self._state["selected_searches"]:
            raise OrderValidationError("Document ID only applies to ADD DOCUMENT SEARCH")

        def apply(draft: OrderState) -> None:
            draft["document_id"] = document_id.strip()

        return self.transact(apply)

    def set_address(self, address: str) -> OrderState:
        address = address.strip()
        if address == self._state["address"]:
            return self._state

        def apply(draft: OrderState) -> None:
            draft["address"] = address
            _forget_counts(draft, {SearchType.ADDRESS.value})

        return self.transact(apply)

    # ────────── RESET ──────────

    def reset(self, scope: str = "all") -> OrderState:
        if scope not in RESET_SCOPES:
            raise OrderValidationError(f"Unknown reset scope {scope}")
        draft = self._draft()

        if scope == "all":
            draft = new_order_state(self.category)
            self._staged.clear()
        elif scope == "main":
            draft["selected_searches"] = set()
            draft["bulk_locked"] -= set(main_searches(self.category))
            self._drop_staged("main")
        elif scope == "sub_type":
            draft["selected_asic_types"] = set()
            draft["selected_court_type"] = ""
        elif scope == "enrichment":
            draft["selected_additional"] = set()
            draft["bulk_locked"] = {o for o in draft["bulk_locked"] if o in draft["selected_searches"]}
            draft["land_title_select_all"] = False
            self._drop_staged("additional")
        elif scope == "land_title":
            draft["selected_searches"] -= LAND_TITLE_OPTIONS
            draft["selected_additional"] -= LAND_TITLE_OPTIONS
            draft["land_titles"] = {}
            draft["bulk_locked"] -= LAND_TITLE_OPTIONS
            draft["land_title_select_all"] = False
            draft["flags"]["title_reference_confirmed"] = False
            for change in list(self._staged.values()):
                if change["option"] in LAND_TITLE_OPTIONS:
                    del self._staged[change["id"]]

        print(f"[STORE] Reset {scope}")
        return self._commit(draft)

    def _drop_staged(self, scope: str) -> None:
        for change in list(self._staged.values()):
            if change["scope"] == scope:
                del self._staged[change["id"]]


# ────────── HELPERS ──────────

def toggle_asic_type(current: set[str], asic_type: str) -> set[str]:
    selected = set(current)
    individual = [t.value for t in ASIC_TYPES]
    if asic_type == SELECT_ALL:
        if SELECT_ALL in current:
            return set()
        return set(individual) | {SELECT_ALL}
    if asic_type in selected:
        selected.discard(asic_type)
    else:
        other = ASIC_EXCLUSIVE.get(AsicType(asic_type))
        if other:
            selected.discard(other.value)
        selected.add(asic_type)
    return selected


def _forget_company(draft: OrderState) -> None:
    draft["pending_company"] = None
    draft["company_name"] = ""
    draft["abn"] = ""
    draft["company_details"] = empty_company_details()
    draft["directors"] = []
    draft["flags"]["organisation_confirmed"] = False
    draft["flags"]["land_title_organisation_confirmed"] = False
    draft["selected_additional"] = set()
    draft["bulk_locked"] = set()
    draft["land_title_select_all"] = False
    _forget_counts(draft, {SearchType.LAND_TITLE_ORGANISATION.value})


def _forget_counts(draft: OrderState, options) -> None:
    """Identity or states changed: fetched counts no longer apply."""
    for option in options:
        current = draft["land_titles"].get(option)
        if not current:
            continue
        reset = default_land_title()
        reset["add_on"] = current["add_on"]
        reset["base_price"] = current["base_price"]
        reset["directors_at_config"] = current["directors_at_config"]
        reset["shown"] = current["shown"]
        # Without fresh counts only a summary pick stays valid; a detail pick has to be made again
        reset["configured"] = (current["configured"] and current["detail"] == LandTitleDetail.SUMMARY.value
                               and option != SearchType.TITLE_REFERENCE.value)
        draft["land_titles"][option] = reset
        if option == SearchType.TITLE_REFERENCE.value:
            draft["flags"]["title_reference_confirmed"] = False
