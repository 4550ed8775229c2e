"""Modal sequencer: confirmation flows that stand between a pick and the committed order.

Each flow walks ENTRY -> ... -> CONFIRMED | CANCELLED. A flow started by a
staged change commits it (with whatever the flow decided) on confirm and
discards it on cancel, so the committed store never shows an option whose flow
has not finished.
"""
from __future__ import annotations

import copy
from enum import Enum
from typing import Optional

from ordering.catalog import (
    AUSTRALIAN_STATES,
    DIRECTOR_SCOPED,
    DISAMBIGUATION_STAGES,
    LAND_TITLE_ADD_ON_PRICE,
    SELECT_ALL,
    TITLE_REFERENCE_PRICE,
    AdditionalSearchType,
    AsicType,
    Category,
    CourtType,
    LandTitleDetail,
    SearchType,
)
from ordering.errors import FlowStateError, LookupFailed, OrderValidationError
from ordering.lookup import LookupAdapter
from ordering.pricing import detail_price, land_title_base
from ordering.resolver import active_stages
from ordering.schemas import LandTitleCountsQuery
from ordering.state import LandTitleSelection, OrderState, default_land_title, empty_company_details
from ordering.store import SelectionStore, StagedChange, toggle_asic_type


class FlowStep(str, Enum):
    ENTRY = "ENTRY"
    SUMMARY_PROMPT = "SUMMARY_PROMPT"
    DETAIL = "DETAIL"
    ADD_ON = "ADD_ON"
    PICK = "PICK"
    STAGE = "STAGE"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class ModalFlow:
    kind = ""

    def __init__(self, store: SelectionStore, change: Optional[StagedChange] = None,
                 lookup: Optional[LookupAdapter] = None):
        self.store = store
        self.change = change
        self.lookup = lookup
        self.step = FlowStep.ENTRY
        self.error = ""

    @property
    def option(self) -> str:
        return self.change["option"] if self.change else ""

    @property
    def finished(self) -> bool:
        return self.step in (FlowStep.CONFIRMED, FlowStep.CANCELLED)

    def _require(self, *steps: FlowStep) -> None:
        if self.step not in steps:
            raise FlowStateError(f"{self.kind} flow is at {self.step.value}, expected "
                                 f"{' or '.join(s.value for s in steps)}")

    def _confirm(self, apply=None) -> OrderState:
        if self.change:
            state = self.store.commit_staged(self.change, apply)
        elif apply:
            state = self.store.transact(apply)
        else:
            state = self.store.state
        self.step = FlowStep.CONFIRMED
        print(f"[FLOW] {self.kind} confirmed {self.option}".rstrip())
        return state

    def cancel(self) -> None:
        """Abandon the flow. A staged option is dropped before this returns."""
        if self.finished:
            return
        if self.change:
            self.store.discard_staged(self.change)
        self.step = FlowStep.CANCELLED
        print(f"[FLOW] {self.kind} cancelled {self.option}".rstrip())

    def describe(self) -> dict:
        return {"kind": self.kind, "option": self.option, "step": self.step.value,
                "error": self.error, **self._details()}

    def _details(self) -> dict:
        return {}


# ────────── SUB-TYPE AND FREE-TEXT FLOWS ──────────

class AsicTypeFlow(ModalFlow):
    """Pick one or more ASIC report variants."""
    kind = "asic_type"

    def __init__(self, store, change=None, lookup=None):
        super().__init__(store, change, lookup)
        self.variants: set[str] = set(store.state["selected_asic_types"])

    def toggle(self, variant: str) -> set[str]:
        self._require(FlowStep.ENTRY)
        variant = str(getattr(variant, "value", variant))
        if variant not in {t.value for t in AsicType}:
            raise OrderValidationError(f"Unknown ASIC type {variant}")
        self.variants = toggle_asic_type(self.variants, variant)
        return self.variants

    def confirm(self) -> OrderState:
        self._require(FlowStep.ENTRY)
        chosen = self.variants - {SELECT_ALL}
        if not chosen:
            raise OrderValidationError("Choose at least one ASIC report type")

        def apply(draft: OrderState) -> None:
            draft["selected_asic_types"] = set(chosen)

        return self._confirm(apply)

    def _details(self) -> dict:
        return {"variants": sorted(self.variants)}


class CourtTypeFlow(ModalFlow):
    """Pick exactly one court variant; ALL unless changed."""
    kind = "court_type"

    def __init__(self, store, change=None, lookup=None):
        super().__init__(store, change, lookup)
        self.choice = store.state["selected_court_type"] or CourtType.ALL.value

    def choose(self, court_type: str) -> str:
        self._require(FlowStep.ENTRY)
        try:
            self.choice = CourtType(court_type).value
        except ValueError:
            raise OrderValidationError(f"Unknown court type {court_type}")
        return self.choice

    def confirm(self) -> OrderState:
        self._require(FlowStep.ENTRY)
        choice = self.choice

        def apply(draft: OrderState) -> None:
            draft["selected_court_type"] = choice

        return self._confirm(apply)

    def _details(self) -> dict:
        return {"choice": self.choice}


class DocumentIdFlow(ModalFlow):
    kind = "document_id"

    def confirm(self, document_id: str) -> OrderState:
        self._require(FlowStep.ENTRY)
        document_id = (document_id or "").strip()
        if not document_id:
            raise OrderValidationError("Enter a document ID")

        def apply(draft: OrderState) -> None:
            draft["document_id"] = document_id

        return self._confirm(apply)


# ────────── LAND TITLE ──────────

def _states(state: OrderState) -> list[str]:
    return list(state["land_title_states"]) or list(AUSTRALIAN_STATES)


def count_queries(option: str, state: OrderState) -> list[LandTitleCountsQuery]:
    """Availability queries that price a land-title option for the current party."""
    states = _states(state)

    if option in (AdditionalSearchType.ABN_ACN_LAND_TITLE.value, SearchType.LAND_TITLE_ORGANISATION.value):
        if not state["abn"]:
            raise OrderValidationError("Confirm the organisation before configuring land titles")
        return [LandTitleCountsQuery(type="organization", abn=state["abn"],
                                     company_name=state["company_name"], states=states)]

    if option == AdditionalSearchType.DIRECTOR_LAND_TITLE.value:
        if not state["directors"]:
            raise OrderValidationError("No current directors to search land titles for")
        return [
            LandTitleCountsQuery(type="individual", first_name=d["first_name"], last_name=d["last_name"],
                                 dob=d["dob"] or None, states=states)
            for d in state["directors"]
        ]

    if option in (SearchType.LAND_TITLE.value, SearchType.LAND_TITLE_INDIVIDUAL.value):
        if not state["last_name"]:
            raise OrderValidationError("Enter the person's name before configuring land titles")
        return [LandTitleCountsQuery(type="individual", first_name=state["first_name"],
                                     last_name=state["last_name"], dob=state["dob"] or None, states=states)]

    if option == SearchType.ADDRESS.value:
        if not state["address"]:
            raise OrderValidationError("Enter an address before configuring land titles")
        return [LandTitleCountsQuery(type="address", address=state["address"], states=states)]

    if option == SearchType.TITLE_REFERENCE.value:
        if state["abn"]:
            return count_queries(SearchType.LAND_TITLE_ORGANISATION.value, state)
        if state["last_name"]:
            return count_queries(SearchType.LAND_TITLE_INDIVIDUAL.value, state)
        if state["address"]:
            return count_queries(SearchType.ADDRESS.value, state)
        raise OrderValidationError("Identify a company, person or address to list title references")

    raise OrderValidationError(f"{option} is not a land title search")


class LandTitleFlow(ModalFlow):
    """SUMMARY_PROMPT -> DETAIL -> ADD_ON -> CONFIRMED for one land-title option."""
    kind = "land_title"

    def __init__(self, store, change=None, lookup=None, option: str = ""):
        super().__init__(store, change, lookup)
        self._option = option or (change["option"] if change else "")
        state = store.state
        if not change and not store.is_selected(self._option):
            raise OrderValidationError(f"{self._option} is not selected")

        existing = state["land_titles"].get(self._option)
        self.selection: LandTitleSelection = copy.deepcopy(existing) if existing else default_land_title()
        base, _ = land_title_base(self._option, state)
        self.selection["base_price"] = str(base)
        self.selection["directors_at_config"] = (
            state["company_details"]["directors"] if self._option in DIRECTOR_SCOPED else None
        )
        self._states_at_load: Optional[list[str]] = None
        if self.counts_loaded:
            self._states_at_load = list(state["land_title_states"])
        self.step = FlowStep.SUMMARY_PROMPT

    @property
    def option(self) -> str:
        return self._option

    @property
    def counts_loaded(self) -> bool:
        return self.selection["current_count"] is not None and self.selection["historical_count"] is not None

    async def load_counts(self) -> dict:
        self._require(FlowStep.SUMMARY_PROMPT, FlowStep.DETAIL)
        if self.lookup is None:
            raise FlowStateError("No lookup adapter to fetch title counts with")
        state = self.store.state
        queries = count_queries(self.option, state)
        result = await self.lookup.land_title_counts(self.option, queries)

        if result["status"] == "error":
            self.error = result["error"]
            self.cancel()
            raise LookupFailed("land_title_counts", result["error"])
        if result["status"] != "ok":
            return result

        counts = result["data"]
        self.selection["current_count"] = counts["current"]
        self.selection["historical_count"] = counts["historical"]
        self.selection["title_references"] = counts["title_references"]
        self._states_at_load = list(state["land_title_states"])
        print(f"[FLOW] {self.option}: {counts['current']} current, {counts['historical']} historical titles")
        return result

    def continue_to_detail(self) -> None:
        self._require(FlowStep.SUMMARY_PROMPT)
        self.step = FlowStep.DETAIL

    def choose_detail(self, detail: LandTitleDetail | str) -> str:
        self._require(FlowStep.DETAIL)
        try:
            detail = LandTitleDetail(detail)
        except ValueError:
            raise OrderValidationError(f"Unknown land title detail {detail}")
        if detail != LandTitleDetail.SUMMARY and not self.counts_loaded:
            raise OrderValidationError("Title counts must be fetched before choosing a detailed search")
        self.selection["detail"] = detail.value
        return detail.value

    def continue_to_add_on(self) -> None:
        self._require(FlowStep.DETAIL)
        self.step = FlowStep.ADD_ON

    def choose_add_on(self, enabled: bool) -> bool:
        self._require(FlowStep.ADD_ON)
        self.selection["add_on"] = bool(enabled)
        return self.selection["add_on"]

    def confirm(self) -> OrderState:
        self._require(FlowStep.ADD_ON)
        if (self.selection["detail"] != LandTitleDetail.SUMMARY.value
                and self._states_at_load != list(self.store.state["land_title_states"])):
            raise FlowStateError("States changed since the counts were fetched; fetch them again")

        option = self.option
        selection = copy.deepcopy(self.selection)
        selection["configured"] = True
        selection["shown"] = True

        def apply(draft: OrderState) -> None:
            draft["land_titles"][option] = selection

        return self._confirm(apply)

    def _details(self) -> dict:
        prices = {LandTitleDetail.SUMMARY.value: self.selection["base_price"]}
        for detail in (LandTitleDetail.CURRENT, LandTitleDetail.PAST, LandTitleDetail.ALL):
            prices[detail.value] = (
                str(detail_price(self.option, self.selection, detail,
                                 self.selection["current_count"], self.selection["historical_count"]))
                if self.counts_loaded else None
            )
        return {
            "detail": self.selection["detail"],
            "add_on": self.selection["add_on"],
            "counts": {"current": self.selection["current_count"],
                       "historical": self.selection["historical_count"]},
            "prices": prices,
            "add_on_price": str(LAND_TITLE_ADD_ON_PRICE),
        }


class TitleReferenceFlow(ModalFlow):
    """Pick the title references to search from the party's fetched titles."""
    kind = "title_reference"

    def __init__(self, store, change=None, lookup=None):
        super().__init__(store, change, lookup)
        self.available: list[dict] = []
        self.picked: list[str] = []

    async def load_references(self) -> dict:
        self._require(FlowStep.ENTRY, FlowStep.PICK)
        if self.lookup is None:
            raise FlowStateError("No lookup adapter to fetch title references with")
        queries = count_queries(self.option, self.store.state)
        result = await self.lookup.land_title_counts(self.option, queries)

        if result["status"] == "error":
            self.error = result["error"]
            self.cancel()
            raise LookupFailed("title_references", result["error"])
        if result["status"] != "ok":
            return result

        self.available = result["data"]["title_references"]
        self.picked = [p for p in self.picked if p in self._references()]
        self.step = FlowStep.PICK
        return result

    def _references(self) -> list[str]:
        return [r["title_reference"] for r in self.available]

    def toggle_reference(self, title_reference: str) -> list[str]:
        self._require(FlowStep.PICK)
        if title_reference not in self._references():
            raise OrderValidationError(f"Unknown title reference {title_reference}")
        if title_reference in self.picked:
            self.picked.remove(title_reference)
        else:
            self.picked.append(title_reference)
        return self.picked

    def confirm(self) -> OrderState:
        self._require(FlowStep.PICK)
        if not self.picked:
            raise OrderValidationError("Pick at least one title reference")

        option = self.option
        selection = default_land_title()
        selection["title_references"] = list(self.available)
        selection["reference_set"] = [r for r in self.available if r["title_reference"] in self.picked]
        selection["base_price"] = str(TITLE_REFERENCE_PRICE)
        selection["configured"] = True
        selection["shown"] = True

        def apply(draft: OrderState) -> None:
            draft["land_titles"][option] = selection
            draft["flags"]["title_reference_confirmed"] = True

        return self._confirm(apply)

    def _details(self) -> dict:
        return {"available": self.available, "picked": self.picked,
                "unit_price": str(TITLE_REFERENCE_PRICE)}


# ────────── IDENTITY ──────────

class OrganisationConfirmFlow(ModalFlow):
    """Confirm the picked company and read its directors from the current extract."""
    kind = "organisation"

    def __init__(self, store, change=None, lookup=None):
        super().__init__(store, change, lookup)
        if not store.state["pending_company"]:
            raise OrderValidationError("Pick a company before confirming it")
        self.company = dict(store.state["pending_company"])

    @property
    def option(self) -> str:
        return self.company["name"]

    async def confirm(self) -> OrderState:
        self._require(FlowStep.ENTRY)
        if self.lookup is None:
            raise FlowStateError("No lookup adapter to read the company extract with")
        result = await self.lookup.company_extract(self.company["abn"])
        if result["status"] in ("stale", "superseded"):
            return self.store.state
        if self.store.state["pending_company"] != self.company:
            raise FlowStateError("A different company was picked while this one was being confirmed")

        if result["status"] == "ok":
            details, directors = result["data"]["details"], result["data"]["directors"]
        else:
            # Director-priced options stay provisional until an extract is read
            self.error = result["error"]
            print(f"[FLOW] No extract for {self.company['abn']}: {self.error}")
            details, directors = empty_company_details(), []

        self.store.confirm_organisation(details, directors)
        self.step = FlowStep.CONFIRMED
        print(f"[FLOW] organisation confirmed {self.company['name']} ({details['directors']} directors)")
        return self.store.state

    def _details(self) -> dict:
        return {"company": self.company}


class PersonDisambiguationSequence(ModalFlow):
    """Resolve the individual to one record per active search, in a fixed order.

    Cancelling a stage drops the search it belongs to and moves on. The name is
    confirmed once every applicable stage is picked or skipped.
    """
    kind = "person"

    def __init__(self, store, change=None, lookup=None):
        super().__init__(store, change, lookup)
        state = store.state
        if Category(state["category"]) != Category.INDIVIDUAL:
            raise OrderValidationError("Name confirmation only applies to individual searches")
        if not state["last_name"]:
            raise OrderValidationError("Enter the person's name first")
        self.stages = active_stages(state)
        self.index = 0
        self.candidates: Optional[list[dict]] = None
        self.records: dict[str, dict] = {}
        self.skipped: list[str] = []
        self.step = FlowStep.STAGE
        self._finish_if_done()

    @property
    def option(self) -> str:
        return " ".join(p for p in (self.store.state["first_name"], self.store.state["last_name"]) if p)

    @property
    def stage(self) -> Optional[str]:
        return self.stages[self.index] if self.index < len(self.stages) else None

    async def load_candidates(self) -> dict:
        self._require(FlowStep.STAGE)
        if self.lookup is None:
            raise FlowStateError("No lookup adapter to search records with")
        state = self.store.state
        first, last, dob = state["first_name"], state["last_name"], state["dob"]
        stage = self.stage

        if stage == "bankruptcy":
            result = await self.lookup.bankruptcy_matches(first, last, dob)
        elif stage == "related":
            result = await self.lookup.related_entity_matches(first, last, dob)
        elif stage == "court":
            result = await self.lookup.court_matches(first, last, state["selected_court_type"] or CourtType.ALL.value)
        else:
            result = await self.lookup.land_title_names(first, last, _states(state))

        if result["status"] == "error":
            # The stage stays open so the lookup can be retried
            self.error = result["error"]
            raise LookupFailed(stage, result["error"])
        if result["status"] == "ok" and self.stage == stage:
            self.error = ""
            self.candidates = result["results"]
        return result

    def pick(self, index: int) -> Optional[str]:
        self._require(FlowStep.STAGE)
        if self.candidates is None:
            raise FlowStateError(f"Load the {self.stage} candidates before picking one")
        if not 0 <= index < len(self.candidates):
            raise OrderValidationError(f"No {self.stage} candidate #{index}")
        self.records[self.stage] = self.candidates[index]
        return self._advance()

    def cancel_stage(self) -> Optional[str]:
        """Skip this stage and drop the search it belongs to."""
        self._require(FlowStep.STAGE)
        stage = self.stage
        search = dict(DISAMBIGUATION_STAGES)[stage]

        def apply(draft: OrderState) -> None:
            draft["selected_searches"].discard(search)
            draft["selected_additional"].discard(search)
            draft["bulk_locked"].discard(search)

        self.store.transact(apply)
        self.skipped.append(stage)
        print(f"[FLOW] person stage {stage} skipped, {search} removed")
        return self._advance()

    def _advance(self) -> Optional[str]:
        self.index += 1
        self.candidates = None
        self._finish_if_done()
        return self.stage

    def _finish_if_done(self) -> None:
        if self.index < len(self.stages):
            return
        self.store.confirm_individual_name(self.records)
        self.step = FlowStep.CONFIRMED
        print(f"[FLOW] person confirmed {self.option} ({len(self.records)} records)")

    def _details(self) -> dict:
        return {"stages": self.stages, "stage": self.stage, "candidates": self.candidates,
                "records": self.records, "skipped": self.skipped}


# ────────── BULK LAND TITLE ──────────

class BulkLandTitleSequence(ModalFlow):
    """Run the land-title flow for every option a SELECT ALL staged, one at a time."""
    kind = "bulk_land_title"

    def __init__(self, store, changes: list[StagedChange], lookup=None):
        super().__init__(store, None, lookup)
        self.flows: list[LandTitleFlow] = [LandTitleFlow(store, c, lookup) for c in changes]
        self.index = 0
        self.configured: list[str] = []
        self.shown: list[str] = []
        self.step = FlowStep.STAGE
        self._finish_if_done()

    @property
    def option(self) -> str:
        return SELECT_ALL

    @property
    def current(self) -> Optional[LandTitleFlow]:
        return self.flows[self.index] if self.index < len(self.flows) else None

    def advance(self) -> Optional[LandTitleFlow]:
        """Move past the current option once its flow has finished."""
        self._require(FlowStep.STAGE)
        flow = self.current
        if not flow.finished:
            raise FlowStateError(f"{flow.option} is still being configured")
        self.shown.append(flow.option)
        if flow.step == FlowStep.CONFIRMED:
            self.configured.append(flow.option)
            self.store.lock_options([flow.option])
        self.index += 1
        self._finish_if_done()
        return self.current

    def cancel(self) -> None:
        if self.finished:
            return
        for flow in self.flows[self.index:]:
            flow.cancel()
            self.shown.append(flow.option)
        self.index = len(self.flows)
        self._finish_if_done()

    def _finish_if_done(self) -> None:
        if self.index < len(self.flows):
            return
        all_configured = bool(self.flows) and len(self.configured) == len(self.flows)
        self.store.set_land_title_select_all(all_configured)
        self.step = FlowStep.CONFIRMED if all_configured else FlowStep.CANCELLED
        print(f"[FLOW] bulk land title done: {len(self.configured)}/{len(self.flows)} configured")

    def _details(self) -> dict:
        current = self.current
        return {"options": [f.option for f in self.flows], "configured": self.configured,
                "shown": self.shown, "current": current.describe() if current else None}


# ────────── DISPATCH ──────────

FLOW_TYPES: dict[str, type[ModalFlow]] = {
    "asic_type": AsicTypeFlow,
    "court_type": CourtTypeFlow,
    "document_id": DocumentIdFlow,
    "land_title": LandTitleFlow,
    "title_reference": TitleReferenceFlow,
}


def flow_for(store: SelectionStore, change: StagedChange, lookup: Optional[LookupAdapter] = None) -> ModalFlow:
    try:
        flow_type = FLOW_TYPES[change["flow"]]
    except KeyError:
        raise FlowStateError(f"No confirmation flow named {change['flow']}")
    return flow_type(store, change, lookup)


def flows_for(store: SelectionStore, changes: list[StagedChange],
              lookup: Optional[LookupAdapter] = None, bulk: bool = False) -> list[ModalFlow]:
    """Flows to run, in order, for the changes one toggle staged.

    Land-title options staged together by an enrichment SELECT ALL run as one
    bulk sequence so their lock and aggregate flag are decided together.
    """
    land_titles = [c for c in changes if c["flow"] == "land_title" and c["scope"] == "additional"]
    flows = [flow_for(store, c, lookup) for c in changes if not (bulk and c in land_titles)]
    if bulk and land_titles:
        flows.append(BulkLandTitleSequence(store, land_titles, lookup))
    return flows
