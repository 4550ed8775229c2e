"""Order composer: turns a confirmed selection into report requests and submits them.

The submission itself is a small LangGraph state machine:

    validate -> submit (one request per step, looping) -> done

A failed check ends the run back in IDLE with nothing sent. A failed request
ends it in FAILED; whatever was produced before stays with the collector.
"""
from __future__ import annotations

from enum import Enum
from typing import Awaitable, Callable, Optional, TypedDict

from langgraph.graph import END, StateGraph

from ordering import tools
from ordering.artifacts import ArtifactCollector
from ordering.catalog import (
    ASIC_TYPES,
    DISAMBIGUATION_STAGES,
    LAND_TITLE_OPTIONS,
    SELECT_ALL,
    Category,
    SearchType,
    backend_type_for,
    is_director_scoped,
    main_searches,
    sub_type_for,
)
from ordering.errors import OrderValidationError, SubmissionError
from ordering.resolver import offered_names
from ordering.schemas import BusinessDetails, ReportRequest, ReportSpec
from ordering.state import OrderState

# Individual search -> disambiguation stage whose pick goes with its request
RECORD_STAGES = {search: stage for stage, search in DISAMBIGUATION_STAGES}


class OrderStatus(str, Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    SUBMITTING = "SUBMITTING"
    DONE = "DONE"
    FAILED = "FAILED"


class SubmissionState(TypedDict, total=False):
    order: OrderState
    session: dict
    requests: list[ReportRequest]
    index: int
    status: str
    error: str
    failed_type: str


# ────────── VALIDATION ──────────

def _selected(members: set[str]) -> list[str]:
    return sorted(m for m in members if m != SELECT_ALL)


def validate(order: OrderState) -> None:
    """Raise OrderValidationError for the first check the order fails."""
    category = Category(order["category"])
    flags = order["flags"]
    mains = _selected(order["selected_searches"])
    additional = _selected(order["selected_additional"])

    # 1. identity
    if category == Category.ORGANISATION and not flags["organisation_confirmed"]:
        raise OrderValidationError("Select and confirm a company first")
    if category == Category.INDIVIDUAL:
        if not order["first_name"] or not order["last_name"]:
            raise OrderValidationError("Enter first name and last name")
        if not flags["individual_name_confirmed"]:
            raise OrderValidationError("Confirm the person's name before ordering")
    if category == Category.LAND_TITLE:
        if SearchType.LAND_TITLE_ORGANISATION.value in mains and not flags["land_title_organisation_confirmed"]:
            raise OrderValidationError("Select and confirm the title holder company first")
        if SearchType.LAND_TITLE_INDIVIDUAL.value in mains and (not order["first_name"] or not order["last_name"]):
            raise OrderValidationError("Enter the title holder's first name and last name")
        if SearchType.ADDRESS.value in mains and not order["address"]:
            raise OrderValidationError("Enter the property address")

    # 2. something to order
    if not mains and not additional:
        raise OrderValidationError("Select at least one search option")

    # 3. sub-types, whichever menu the parent was picked from
    for search in mains + additional:
        parent = sub_type_for(category, search)
        if parent == "asic" and not _selected(order["selected_asic_types"]):
            raise OrderValidationError("Select an ASIC type (Current, Current/Historical or Company)")
        if parent == "court" and not order["selected_court_type"]:
            raise OrderValidationError("Select a court type")

    # 4. land titles
    for option in mains + additional:
        if option not in LAND_TITLE_OPTIONS:
            continue
        selection = order["land_titles"].get(option)
        if option == SearchType.TITLE_REFERENCE.value:
            if not flags["title_reference_confirmed"] or not selection or not selection["reference_set"]:
                raise OrderValidationError("Pick and confirm the title references to search")
        elif not selection or not selection["configured"]:
            raise OrderValidationError(f"Choose the land title search detail for {option}")

    # 5. document search
    if SearchType.DOCUMENT_SEARCH.value in mains and not order["document_id"].strip():
        raise OrderValidationError("Enter a document ID for the document search")


# ────────── COMPOSITION ──────────

def _spec(category: Category, display: str, kind: str, option: str, **metadata) -> ReportSpec:
    return ReportSpec(
        backend_type=backend_type_for(category, display),
        display_name=display,
        metadata={"kind": kind, "option": option, **metadata},
    )


def compose(order: OrderState) -> list[ReportSpec]:
    """Report specs in submission order: main, sub-type expansions, enrichment, land title."""
    category = Category(order["category"])
    selected = order["selected_searches"]
    mains = [s for s in main_searches(category) if s in selected]
    specs: list[ReportSpec] = []
    expansions: list[ReportSpec] = []
    land_titles: list[ReportSpec] = []

    for search in mains:
        if search in LAND_TITLE_OPTIONS:
            land_titles.append(_spec(category, search, "land_title", search))
            continue
        parent = sub_type_for(category, search)
        if parent == "asic" and _selected(order["selected_asic_types"]):
            for asic_type in ASIC_TYPES:
                if asic_type.value in order["selected_asic_types"]:
                    display = f"ASIC: {asic_type.value}"
                    expansions.append(_spec(category, display, "sub_type", search, variant=asic_type.value))
        elif parent == "court" and order["selected_court_type"]:
            display = f"COURT: {order['selected_court_type']}"
            expansions.append(_spec(category, display, "sub_type", search, variant=order["selected_court_type"]))
        else:
            specs.append(_spec(category, search, "main", search))

    specs.extend(expansions)

    additional = order["selected_additional"]
    for option in offered_names(order):
        if option not in additional:
            continue
        if option in LAND_TITLE_OPTIONS:
            land_titles.append(_spec(category, option, "land_title", option))
        elif sub_type_for(category, option) == "court" and order["selected_court_type"]:
            display = f"COURT: {order['selected_court_type']}"
            specs.append(_spec(category, display, "enrichment", option, variant=order["selected_court_type"]))
        else:
            specs.append(_spec(category, option, "enrichment", option))

    return specs + land_titles


def _land_title_payload(order: OrderState, option: str) -> Optional[dict]:
    selection = order["land_titles"].get(option)
    if not selection:
        return None
    return {
        "option": option,
        "detail": selection["detail"],
        "addOn": selection["add_on"],
        "referenceSet": selection["reference_set"],
        "currentCount": selection["current_count"],
        "historicalCount": selection["historical_count"],
        "states": order["land_title_states"],
    }


def _business(order: OrderState, spec: ReportSpec) -> BusinessDetails:
    category = Category(order["category"])
    option = spec.metadata["option"]
    land_title = _land_title_payload(order, option) if option in LAND_TITLE_OPTIONS else None

    if category == Category.ORGANISATION:
        document_id = None
        if option == SearchType.DOCUMENT_SEARCH.value:
            document_id = order["document_id"]
        return BusinessDetails(
            abn=order["abn"], name=order["company_name"] or "Unknown", is_company="ORGANISATION",
            document_id=document_id, land_title_selection=land_title,
        )

    if category == Category.INDIVIDUAL:
        return BusinessDetails(
            fname=order["first_name"], lname=order["last_name"], dob=order["dob"] or None,
            is_company="INDIVIDUAL", land_title_selection=land_title,
            selected_record=order["selected_records"].get(RECORD_STAGES.get(option, "")),
        )

    # LAND TITLE: the party follows the option
    if option == SearchType.ADDRESS.value:
        return BusinessDetails(is_company="ADDRESS", address=order["address"], land_title_selection=land_title)
    if option == SearchType.LAND_TITLE_INDIVIDUAL.value or (
            option == SearchType.TITLE_REFERENCE.value and not order["abn"] and order["last_name"]):
        return BusinessDetails(fname=order["first_name"], lname=order["last_name"], dob=order["dob"] or None,
                               is_company="INDIVIDUAL", land_title_selection=land_title)
    return BusinessDetails(abn=order["abn"] or None, name=order["company_name"] or None,
                           is_company="ORGANISATION", land_title_selection=land_title)


def plan(order: OrderState, session: dict) -> list[ReportRequest]:
    """One request per spec, or one per director for director-scoped organisation reports."""
    category = Category(order["category"])
    user_id = session.get("user_id") or 0
    matter_id = session.get("matter_id")
    requests: list[ReportRequest] = []

    for spec in compose(order):
        business = _business(order, spec)
        if (is_director_scoped(spec.backend_type) and category == Category.ORGANISATION
                and order["directors"]):
            for director in order["directors"]:
                per_director = business.model_copy(update={
                    "fname": director["first_name"],
                    "lname": director["last_name"],
                    "dob": director["dob"] or None,
                })
                requests.append(ReportRequest(type=spec.backend_type, user_id=user_id,
                                              matter_id=matter_id, business=per_director))
        else:
            requests.append(ReportRequest(type=spec.backend_type, user_id=user_id,
                                          matter_id=matter_id, business=business))
    return requests


# ────────── SUBMISSION ──────────

class OrderComposer:

    def __init__(self, collector: ArtifactCollector,
                 create: Optional[Callable[[ReportRequest], Awaitable[str]]] = None):
        self.collector = collector
        self._create = create
        self.status = OrderStatus.IDLE
        self.submitted = 0
        self.total = 0
        self._graph = self._build_graph()

    def _build_graph(self):
        graph = StateGraph(SubmissionState)
        graph.add_node("validate", self._validate_node)
        graph.add_node("submit", self._submit_node)
        graph.add_node("done", self._done_node)

        graph.set_entry_point("validate")
        graph.add_conditional_edges("validate", self._after_validate, {"submit": "submit", END: END})
        graph.add_conditional_edges("submit", self._after_submit,
                                    {"submit": "submit", "done": "done", END: END})
        graph.add_edge("done", END)
        return graph.compile()

    # ────────── NODES ──────────

    async def _validate_node(self, state: SubmissionState) -> dict:
        self.status = OrderStatus.VALIDATING
        order = state["order"]
        try:
            validate(order)
        except OrderValidationError as e:
            print(f"[ORDER] Validation failed: {e}")
            self.status = OrderStatus.IDLE
            return {"status": OrderStatus.IDLE.value, "error": str(e)}

        requests = plan(order, state["session"])
        # A new batch starts from an empty collector
        self.collector.clear()
        self.submitted = 0
        self.total = len(requests)
        self.status = OrderStatus.SUBMITTING
        print(f"[ORDER] Submitting {len(requests)} report request(s)")
        return {"status": OrderStatus.SUBMITTING.value, "requests": requests, "index": 0}

    async def _submit_node(self, state: SubmissionState) -> dict:
        index = state["index"]
        request = state["requests"][index]
        create = self._create or tools.create_report
        try:
            filename = await create(request)
        except SubmissionError as e:
            print(f"[ORDER] Request {index + 1}/{len(state['requests'])} ({request.type}) failed: {e}")
            self.status = OrderStatus.FAILED
            return {"status": OrderStatus.FAILED.value, "error": str(e), "failed_type": request.type}

        self.collector.append(filename)
        self.submitted = index + 1
        return {"index": index + 1}

    async def _done_node(self, state: SubmissionState) -> dict:
        self.status = OrderStatus.DONE
        print(f"[ORDER] Done: {self.collector.count()} report(s)")
        return {"status": OrderStatus.DONE.value}

    @staticmethod
    def _after_validate(state: SubmissionState) -> str:
        if state["status"] == OrderStatus.SUBMITTING.value and state["requests"]:
            return "submit"
        return END

    @staticmethod
    def _after_submit(state: SubmissionState) -> str:
        if state["status"] == OrderStatus.FAILED.value:
            return END
        if state["index"] < len(state["requests"]):
            return "submit"
        return "done"

    # ────────── ENTRY POINT ──────────

    async def submit(self, order: OrderState, session: Optional[dict] = None) -> dict:
        """Validate and submit the order. Raises OrderValidationError or SubmissionError."""
        session = session or {}
        # validate + one step per request + done, with room to spare
        director_factor = max(1, len(order["directors"]))
        limit = len(compose(order)) * director_factor + 10

        try:
            final = await self._graph.ainvoke(
                {"order": order, "session": session, "requests": [], "index": 0,
                 "status": OrderStatus.IDLE.value, "error": "", "failed_type": ""},
                config={"recursion_limit": limit},
            )
        except Exception:
            self.status = OrderStatus.FAILED
            raise

        if final["status"] == OrderStatus.IDLE.value:
            raise OrderValidationError(final["error"])
        if final["status"] == OrderStatus.FAILED.value:
            raise SubmissionError(final["error"], report_type=final["failed_type"],
                                  submitted=final["index"], artifacts=self.collector.list())
        return {
            "status": self.status.value,
            "submitted": self.submitted,
            "artifacts": self.collector.list(),
            "matter_name": session.get("matter_name", ""),
        }
