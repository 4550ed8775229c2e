"""Tests for the confirmation flows: sub-types, land titles, identity and the bulk sequence."""

from decimal import Decimal

import pytest

from ordering import tools
from ordering.catalog import SELECT_ALL, Category
from ordering.errors import FlowStateError, LookupFailed, OrderValidationError
from ordering.pricing import price
from ordering.sequencer import (
    AsicTypeFlow,
    BulkLandTitleSequence,
    CourtTypeFlow,
    DocumentIdFlow,
    FlowStep,
    LandTitleFlow,
    OrganisationConfirmFlow,
    PersonDisambiguationSequence,
    TitleReferenceFlow,
    count_queries,
    flow_for,
    flows_for,
)
from ordering.store import SelectionStore


def _counts(current, historical=0, references=()):
    async def fake(query):
        return {"current": current, "historical": historical,
                "title_references": [{"title_reference": r, "jurisdiction": "NSW"} for r in references]}
    return fake


async def _failing(*args, **kwargs):
    return {"error": "service unavailable"}


# =============================================================================
# SUB-TYPE AND FREE-TEXT FLOWS
# =============================================================================

class TestAsicTypeFlow:

    def test_confirm_commits_search_and_variants(self, org_store):
        change = org_store.toggle_main("ASIC")[0]
        flow = flow_for(org_store, change)
        assert isinstance(flow, AsicTypeFlow)
        flow.toggle("CURRENT")
        flow.toggle("COMPANY")
        flow.confirm()

        assert flow.step == FlowStep.CONFIRMED
        assert org_store.is_selected("ASIC")
        assert org_store.state["selected_asic_types"] == {"CURRENT", "COMPANY"}

    def test_confirm_needs_a_variant(self, org_store):
        flow = flow_for(org_store, org_store.toggle_main("ASIC")[0])
        with pytest.raises(OrderValidationError):
            flow.confirm()

    def test_cancel_leaves_nothing_behind(self, org_store):
        flow = flow_for(org_store, org_store.toggle_main("ASIC")[0])
        flow.toggle("CURRENT")
        flow.cancel()
        assert flow.step == FlowStep.CANCELLED
        assert not org_store.is_selected("ASIC")
        assert org_store.state["selected_asic_types"] == set()
        assert org_store.staged() == []

    def test_actions_after_finish_rejected(self, org_store):
        flow = flow_for(org_store, org_store.toggle_main("ASIC")[0])
        flow.cancel()
        with pytest.raises(FlowStateError):
            flow.toggle("CURRENT")


class TestCourtAndDocumentFlows:

    def test_court_defaults_to_all(self, org_store):
        flow = flow_for(org_store, org_store.toggle_main("COURT")[0])
        assert isinstance(flow, CourtTypeFlow)
        flow.confirm()
        assert org_store.state["selected_court_type"] == "ALL"

    def test_court_unknown_choice(self, org_store):
        flow = flow_for(org_store, org_store.toggle_main("COURT")[0])
        with pytest.raises(OrderValidationError):
            flow.choose("FAMILY")

    def test_individual_court_flow(self, individual_store):
        flow = flow_for(individual_store, individual_store.toggle_main("COURT")[0])
        flow.choose("CRIMINAL")
        flow.confirm()
        assert individual_store.state["selected_court_type"] == "CRIMINAL"

    def test_document_search_empties_enrichment_menu(self, confirmed_store):
        confirmed_store.toggle_enrichment("DIRECTOR PPSR")
        flow = flow_for(confirmed_store, confirmed_store.toggle_main("ADD DOCUMENT SEARCH")[0])
        assert isinstance(flow, DocumentIdFlow)
        with pytest.raises(OrderValidationError):
            flow.confirm("   ")
        flow.confirm("DOC123")

        state = confirmed_store.state
        assert state["document_id"] == "DOC123"
        assert state["offered_additional"] == []
        assert state["selected_additional"] == set()


# =============================================================================
# LAND TITLE
# =============================================================================

class TestLandTitleFlow:

    @pytest.mark.asyncio
    async def test_full_path(self, confirmed_store, lookup, monkeypatch):
        monkeypatch.setattr(tools, "land_title_counts", _counts(3, 1))
        change = confirmed_store.toggle_enrichment("ABN/ACN LAND TITLE")[0]
        flow = flow_for(confirmed_store, change, lookup)
        assert isinstance(flow, LandTitleFlow)
        assert flow.step == FlowStep.SUMMARY_PROMPT

        await flow.load_counts()
        assert flow.describe()["prices"]["CURRENT"] == "300.00"
        flow.continue_to_detail()
        flow.choose_detail("CURRENT")
        flow.continue_to_add_on()
        flow.choose_add_on(True)
        flow.confirm()

        selection = confirmed_store.state["land_titles"]["ABN/ACN LAND TITLE"]
        assert selection["configured"]
        assert selection["current_count"] == 3
        quote = price(Category.ORGANISATION, confirmed_store.state)
        assert quote["total"] == Decimal("340.00")

    @pytest.mark.asyncio
    async def test_failed_counts_cancel_the_flow(self, confirmed_store, lookup, monkeypatch):
        monkeypatch.setattr(tools, "land_title_counts", _failing)
        flow = flow_for(confirmed_store, confirmed_store.toggle_enrichment("ABN/ACN LAND TITLE")[0], lookup)

        with pytest.raises(LookupFailed):
            await flow.load_counts()
        assert flow.step == FlowStep.CANCELLED
        assert not confirmed_store.is_selected("ABN/ACN LAND TITLE")
        assert confirmed_store.staged() == []

    @pytest.mark.asyncio
    async def test_director_land_title_counts_every_director(self, confirmed_store, lookup, monkeypatch):
        per_director = {"Jane": 2, "John": 1, "Mary": 1}
        seen = []

        async def fake(query):
            seen.append(query.first_name)
            return {"current": per_director[query.first_name], "historical": 0, "title_references": []}

        monkeypatch.setattr(tools, "land_title_counts", fake)
        flow = flow_for(confirmed_store, confirmed_store.toggle_enrichment("DIRECTOR LAND TITLE")[0], lookup)
        assert flow.selection["base_price"] == "240.00"

        await flow.load_counts()
        flow.continue_to_detail()
        flow.choose_detail("CURRENT")
        flow.continue_to_add_on()
        flow.choose_add_on(True)
        flow.confirm()

        assert seen == ["Jane", "John", "Mary"]
        lines = {l["label"]: l for l in price(Category.ORGANISATION, confirmed_store.state)["lines"]}
        assert lines["DIRECTOR LAND TITLE"]["amount"] == Decimal("360.00")

    def test_detail_needs_counts(self, confirmed_store):
        flow = flow_for(confirmed_store, confirmed_store.toggle_enrichment("ABN/ACN LAND TITLE")[0])
        flow.continue_to_detail()
        with pytest.raises(OrderValidationError):
            flow.choose_detail("ALL")
        assert flow.choose_detail("SUMMARY") == "SUMMARY"

    @pytest.mark.asyncio
    async def test_state_change_during_flow_blocks_detail(self, confirmed_store, lookup, monkeypatch):
        monkeypatch.setattr(tools, "land_title_counts", _counts(3, 1))
        flow = flow_for(confirmed_store, confirmed_store.toggle_enrichment("ABN/ACN LAND TITLE")[0], lookup)
        await flow.load_counts()
        flow.continue_to_detail()
        flow.choose_detail("ALL")
        flow.continue_to_add_on()
        confirmed_store.set_land_title_states(["QLD"])
        with pytest.raises(FlowStateError):
            flow.confirm()

    def test_main_pick_keeps_configuration_of_same_enrichment_option(self, individual_store):
        enrichment = flow_for(individual_store, individual_store.toggle_enrichment("LAND TITLE")[0])
        enrichment.continue_to_detail()
        enrichment.continue_to_add_on()
        enrichment.confirm()
        assert "LAND TITLE" in individual_store.state["selected_additional"]

        main = flow_for(individual_store, individual_store.toggle_main("LAND TITLE")[0])
        main.continue_to_detail()
        main.continue_to_add_on()
        main.choose_add_on(True)
        main.confirm()

        state = individual_store.state
        assert "LAND TITLE" in state["selected_searches"]
        assert "LAND TITLE" not in state["selected_additional"]
        assert state["land_titles"]["LAND TITLE"]["configured"]
        assert state["land_titles"]["LAND TITLE"]["add_on"] is True

    @pytest.mark.asyncio
    async def test_reopened_flow_restores_detail(self, confirmed_store, lookup, monkeypatch):
        monkeypatch.setattr(tools, "land_title_counts", _counts(3, 1))
        flow = flow_for(confirmed_store, confirmed_store.toggle_enrichment("ABN/ACN LAND TITLE")[0], lookup)
        await flow.load_counts()
        flow.continue_to_detail()
        flow.choose_detail("CURRENT")
        flow.continue_to_add_on()
        flow.confirm()

        confirmed_store.set_land_title_states(["VIC"])
        assert not confirmed_store.state["land_titles"]["ABN/ACN LAND TITLE"]["configured"]

        again = LandTitleFlow(confirmed_store, lookup=lookup, option="ABN/ACN LAND TITLE")
        await again.load_counts()
        again.continue_to_detail()
        again.choose_detail("CURRENT")
        again.continue_to_add_on()
        again.confirm()
        selection = confirmed_store.state["land_titles"]["ABN/ACN LAND TITLE"]
        assert selection["configured"]
        assert selection["detail"] == "CURRENT"
        assert price(Category.ORGANISATION, confirmed_store.state)["total"] == Decimal("300.00")

    def test_count_queries_default_to_every_state(self, confirmed_store):
        queries = count_queries("ABN/ACN LAND TITLE", confirmed_store.state)
        assert len(queries) == 1
        assert queries[0].type == "organization"
        assert queries[0].abn == "51824753556"
        assert len(queries[0].states) == 8

    def test_count_queries_need_a_party(self, org_store):
        with pytest.raises(OrderValidationError):
            count_queries("ABN/ACN LAND TITLE", org_store.state)


class TestTitleReferenceFlow:

    @pytest.mark.asyncio
    async def test_pick_references(self, land_title_store, lookup, monkeypatch):
        monkeypatch.setattr(tools, "land_title_counts", _counts(2, 0, ["1/SP123", "2/SP123"]))
        land_title_store.set_address("1 George St Sydney")
        flow = flow_for(land_title_store, land_title_store.toggle_main("TITLE REFERENCE")[0], lookup)
        assert isinstance(flow, TitleReferenceFlow)

        with pytest.raises(FlowStateError):
            flow.confirm()
        await flow.load_references()
        assert flow.step == FlowStep.PICK
        with pytest.raises(OrderValidationError):
            flow.toggle_reference("9/DP999")
        flow.toggle_reference("2/SP123")
        flow.confirm()

        state = land_title_store.state
        assert state["flags"]["title_reference_confirmed"]
        assert [r["title_reference"] for r in state["land_titles"]["TITLE REFERENCE"]["reference_set"]] == ["2/SP123"]
        assert price(Category.LAND_TITLE, state)["total"] == Decimal("30.00")


# =============================================================================
# IDENTITY
# =============================================================================

class TestOrganisationConfirmFlow:

    @pytest.mark.asyncio
    async def test_confirm_reads_directors(self, org_store, lookup, monkeypatch):
        async def fake_extract(abn):
            return {"available": True, "rdata": {"asic_extracts": [{
                "directors": [
                    {"name": "Jane Citizen", "dob": "1970-02-01", "status": "Current"},
                    {"name": "John Smith", "dob": "1965-04-03", "status": "Current"},
                    {"name": "Old Director", "status": "Ceased"},
                ],
                "shareholders": [{"name": "Holding Co"}],
            }]}}

        monkeypatch.setattr(tools, "fetch_company_extract", fake_extract)
        org_store.set_pending_company("Acme Pty Ltd", "51824753556")
        flow = OrganisationConfirmFlow(org_store, lookup=lookup)
        await flow.confirm()

        state = org_store.state
        assert flow.step == FlowStep.CONFIRMED
        assert state["flags"]["organisation_confirmed"]
        assert state["company_details"] == {"directors": 2, "past_directors": 1, "shareholders": 1}
        assert state["directors"][0]["dob"] == "01/02/1970"
        menu = {o["name"]: o for o in state["offered_additional"]}
        assert menu["DIRECTOR PPSR"]["price"] == "100.00"

    @pytest.mark.asyncio
    async def test_extract_failure_still_confirms(self, org_store, lookup, monkeypatch):
        monkeypatch.setattr(tools, "fetch_company_extract", _failing)
        org_store.set_pending_company("Acme Pty Ltd", "51824753556")
        flow = OrganisationConfirmFlow(org_store, lookup=lookup)
        await flow.confirm()

        state = org_store.state
        assert state["flags"]["organisation_confirmed"]
        assert state["company_details"]["directors"] is None
        assert flow.error == "service unavailable"

    def test_needs_a_picked_company(self, org_store):
        with pytest.raises(OrderValidationError):
            OrganisationConfirmFlow(org_store)

    @pytest.mark.asyncio
    async def test_land_title_category_sets_its_own_flag(self, land_title_store, lookup, monkeypatch):
        async def fake_extract(abn):
            return {"available": True, "rdata": {"asic_extracts": []}}

        monkeypatch.setattr(tools, "fetch_company_extract", fake_extract)
        land_title_store.set_pending_company("Acme Pty Ltd", "51824753556")
        await OrganisationConfirmFlow(land_title_store, lookup=lookup).confirm()
        flags = land_title_store.state["flags"]
        assert flags["land_title_organisation_confirmed"]
        assert not flags["organisation_confirmed"]


class TestPersonDisambiguation:

    @pytest.mark.asyncio
    async def test_stages_run_in_order(self, individual_store, lookup, monkeypatch):
        async def fake_bankruptcy(first, last, dob=""):
            return {"matches": [{"name": "CITIZEN, Jane", "dob": "01/02/1970"}]}

        monkeypatch.setattr(tools, "bankruptcy_matches", fake_bankruptcy)
        individual_store.toggle_main("ASIC")
        individual_store.toggle_main("BANKRUPTCY")
        individual_store.toggle_main("PPSR")

        sequence = PersonDisambiguationSequence(individual_store, lookup=lookup)
        assert sequence.stages == ["bankruptcy", "related"]
        assert sequence.stage == "bankruptcy"

        with pytest.raises(FlowStateError):
            sequence.pick(0)
        await sequence.load_candidates()
        assert sequence.pick(0) == "related"
        assert not individual_store.state["flags"]["individual_name_confirmed"]

        assert sequence.cancel_stage() is None
        state = individual_store.state
        assert sequence.step == FlowStep.CONFIRMED
        assert state["flags"]["individual_name_confirmed"]
        assert not individual_store.is_selected("ASIC")
        assert state["selected_records"] == {"bankruptcy": {"name": "CITIZEN, Jane", "dob": "01/02/1970"}}

    @pytest.mark.asyncio
    async def test_related_lookup_sends_dashed_dob(self, individual_store, lookup, monkeypatch):
        calls = []

        async def fake_related(first, last, dob_from="", dob_to=""):
            calls.append((first, last, dob_from, dob_to))
            return {"matches": []}

        monkeypatch.setattr(tools, "related_entity_matches", fake_related)
        individual_store.toggle_main("ASIC")
        sequence = PersonDisambiguationSequence(individual_store, lookup=lookup)
        await sequence.load_candidates()
        assert calls == [("Jane", "Citizen", "01-02-1970", "01-02-1970")]

    @pytest.mark.asyncio
    async def test_failed_lookup_keeps_stage_open(self, individual_store, lookup, monkeypatch):
        monkeypatch.setattr(tools, "bankruptcy_matches", _failing)
        individual_store.toggle_main("BANKRUPTCY")
        sequence = PersonDisambiguationSequence(individual_store, lookup=lookup)
        with pytest.raises(LookupFailed):
            await sequence.load_candidates()
        assert sequence.stage == "bankruptcy"
        assert sequence.step == FlowStep.STAGE

    def test_enrichment_searches_have_stages_too(self, individual_store):
        individual_store.toggle_main("PPSR")
        individual_store.toggle_enrichment("BANKRUPTCY")
        individual_store.toggle_enrichment("ASIC")

        sequence = PersonDisambiguationSequence(individual_store)
        assert sequence.stages == ["bankruptcy", "related"]
        sequence.cancel_stage()
        assert not individual_store.is_selected("BANKRUPTCY")
        assert sequence.stage == "related"

    def test_no_applicable_stage_confirms_immediately(self, individual_store):
        individual_store.toggle_main("PPSR")
        sequence = PersonDisambiguationSequence(individual_store)
        assert sequence.finished
        assert individual_store.state["flags"]["individual_name_confirmed"]

    def test_needs_a_name(self):
        store = SelectionStore()
        store.set_category(Category.INDIVIDUAL)
        with pytest.raises(OrderValidationError):
            PersonDisambiguationSequence(store)


# =============================================================================
# BULK LAND TITLE
# =============================================================================

class TestBulkLandTitle:

    def _run_summary(self, flow):
        flow.continue_to_detail()
        flow.continue_to_add_on()
        flow.confirm()

    def test_select_all_runs_one_bulk_sequence(self, confirmed_store, lookup):
        staged = confirmed_store.toggle_enrichment(SELECT_ALL)
        flows = flows_for(confirmed_store, staged, lookup, bulk=True)
        assert len(flows) == 1
        assert isinstance(flows[0], BulkLandTitleSequence)
        assert [f.option for f in flows[0].flows] == ["ABN/ACN LAND TITLE", "DIRECTOR LAND TITLE"]

    def test_partial_configuration_locks_confirmed_option(self, confirmed_store, lookup):
        staged = confirmed_store.toggle_enrichment(SELECT_ALL)
        sequence = flows_for(confirmed_store, staged, lookup, bulk=True)[0]

        self._run_summary(sequence.current)
        next_flow = sequence.advance()
        assert next_flow.option == "DIRECTOR LAND TITLE"
        next_flow.cancel()
        assert sequence.advance() is None

        state = confirmed_store.state
        assert sequence.step == FlowStep.CANCELLED
        assert not state["land_title_select_all"]
        assert state["bulk_locked"] == {"ABN/ACN LAND TITLE"}
        assert not confirmed_store.is_selected("DIRECTOR LAND TITLE")
        assert SELECT_ALL not in state["selected_additional"]
        with pytest.raises(OrderValidationError):
            confirmed_store.toggle_enrichment("ABN/ACN LAND TITLE")

    def test_every_option_configured(self, confirmed_store, lookup):
        staged = confirmed_store.toggle_enrichment(SELECT_ALL)
        sequence = flows_for(confirmed_store, staged, lookup, bulk=True)[0]
        while sequence.current is not None:
            self._run_summary(sequence.current)
            sequence.advance()

        state = confirmed_store.state
        assert sequence.step == FlowStep.CONFIRMED
        assert state["land_title_select_all"]
        assert SELECT_ALL in state["selected_additional"]
        assert sequence.shown == ["ABN/ACN LAND TITLE", "DIRECTOR LAND TITLE"]

    def test_advance_before_current_finishes(self, confirmed_store, lookup):
        staged = confirmed_store.toggle_enrichment(SELECT_ALL)
        sequence = flows_for(confirmed_store, staged, lookup, bulk=True)[0]
        with pytest.raises(FlowStateError):
            sequence.advance()

    def test_cancel_drops_remaining_options(self, confirmed_store, lookup):
        staged = confirmed_store.toggle_enrichment(SELECT_ALL)
        sequence = flows_for(confirmed_store, staged, lookup, bulk=True)[0]
        sequence.cancel()
        assert sequence.step == FlowStep.CANCELLED
        assert confirmed_store.staged() == []
        assert not confirmed_store.is_selected("ABN/ACN LAND TITLE")
