"""Tests for the selection store's mutators and staged transactions."""

import pytest

from ordering.catalog import SELECT_ALL, AdditionalSearchType, Category, SearchType
from ordering.errors import FlowStateError, OrderValidationError
from ordering.resolver import offered_names
from ordering.store import SelectionStore, toggle_asic_type


# =============================================================================
# MAIN SEARCHES
# =============================================================================

class TestToggleMain:

    def test_plain_search_commits_immediately(self, org_store):
        assert org_store.toggle_main("ATO") == []
        assert org_store.is_selected("ATO")

        org_store.toggle_main("ATO")
        assert not org_store.is_selected("ATO")

    def test_flow_search_is_staged_not_committed(self, org_store):
        staged = org_store.toggle_main(SearchType.ASIC)
        assert [c["option"] for c in staged] == ["ASIC"]
        assert staged[0]["flow"] == "asic_type"
        assert not org_store.is_selected("ASIC")
        assert org_store.staged() == staged

    def test_commit_and_discard(self, org_store):
        change = org_store.toggle_main("COURT")[0]
        org_store.commit_staged(change, lambda d: d.update(selected_court_type="CIVIL"))
        assert org_store.is_selected("COURT")
        assert org_store.state["selected_court_type"] == "CIVIL"
        assert org_store.staged() == []

        with pytest.raises(FlowStateError):
            org_store.commit_staged(change)

        change = org_store.toggle_main("ADD DOCUMENT SEARCH")[0]
        org_store.discard_staged(change)
        assert not org_store.is_selected("ADD DOCUMENT SEARCH")
        assert org_store.staged() == []

    def test_unknown_search_rejected(self, org_store):
        with pytest.raises(OrderValidationError):
            org_store.toggle_main("BANKRUPTCY")

    def test_select_all_stages_flow_searches(self, org_store):
        staged = org_store.toggle_main(SELECT_ALL)
        assert sorted(c["option"] for c in staged) == ["ADD DOCUMENT SEARCH", "ASIC", "COURT"]
        assert org_store.state["selected_searches"] == {"ATO", "ABN/ACN PPSR"}

        org_store.commit_staged(staged[0], lambda d: d["selected_asic_types"].add("CURRENT"))
        org_store.commit_staged(staged[1], lambda d: d.update(selected_court_type="ALL"))
        assert SELECT_ALL not in org_store.state["selected_searches"]
        org_store.commit_staged(staged[2], lambda d: d.update(document_id="DOC123"))
        assert SELECT_ALL in org_store.state["selected_searches"]

    def test_select_all_again_clears_and_cascades(self, org_store):
        for change in org_store.toggle_main(SELECT_ALL):
            org_store.commit_staged(change, lambda d: (d["selected_asic_types"].add("COMPANY"),
                                                       d.update(selected_court_type="ALL", document_id="X")))
        org_store.toggle_main(SELECT_ALL)
        state = org_store.state
        assert state["selected_searches"] == set()
        assert state["selected_asic_types"] == set()
        assert state["selected_court_type"] == ""
        assert state["document_id"] == ""

    def test_individual_asic_has_no_flow(self, individual_store):
        assert individual_store.toggle_main("ASIC") == []
        assert individual_store.is_selected("ASIC")


# =============================================================================
# SUB-TYPES
# =============================================================================

class TestSubTypes:

    def test_sub_type_requires_parent(self, org_store):
        with pytest.raises(OrderValidationError):
            org_store.toggle_sub_type("CURRENT")
        with pytest.raises(OrderValidationError):
            org_store.toggle_sub_type("CIVIL")

    def test_court_type_is_single_choice(self, org_store):
        change = org_store.toggle_main("COURT")[0]
        org_store.commit_staged(change, lambda d: d.update(selected_court_type="ALL"))
        org_store.toggle_sub_type("CRIMINAL")
        assert org_store.state["selected_court_type"] == "CRIMINAL"

    def test_current_and_historical_exclude_each_other(self):
        selected = toggle_asic_type(set(), "CURRENT")
        selected = toggle_asic_type(selected, "CURRENT/HISTORICAL")
        assert selected == {"CURRENT/HISTORICAL"}
        selected = toggle_asic_type(selected, "COMPANY")
        assert selected == {"CURRENT/HISTORICAL", "COMPANY"}

    def test_asic_select_all_toggle(self):
        selected = toggle_asic_type(set(), SELECT_ALL)
        assert SELECT_ALL in selected
        assert toggle_asic_type(selected, SELECT_ALL) == set()


# =============================================================================
# ENRICHMENT AND BULK LOCK
# =============================================================================

class TestEnrichment:

    def test_plain_option_commits(self, confirmed_store):
        assert confirmed_store.toggle_enrichment("DIRECTOR PPSR") == []
        assert confirmed_store.is_selected("DIRECTOR PPSR")

    def test_land_title_option_is_staged(self, confirmed_store):
        staged = confirmed_store.toggle_enrichment(AdditionalSearchType.ABN_ACN_LAND_TITLE)
        assert staged[0]["flow"] == "land_title"
        assert not confirmed_store.is_selected("ABN/ACN LAND TITLE")

    def test_option_not_offered_rejected(self, confirmed_store):
        confirmed_store.toggle_main("ATO")
        change = confirmed_store.toggle_main("ASIC")[0]
        confirmed_store.commit_staged(change, lambda d: d["selected_asic_types"].add("CURRENT"))
        with pytest.raises(OrderValidationError):
            confirmed_store.toggle_enrichment("ASIC-CURRENT")

    def test_locked_option_cannot_be_removed_alone(self, confirmed_store):
        change = confirmed_store.toggle_enrichment("ABN/ACN LAND TITLE")[0]
        confirmed_store.commit_staged(change)
        confirmed_store.lock_options(["ABN/ACN LAND TITLE"])

        with pytest.raises(OrderValidationError):
            confirmed_store.toggle_enrichment("ABN/ACN LAND TITLE")

        confirmed_store.reset("enrichment")
        assert not confirmed_store.is_selected("ABN/ACN LAND TITLE")
        assert confirmed_store.state["bulk_locked"] == set()

    def test_enrichment_select_all_deselect_is_bulk_reset(self, confirmed_store):
        staged = confirmed_store.toggle_enrichment(SELECT_ALL)
        for change in staged:
            confirmed_store.commit_staged(change)
        confirmed_store.lock_options([c["option"] for c in staged])
        assert SELECT_ALL in confirmed_store.state["selected_additional"]

        confirmed_store.toggle_enrichment(SELECT_ALL)
        assert confirmed_store.state["selected_additional"] == set()
        assert confirmed_store.state["bulk_locked"] == set()


# =============================================================================
# LAND TITLE
# =============================================================================

class TestLandTitle:

    def _with_land_title(self, store):
        change = store.toggle_enrichment("ABN/ACN LAND TITLE")[0]
        store.commit_staged(change, lambda d: d["land_titles"].update({
            "ABN/ACN LAND TITLE": {
                "detail": "SUMMARY", "add_on": False, "reference_set": [], "title_references": [],
                "current_count": 2, "historical_count": 1, "base_price": "100.00",
                "directors_at_config": None, "configured": True, "shown": True,
            },
        }))
        return store

    def test_detail_requires_counts(self, confirmed_store):
        change = confirmed_store.toggle_enrichment("ABN/ACN LAND TITLE")[0]
        confirmed_store.commit_staged(change, lambda d: d["land_titles"].update(
            {"ABN/ACN LAND TITLE": {**_summary_selection()}}))
        with pytest.raises(OrderValidationError):
            confirmed_store.set_land_title_detail("ABN/ACN LAND TITLE", "CURRENT")

    def test_detail_and_add_on(self, confirmed_store):
        store = self._with_land_title(confirmed_store)
        store.set_land_title_detail("ABN/ACN LAND TITLE", "ALL")
        store.set_land_title_add_on("ABN/ACN LAND TITLE", True)
        selection = store.state["land_titles"]["ABN/ACN LAND TITLE"]
        assert selection["detail"] == "ALL"
        assert selection["add_on"] is True

    def test_state_change_forgets_counts(self, confirmed_store):
        store = self._with_land_title(confirmed_store)
        store.set_land_title_detail("ABN/ACN LAND TITLE", "CURRENT")
        store.set_land_title_add_on("ABN/ACN LAND TITLE", True)
        store.set_land_title_states(["nsw", "VIC"])

        selection = store.state["land_titles"]["ABN/ACN LAND TITLE"]
        assert store.state["land_title_states"] == ["NSW", "VIC"]
        assert selection["detail"] == "SUMMARY"
        assert selection["current_count"] is None
        assert selection["add_on"] is True
        assert not selection["configured"]

    def test_state_change_keeps_summary_pick(self, confirmed_store):
        store = self._with_land_title(confirmed_store)
        store.set_land_title_states(["QLD"])
        assert store.state["land_titles"]["ABN/ACN LAND TITLE"]["configured"]

    def test_new_address_asks_for_detail_again(self, land_title_store):
        land_title_store.set_address("1 George St Sydney")
        land_title_store.commit_staged(land_title_store.toggle_main("ADDRESS")[0], lambda d: d["land_titles"].update(
            {"ADDRESS": {**_summary_selection(), "detail": "ALL", "current_count": 2, "historical_count": 1}}))
        land_title_store.set_address("2 George St Sydney")
        selection = land_title_store.state["land_titles"]["ADDRESS"]
        assert selection["detail"] == "SUMMARY"
        assert not selection["configured"]

    def test_unknown_state_rejected(self, org_store):
        with pytest.raises(OrderValidationError):
            org_store.set_land_title_states(["NSW", "XYZ"])


def _summary_selection():
    return {
        "detail": "SUMMARY", "add_on": False, "reference_set": [], "title_references": [],
        "current_count": None, "historical_count": None, "base_price": "100.00",
        "directors_at_config": None, "configured": True, "shown": True,
    }


# =============================================================================
# IDENTITY, CATEGORY, RESET
# =============================================================================

class TestIdentity:

    def test_confirm_sets_flag_and_directors(self, confirmed_store):
        state = confirmed_store.state
        assert state["flags"]["organisation_confirmed"]
        assert state["abn"] == "51824753556"
        assert state["company_details"]["directors"] == 3
        assert len(state["directors"]) == 3

    def test_new_pick_clears_confirmation(self, confirmed_store):
        confirmed_store.toggle_enrichment("DIRECTOR PPSR")
        confirmed_store.set_pending_company("Other Pty Ltd", "11111111111")
        state = confirmed_store.state
        assert not state["flags"]["organisation_confirmed"]
        assert state["company_details"]["directors"] is None
        assert state["selected_additional"] == set()

    def test_confirm_without_pick(self, org_store):
        with pytest.raises(OrderValidationError):
            org_store.confirm_organisation({"directors": 1, "past_directors": 0, "shareholders": 0}, [])

    def test_changing_name_clears_name_confirmation(self, individual_store):
        individual_store.confirm_individual_name({})
        assert individual_store.state["flags"]["individual_name_confirmed"]
        individual_store.set_individual("Jane", "Citizen", "02/02/1970")
        assert not individual_store.state["flags"]["individual_name_confirmed"]

    def test_name_confirmation_follows_searches_needing_a_record(self, individual_store):
        individual_store.toggle_main("BANKRUPTCY")
        individual_store.confirm_individual_name({"bankruptcy": {"name": "CITIZEN, Jane"}})

        individual_store.toggle_main("BANKRUPTCY")
        individual_store.toggle_main("BANKRUPTCY")
        assert individual_store.state["flags"]["individual_name_confirmed"]

        individual_store.toggle_enrichment("ASIC")
        assert not individual_store.state["flags"]["individual_name_confirmed"]

    def test_document_id_needs_document_search(self, org_store):
        with pytest.raises(OrderValidationError):
            org_store.set_document_id("DOC123")


class TestCategoryAndReset:

    def test_category_switch_clears_everything(self, confirmed_store):
        confirmed_store.toggle_main("ATO")
        confirmed_store.toggle_main("ASIC")
        confirmed_store.set_category(Category.INDIVIDUAL)
        state = confirmed_store.state
        assert state["selected_searches"] == set()
        assert state["abn"] == ""
        assert confirmed_store.staged() == []
        assert offered_names(state) == ["ASIC", "BANKRUPTCY", "COURT", "LAND TITLE", "PPSR"]

    def test_reset_main(self, org_store):
        org_store.toggle_main("ATO")
        org_store.toggle_main("ASIC")
        org_store.reset("main")
        assert org_store.state["selected_searches"] == set()
        assert org_store.staged() == []

    def test_reset_all_keeps_category(self, land_title_store):
        land_title_store.reset("all")
        assert land_title_store.category == Category.LAND_TITLE

    def test_reset_unknown_scope(self, org_store):
        with pytest.raises(OrderValidationError):
            org_store.reset("everything")

    def test_snapshot_is_a_copy(self, org_store):
        snapshot = org_store.snapshot()
        snapshot["selected_searches"].add("ATO")
        assert not org_store.is_selected("ATO")
