"""State definition for a report order in progress"""
from __future__ import annotations

from typing import Optional, TypedDict

from ordering.catalog import Category, LandTitleDetail


class DirectorInfo(TypedDict):
    first_name: str
    last_name: str
    dob: str              # DD/MM/YYYY, "" when the extract has none
    full_name: str


class CompanyDetails(TypedDict):
    directors: Optional[int]     # None until the company extract has been read
    past_directors: int
    shareholders: int


class ConfirmationFlags(TypedDict):
    organisation_confirmed: bool
    individual_name_confirmed: bool
    land_title_organisation_confirmed: bool
    title_reference_confirmed: bool


class LandTitleSelection(TypedDict):
    detail: str                       # LandTitleDetail value
    add_on: bool
    reference_set: list[dict]         # [{"title_reference", "jurisdiction"}]
    title_references: list[dict]      # everything the counts lookup returned
    current_count: Optional[int]
    historical_count: Optional[int]
    base_price: str                   # SUMMARY tariff when configured (Decimal as str)
    directors_at_config: Optional[int]
    configured: bool
    shown: bool


class OrderState(TypedDict):
    category: str

    # Selections ("SELECT ALL" membership is derived by the resolver)
    selected_searches: set[str]
    selected_asic_types: set[str]
    selected_court_type: str          # CourtType value, "" when COURT is not selected
    selected_additional: set[str]
    offered_additional: list[dict]    # [{"name", "price", "available"}]

    # Land title
    land_titles: dict[str, LandTitleSelection]
    land_title_states: list[str]
    land_title_select_all: bool
    bulk_locked: set[str]

    # Organisation identity
    pending_company: Optional[dict]   # {"name", "abn"} picked from suggestions
    company_name: str
    abn: str
    company_details: CompanyDetails
    directors: list[DirectorInfo]

    # Individual identity
    first_name: str
    last_name: str
    dob: str
    selected_records: dict[str, dict]  # disambiguation stage -> picked record

    # Free-text inputs
    document_id: str
    address: str

    flags: ConfirmationFlags


def empty_company_details() -> CompanyDetails:
    return {"directors": None, "past_directors": 0, "shareholders": 0}


def empty_flags() -> ConfirmationFlags:
    return {
        "organisation_confirmed": False,
        "individual_name_confirmed": False,
        "land_title_organisation_confirmed": False,
        "title_reference_confirmed": False,
    }


def default_land_title() -> LandTitleSelection:
    return {
        "detail": LandTitleDetail.SUMMARY.value,
        "add_on": False,
        "reference_set": [],
        "title_references": [],
        "current_count": None,
        "historical_count": None,
        "base_price": "0.00",
        "directors_at_config": None,
        "configured": False,
        "shown": False,
    }


def new_order_state(category: Category | str = Category.ORGANISATION) -> OrderState:
    return {
        "category": Category(category).value,
        "selected_searches": set(),
        "selected_asic_types": set(),
        "selected_court_type": "",
        "selected_additional": set(),
        "offered_additional": [],
        "land_titles": {},
        "land_title_states": [],
        "land_title_select_all": False,
        "bulk_locked": set(),
        "pending_company": None,
        "company_name": "",
        "abn": "",
        "company_details": empty_company_details(),
        "directors": [],
        "first_name": "",
        "last_name": "",
        "dob": "",
        "selected_records": {},
        "document_id": "",
        "address": "",
        "flags": empty_flags(),
    }
