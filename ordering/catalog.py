"""Search catalog: categories, menus, tariffs and backend report types.

Every identifier the ordering core understands is a member of one of the
closed enumerations below. Menus, prices and the backend report-type table are
keyed by those members so a missing entry shows up in one place.
"""
from __future__ import annotations

import re
from decimal import Decimal
from enum import Enum


class Category(str, Enum):
    ORGANISATION = "ORGANISATION"
    INDIVIDUAL = "INDIVIDUAL"
    LAND_TITLE = "LAND TITLE"


class SearchType(str, Enum):
    """Main searches, across every category."""
    SELECT_ALL = "SELECT ALL"
    ASIC = "ASIC"
    COURT = "COURT"
    ATO = "ATO"
    ABN_ACN_PPSR = "ABN/ACN PPSR"
    DOCUMENT_SEARCH = "ADD DOCUMENT SEARCH"
    BANKRUPTCY = "BANKRUPTCY"
    LAND_TITLE = "LAND TITLE"
    PPSR = "PPSR"
    LAND_TITLE_ORGANISATION = "LAND TITLE ORGANISATION"
    LAND_TITLE_INDIVIDUAL = "LAND TITLE INDIVIDUAL"
    TITLE_REFERENCE = "TITLE REFERENCE"
    ADDRESS = "ADDRESS"


class AdditionalSearchType(str, Enum):
    """Organisation enrichment searches."""
    SELECT_ALL = "SELECT ALL"
    ABN_ACN_PPSR = "ABN/ACN PPSR"
    ABN_ACN_LAND_TITLE = "ABN/ACN LAND TITLE"
    DIRECTOR_RELATED_ENTITIES = "DIRECTOR RELATED ENTITIES"
    DIRECTOR_LAND_TITLE = "DIRECTOR LAND TITLE"
    DIRECTOR_PPSR = "DIRECTOR PPSR"
    DIRECTOR_BANKRUPTCY = "DIRECTOR BANKRUPTCY"
    ABN_ACN_COURT_FILES = "ABN/ACN COURT FILES"
    ASIC_CURRENT = "ASIC-CURRENT"


class AsicType(str, Enum):
    SELECT_ALL = "SELECT ALL"
    CURRENT = "CURRENT"
    CURRENT_HISTORICAL = "CURRENT/HISTORICAL"
    COMPANY = "COMPANY"


class CourtType(str, Enum):
    ALL = "ALL"
    CIVIL = "CIVIL"
    CRIMINAL = "CRIMINAL"


class LandTitleDetail(str, Enum):
    SUMMARY = "SUMMARY"
    CURRENT = "CURRENT"
    PAST = "PAST"
    ALL = "ALL"


SELECT_ALL = SearchType.SELECT_ALL.value


# ────────── MENUS ──────────

CATEGORY_SEARCHES: dict[Category, list[SearchType]] = {
    Category.ORGANISATION: [
        SearchType.ASIC,
        SearchType.COURT,
        SearchType.ATO,
        SearchType.ABN_ACN_PPSR,
        SearchType.DOCUMENT_SEARCH,
    ],
    Category.INDIVIDUAL: [
        SearchType.ASIC,
        SearchType.BANKRUPTCY,
        SearchType.COURT,
        SearchType.LAND_TITLE,
        SearchType.PPSR,
    ],
    Category.LAND_TITLE: [
        SearchType.LAND_TITLE_ORGANISATION,
        SearchType.LAND_TITLE_INDIVIDUAL,
        SearchType.TITLE_REFERENCE,
        SearchType.ADDRESS,
    ],
}

ORGANISATION_ADDITIONAL: list[AdditionalSearchType] = [
    AdditionalSearchType.ABN_ACN_PPSR,
    AdditionalSearchType.ABN_ACN_LAND_TITLE,
    AdditionalSearchType.DIRECTOR_RELATED_ENTITIES,
    AdditionalSearchType.DIRECTOR_LAND_TITLE,
    AdditionalSearchType.DIRECTOR_PPSR,
    AdditionalSearchType.DIRECTOR_BANKRUPTCY,
    AdditionalSearchType.ABN_ACN_COURT_FILES,
    AdditionalSearchType.ASIC_CURRENT,
]

# Main search -> the enrichment option it makes redundant
MAIN_DUPLICATES: dict[SearchType, AdditionalSearchType] = {
    SearchType.ABN_ACN_PPSR: AdditionalSearchType.ABN_ACN_PPSR,
    SearchType.ASIC: AdditionalSearchType.ASIC_CURRENT,
    SearchType.COURT: AdditionalSearchType.ABN_ACN_COURT_FILES,
}

ASIC_TYPES: list[AsicType] = [AsicType.CURRENT, AsicType.CURRENT_HISTORICAL, AsicType.COMPANY]

# Picking one of these drops the other (historical already includes current)
ASIC_EXCLUSIVE: dict[AsicType, AsicType] = {
    AsicType.CURRENT: AsicType.CURRENT_HISTORICAL,
    AsicType.CURRENT_HISTORICAL: AsicType.CURRENT,
}

DIRECTOR_SCOPED: frozenset[str] = frozenset({
    AdditionalSearchType.DIRECTOR_RELATED_ENTITIES.value,
    AdditionalSearchType.DIRECTOR_LAND_TITLE.value,
    AdditionalSearchType.DIRECTOR_PPSR.value,
    AdditionalSearchType.DIRECTOR_BANKRUPTCY.value,
})

LAND_TITLE_OPTIONS: frozenset[str] = frozenset({
    AdditionalSearchType.ABN_ACN_LAND_TITLE.value,
    AdditionalSearchType.DIRECTOR_LAND_TITLE.value,
    SearchType.LAND_TITLE.value,
    SearchType.LAND_TITLE_ORGANISATION.value,
    SearchType.LAND_TITLE_INDIVIDUAL.value,
    SearchType.TITLE_REFERENCE.value,
    SearchType.ADDRESS.value,
})

AUSTRALIAN_STATES = ["NSW", "VIC", "QLD", "WA", "SA", "TAS", "ACT", "NT"]


# ────────── TARIFFS ──────────

SEARCH_PRICES: dict[str, Decimal] = {
    SearchType.ASIC.value: Decimal("50.00"),
    SearchType.COURT.value: Decimal("60.00"),
    SearchType.ATO.value: Decimal("55.00"),
    SearchType.ABN_ACN_PPSR.value: Decimal("50.00"),
    SearchType.PPSR.value: Decimal("50.00"),
    SearchType.DOCUMENT_SEARCH.value: Decimal("35.00"),
    SearchType.BANKRUPTCY.value: Decimal("90.00"),
    SearchType.LAND_TITLE.value: Decimal("80.00"),
    SearchType.LAND_TITLE_ORGANISATION.value: Decimal("80.00"),
    SearchType.LAND_TITLE_INDIVIDUAL.value: Decimal("80.00"),
    SearchType.ADDRESS.value: Decimal("80.00"),
}

TITLE_REFERENCE_PRICE = Decimal("30.00")

ASIC_TYPE_PRICES: dict[str, Decimal] = {
    AsicType.CURRENT.value: Decimal("25.00"),
    AsicType.CURRENT_HISTORICAL.value: Decimal("40.00"),
    AsicType.COMPANY.value: Decimal("30.00"),
}

# Per director for the DIRECTOR_SCOPED entries
ADDITIONAL_BASE_PRICES: dict[str, Decimal] = {
    AdditionalSearchType.ABN_ACN_PPSR.value: Decimal("50.00"),
    AdditionalSearchType.ABN_ACN_LAND_TITLE.value: Decimal("100.00"),
    AdditionalSearchType.DIRECTOR_RELATED_ENTITIES.value: Decimal("75.00"),
    AdditionalSearchType.DIRECTOR_LAND_TITLE.value: Decimal("80.00"),
    AdditionalSearchType.DIRECTOR_PPSR.value: Decimal("50.00"),
    AdditionalSearchType.DIRECTOR_BANKRUPTCY.value: Decimal("90.00"),
    AdditionalSearchType.ABN_ACN_COURT_FILES.value: Decimal("60.00"),
    AdditionalSearchType.ASIC_CURRENT.value: Decimal("25.00"),
}

LAND_TITLE_ADD_ON_PRICE = Decimal("40.00")


# ────────── MODAL FLOWS ──────────

# (category, option) -> the confirmation flow that must run before the option is final
MAIN_FLOWS: dict[tuple[Category, str], str] = {
    (Category.ORGANISATION, SearchType.ASIC.value): "asic_type",
    (Category.ORGANISATION, SearchType.COURT.value): "court_type",
    (Category.ORGANISATION, SearchType.DOCUMENT_SEARCH.value): "document_id",
    (Category.INDIVIDUAL, SearchType.COURT.value): "court_type",
    (Category.INDIVIDUAL, SearchType.LAND_TITLE.value): "land_title",
    (Category.LAND_TITLE, SearchType.LAND_TITLE_ORGANISATION.value): "land_title",
    (Category.LAND_TITLE, SearchType.LAND_TITLE_INDIVIDUAL.value): "land_title",
    (Category.LAND_TITLE, SearchType.ADDRESS.value): "land_title",
    (Category.LAND_TITLE, SearchType.TITLE_REFERENCE.value): "title_reference",
}

ADDITIONAL_FLOWS: dict[tuple[Category, str], str] = {
    (Category.ORGANISATION, AdditionalSearchType.ABN_ACN_LAND_TITLE.value): "land_title",
    (Category.ORGANISATION, AdditionalSearchType.DIRECTOR_LAND_TITLE.value): "land_title",
    (Category.INDIVIDUAL, SearchType.COURT.value): "court_type",
    (Category.INDIVIDUAL, SearchType.LAND_TITLE.value): "land_title",
}

# Searches that are not final without a sub-type
SUB_TYPE_PARENTS: dict[tuple[Category, str], str] = {
    (Category.ORGANISATION, SearchType.ASIC.value): "asic",
    (Category.ORGANISATION, SearchType.COURT.value): "court",
    (Category.INDIVIDUAL, SearchType.COURT.value): "court",
}

# (stage name, individual search the stage disambiguates), in the order they run.
# A stage applies whether its search was picked as a main or an additional search.
DISAMBIGUATION_STAGES: list[tuple[str, str]] = [
    ("bankruptcy", SearchType.BANKRUPTCY.value),
    ("related", SearchType.ASIC.value),
    ("court", SearchType.COURT.value),
    ("land_title_name", SearchType.LAND_TITLE.value),
]


# ────────── BACKEND REPORT TYPES ──────────

REPORT_TYPES: dict[tuple[Category, str], str] = {
    # Organisation: main searches and their sub-type expansions
    (Category.ORGANISATION, "ASIC"): "asic-current",
    (Category.ORGANISATION, "ASIC: CURRENT"): "asic-current",
    (Category.ORGANISATION, "ASIC: CURRENT/HISTORICAL"): "asic-historical",
    (Category.ORGANISATION, "ASIC: COMPANY"): "asic-company",
    (Category.ORGANISATION, "COURT"): "court",
    (Category.ORGANISATION, "COURT: ALL"): "court",
    (Category.ORGANISATION, "COURT: CIVIL"): "court-civil",
    (Category.ORGANISATION, "COURT: CRIMINAL"): "court-criminal",
    (Category.ORGANISATION, "ATO"): "ato",
    (Category.ORGANISATION, "ABN/ACN PPSR"): "ppsr",
    (Category.ORGANISATION, "ADD DOCUMENT SEARCH"): "asic-document-search",
    # Organisation: enrichment
    (Category.ORGANISATION, "ABN/ACN LAND TITLE"): "land-title-organisation",
    (Category.ORGANISATION, "DIRECTOR RELATED ENTITIES"): "director-related",
    (Category.ORGANISATION, "DIRECTOR LAND TITLE"): "director-property",
    (Category.ORGANISATION, "DIRECTOR PPSR"): "director-ppsr",
    (Category.ORGANISATION, "DIRECTOR BANKRUPTCY"): "director-bankruptcy",
    (Category.ORGANISATION, "ABN/ACN COURT FILES"): "court",
    (Category.ORGANISATION, "ASIC-CURRENT"): "asic-current",
    # Individual: searched the same way a company director is
    (Category.INDIVIDUAL, "ASIC"): "director-related",
    (Category.INDIVIDUAL, "BANKRUPTCY"): "director-bankruptcy",
    (Category.INDIVIDUAL, "COURT"): "director-court",
    (Category.INDIVIDUAL, "COURT: ALL"): "director-court",
    (Category.INDIVIDUAL, "COURT: CIVIL"): "director-court-civil",
    (Category.INDIVIDUAL, "COURT: CRIMINAL"): "director-court-criminal",
    (Category.INDIVIDUAL, "LAND TITLE"): "land-title-individual",
    (Category.INDIVIDUAL, "PPSR"): "director-ppsr",
    # Land title
    (Category.LAND_TITLE, "LAND TITLE ORGANISATION"): "land-title-organisation",
    (Category.LAND_TITLE, "LAND TITLE INDIVIDUAL"): "land-title-individual",
    (Category.LAND_TITLE, "TITLE REFERENCE"): "land-title-reference",
    (Category.LAND_TITLE, "ADDRESS"): "land-title-address",
}


def slugify(display_name: str) -> str:
    """Fallback backend type: lower-case, whitespace runs become dashes."""
    return re.sub(r"\s+", "-", display_name.strip().lower())


def backend_type_for(category: Category | str, display_name: str) -> str:
    """Map a display identifier to the report-generation service's type code."""
    return REPORT_TYPES.get((Category(category), display_name), slugify(display_name))


def is_director_scoped(backend_type: str) -> bool:
    return backend_type.startswith("director-")


def display_name(category: Category | str, search: str) -> str:
    """Individual searches carry an INDIVIDUAL prefix on screen."""
    if Category(category) == Category.INDIVIDUAL and search != SELECT_ALL:
        return f"INDIVIDUAL {search}"
    return search


def main_searches(category: Category | str) -> list[str]:
    return [s.value for s in CATEGORY_SEARCHES[Category(category)]]


def main_flow(category: Category | str, search: str) -> str | None:
    return MAIN_FLOWS.get((Category(category), search))


def additional_flow(category: Category | str, search: str) -> str | None:
    return ADDITIONAL_FLOWS.get((Category(category), search))


def sub_type_for(category: Category | str, search: str) -> str | None:
    return SUB_TYPE_PARENTS.get((Category(category), search))
