"""Pricing: a pure function of category, committed selections and fetched counts."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ordering.catalog import (
    ADDITIONAL_BASE_PRICES,
    ASIC_TYPE_PRICES,
    ASIC_TYPES,
    DIRECTOR_SCOPED,
    LAND_TITLE_ADD_ON_PRICE,
    LAND_TITLE_OPTIONS,
    SEARCH_PRICES,
    TITLE_REFERENCE_PRICE,
    Category,
    LandTitleDetail,
    SearchType,
    display_name,
    main_searches,
)
from ordering.resolver import offered_additional
from ordering.state import LandTitleSelection, OrderState

CENTS = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _line(label: str, option: str, kind: str, amount: Decimal, provisional: bool = False) -> dict:
    return {"label": label, "option": option, "kind": kind,
            "amount": _money(amount), "provisional": provisional}


def director_priced(option: str, directors: Optional[int]) -> tuple[Decimal, bool]:
    """Per-director tariff times the director count; the bare tariff while the count is unknown."""
    per_director = ADDITIONAL_BASE_PRICES[option]
    if directors is None:
        return per_director, True
    return per_director * directors, False


def land_title_base(option: str, state: OrderState) -> tuple[Decimal, bool]:
    """SUMMARY tariff of a land-title option as it stands right now."""
    if option in DIRECTOR_SCOPED:
        return director_priced(option, state["company_details"]["directors"])
    if option == SearchType.TITLE_REFERENCE.value:
        return TITLE_REFERENCE_PRICE, False
    if option in ADDITIONAL_BASE_PRICES:
        return ADDITIONAL_BASE_PRICES[option], False
    return SEARCH_PRICES[option], False


def detail_price(option: str, selection: LandTitleSelection, detail: LandTitleDetail | str,
                 current: Optional[int], historical: Optional[int]) -> Decimal:
    """Tariff of a non-summary detail level: per-title rate times the matching count."""
    detail = LandTitleDetail(detail)
    unit = Decimal(selection["base_price"])
    if option in DIRECTOR_SCOPED and selection["directors_at_config"]:
        unit = unit / selection["directors_at_config"]
    counted = {
        LandTitleDetail.CURRENT: current or 0,
        LandTitleDetail.PAST: historical or 0,
        LandTitleDetail.ALL: (current or 0) + (historical or 0),
    }[detail]
    return _money(unit * counted)


def land_title_price(option: str, state: OrderState,
                     counts: Optional[dict] = None) -> tuple[Decimal, bool]:
    selection = state["land_titles"].get(option)
    base, provisional = land_title_base(option, state)

    if option == SearchType.TITLE_REFERENCE.value:
        references = selection["reference_set"] if selection else []
        amount = TITLE_REFERENCE_PRICE * max(len(references), 1)
        provisional = not references
    elif not selection or selection["detail"] == LandTitleDetail.SUMMARY.value:
        amount = base
    else:
        current = selection["current_count"]
        historical = selection["historical_count"]
        if counts:
            current = counts.get("current", current)
            historical = counts.get("historical", historical)
        amount = detail_price(option, selection, selection["detail"], current, historical)
        provisional = False

    if selection and selection["add_on"]:
        amount += LAND_TITLE_ADD_ON_PRICE
    return _money(amount), provisional


def price(category: Category | str, state: OrderState, counts: Optional[dict] = None) -> dict:
    """Priced line items and total for the committed selections.

    `counts` maps a land-title option to {"current", "historical"} and takes
    precedence over the counts stored on the selection.
    """
    category = Category(category)
    counts = counts or {}
    lines: list[dict] = []
    selected = state["selected_searches"]

    for search in main_searches(category):
        if search not in selected:
            continue
        label = display_name(category, search)
        if search in LAND_TITLE_OPTIONS:
            amount, provisional = land_title_price(search, state, counts.get(search))
            lines.append(_line(label, search, "main", amount, provisional))
        else:
            lines.append(_line(label, search, "main", SEARCH_PRICES[search]))

    if category == Category.ORGANISATION and SearchType.ASIC.value in selected:
        for asic_type in ASIC_TYPES:
            if asic_type.value in state["selected_asic_types"]:
                lines.append(_line(f"ASIC: {asic_type.value}", asic_type.value, "sub_type",
                                   ASIC_TYPE_PRICES[asic_type.value]))

    additional = state["selected_additional"]
    for option in offered_additional(state):
        name = option["name"]
        if name not in additional:
            continue
        label = display_name(category, name)
        if name in LAND_TITLE_OPTIONS:
            amount, provisional = land_title_price(name, state, counts.get(name))
        elif category == Category.ORGANISATION and name in DIRECTOR_SCOPED:
            amount, provisional = director_priced(name, state["company_details"]["directors"])
        elif category == Category.ORGANISATION:
            amount, provisional = ADDITIONAL_BASE_PRICES[name], False
        else:
            amount, provisional = SEARCH_PRICES[name], False
        lines.append(_line(label, name, "enrichment", amount, provisional))

    total = sum((line["amount"] for line in lines), Decimal("0.00"))
    return {
        "lines": lines,
        "total": _money(total),
        "provisional": any(line["provisional"] for line in lines),
    }
