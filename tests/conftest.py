"""
Shared fixtures for the ordering core tests.

Everything here is in-process: HTTP collaborators are replaced either with
httpx.MockTransport or by patching the functions in ordering.tools.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from ordering.catalog import Category
from ordering.lookup import LookupAdapter
from ordering.store import SelectionStore


DIRECTORS = [
    {"first_name": "Jane", "last_name": "Citizen", "dob": "01/02/1970", "full_name": "Jane Citizen"},
    {"first_name": "John", "last_name": "Smith", "dob": "03/04/1965", "full_name": "John Smith"},
    {"first_name": "Mary", "last_name": "Jones", "dob": "", "full_name": "Mary Jones"},
]


def confirm_company(store: SelectionStore, directors: int = 3) -> SelectionStore:
    """Pick and confirm Acme with the first `directors` directors."""
    store.set_pending_company("Acme Pty Ltd", "51 824 753 556")
    store.confirm_organisation(
        {"directors": directors, "past_directors": 0, "shareholders": 2},
        DIRECTORS[:directors],
    )
    return store


@pytest.fixture
def org_store():
    return SelectionStore()


@pytest.fixture
def confirmed_store():
    return confirm_company(SelectionStore())


@pytest.fixture
def individual_store():
    store = SelectionStore()
    store.set_category(Category.INDIVIDUAL)
    store.set_individual("Jane", "Citizen", "01/02/1970")
    return store


@pytest.fixture
def land_title_store():
    store = SelectionStore()
    store.set_category(Category.LAND_TITLE)
    return store


@pytest.fixture
def lookup():
    """Lookup adapter without debounce delay."""
    return LookupAdapter(debounce_seconds=0)
