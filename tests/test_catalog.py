import pytest

from tycoon.catalog import BUSINESSES, calculate_passive_income, get_business, UnknownBusiness


def test_catalog_prices():
    assert {b.id for b in BUSINESSES} == {
        "DAPP", "TOTO_VAULT", "CIFCI_STABLE", "TYPOGRAM", "APPLE", "BITCOIN",
    }
    assert all(b.cost == 1000 and b.income == 1 for b in BUSINESSES)


def test_get_business_unknown():
    with pytest.raises(UnknownBusiness):
        get_business("LEMONADE")


def test_income_sums_known_businesses():
    assert calculate_passive_income({"DAPP": 2, "APPLE": 3}) == 5


def test_income_ignores_unknown_and_malformed():
    holdings = {"DAPP": 1, "FUTURE_BIZ": 10, "APPLE": "x", "BITCOIN": -4, "TYPOGRAM": None}
    assert calculate_passive_income(holdings) == 1


def test_income_empty():
    assert calculate_passive_income(None) == 0
    assert calculate_passive_income({}) == 0
