# backend/tests/test_valuation.py
from __future__ import annotations

from types import SimpleNamespace

import pytest

from app.domain.errors import ValidationError
from app.services.valuation import adjust_price, estimate_value, remove_outliers


def _comp(price, **kw):
    return SimpleNamespace(sale_price=price, bedrooms=kw.get("bedrooms"), bathrooms=kw.get("bathrooms"), land_size=kw.get("land_size"))


SUBJECT = SimpleNamespace(bedrooms=3, bathrooms=2.0, land_size=600.0)


def test_remove_outliers_drops_far_sale():
    prices = [700000, 705000, 710000, 715000, 720000, 725000, 730000, 5000000]
    assert remove_outliers(prices) == prices[:-1]


def test_remove_outliers_keeps_small_samples():
    assert remove_outliers([1, 1000000]) == [1, 1000000]


def test_adjust_price_toward_subject():
    smaller = _comp(700000, bedrooms=2, bathrooms=2.0)
    assert adjust_price(SUBJECT, smaller) == pytest.approx(700000 * 1.03)

    bigger_lot = _comp(700000, land_size=600.0 + 5000)
    # land adjustment is capped at 10%
    assert adjust_price(SUBJECT, bigger_lot) == pytest.approx(700000 * 0.9)


def test_estimate_uses_median_and_spread():
    comps = [_comp(p) for p in (700000, 720000, 740000, 760000)]
    r = estimate_value(SUBJECT, comps, spread_pct=0.05)

    assert r.point_estimate == 730000
    assert r.estimated_value_min == pytest.approx(730000 * 0.95)
    assert r.estimated_value_max == pytest.approx(730000 * 1.05)
    assert r.comparables_used == 4
    assert r.outliers_removed == 0
    assert r.confidence == 0.9


def test_thin_sample_widens_range():
    r = estimate_value(SUBJECT, [_comp(700000)], spread_pct=0.05)
    assert r.estimated_value_min == pytest.approx(700000 * 0.9)
    assert r.estimated_value_max == pytest.approx(700000 * 1.1)


def test_no_usable_comparables():
    with pytest.raises(ValidationError) as ei:
        estimate_value(SUBJECT, [_comp(0), _comp(None)])
    assert ei.value.details["usable_comparables"] == 0


def test_dissimilar_comparable_never_yields_a_zero_estimate():
    studio = SimpleNamespace(bedrooms=0, bathrooms=None, land_size=None)
    mansion = _comp(900000, bedrooms=40)
    assert adjust_price(studio, mansion) <= 0

    with pytest.raises(ValidationError) as ei:
        estimate_value(studio, [mansion], min_comparables=1)
    assert "dissimilar" in ei.value.message
    assert ei.value.details["dissimilar"] == 1


def test_dissimilar_comparable_is_dropped_from_the_median():
    studio = SimpleNamespace(bedrooms=0, bathrooms=None, land_size=None)
    comps = [_comp(300000, bedrooms=0), _comp(310000, bedrooms=0), _comp(320000, bedrooms=0), _comp(900000, bedrooms=40)]
    r = estimate_value(studio, comps, spread_pct=0.05, min_comparables=1)
    assert r.point_estimate == 310000
    assert r.comparables_used == 3
    assert r.estimated_value_min > 0
