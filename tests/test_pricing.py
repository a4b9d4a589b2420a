"""Unit tests for checkout totals."""

from decimal import Decimal

import pytest

from transferhub.domain.pricing import Extra, Quote, compute_total, to_minor_units


class TestCheckoutTotal:
    def test_vehicle_plus_extras(self):
        quote = Quote(
            Decimal("120.00"),
            (Extra("child_seat", Decimal("15.00")), Extra("meet_greet", Decimal("15.00"))),
        )
        assert quote.total == Decimal("150.00")

    def test_no_extras(self):
        assert compute_total(Decimal("89.90")) == Decimal("89.90")

    def test_rounds_half_up_to_cents(self):
        assert compute_total(Decimal("10.005")) == Decimal("10.01")
        assert compute_total(Decimal("10.004")) == Decimal("10.00")

    def test_no_float_drift(self):
        extras = [Extra(f"x{i}", Decimal("0.10")) for i in range(3)]
        assert compute_total(Decimal("0.00"), extras) == Decimal("0.30")

    def test_negative_total_rejected(self):
        with pytest.raises(ValueError):
            compute_total(Decimal("10.00"), [Extra("voucher", Decimal("-20.00"))])


class TestMinorUnits:
    def test_converts_to_cents(self):
        assert to_minor_units(Decimal("150.00")) == 15000
        assert to_minor_units(Decimal("0.01")) == 1

    def test_rounds_before_converting(self):
        assert to_minor_units(Decimal("19.999")) == 2000
