"""Tests for currency helpers."""

from decimal import Decimal

import pytest

from labormarket.utils.money import format_amount, sum_amounts, to_amount


def test_rounds_half_up_to_cents() -> None:
    assert to_amount("110.005") == Decimal("110.01")
    assert to_amount(120) == Decimal("120.00")
    assert to_amount(None) == Decimal("0.00")


def test_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        to_amount("twelve")


def test_format_and_sum() -> None:
    assert format_amount(Decimal("7.5")) == "7.50"
    assert sum_amounts([Decimal("110"), None, "40.004"]) == Decimal("150.00")
