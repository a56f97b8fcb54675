from decimal import Decimal

import pytest

from src.execution.lifecycle import plan_batches
from src.utils.units import format_ether, to_wei


def test_plan_rounds_bumps_down_and_batches_up() -> None:
    assert plan_batches(to_wei("0.41"), to_wei("0.02"), 5) == (20, 4)
    assert plan_batches(to_wei("0.011"), to_wei("0.002"), 5) == (5, 1)
    assert plan_batches(to_wei("0.013"), to_wei("0.002"), 5) == (6, 2)


def test_plan_with_nothing_left_is_empty() -> None:
    assert plan_batches(0, to_wei("0.002"), 5) == (0, 0)
    assert plan_batches(to_wei("0.001"), to_wei("0.002"), 5) == (0, 0)


def test_plan_rejects_non_positive_parameters() -> None:
    with pytest.raises(ValueError):
        plan_batches(to_wei("1"), 0, 5)
    with pytest.raises(ValueError):
        plan_batches(to_wei("1"), to_wei("0.002"), 0)


def test_unit_conversion_is_exact() -> None:
    assert to_wei(Decimal("0.009")) == 9_000_000_000_000_000
    assert to_wei(0.1) == 100_000_000_000_000_000
    assert format_ether(to_wei("0.02") - to_wei("0.009")) == "0.011"
    assert format_ether(to_wei("10")) == "10"
    assert format_ether(0) == "0"
