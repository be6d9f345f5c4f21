import pytest

from services.policy.sizing import estimate_premium, size_option_position


def test_risk_budget_bounds_contracts() -> None:
    decision = size_option_position(50_000, option_price=2.5)
    # 2% of 50k = 1000; 1000 / 250 = 4
    assert decision.contracts == 4
    assert decision.max_risk == pytest.approx(1_000)
    assert decision.reason == "ok"
    assert not decision.premium_estimated


def test_hard_cap_applies() -> None:
    decision = size_option_position(100_000, option_price=1.0, max_contracts=5)
    assert decision.max_affordable == 20
    assert decision.contracts == 5
    assert decision.reason == "capped"


def test_premium_estimated_from_underlying() -> None:
    premium, estimated = estimate_premium(None, 200.0)
    assert premium == pytest.approx(10.0)
    assert estimated

    decision = size_option_position(100_000, option_price=0, underlying_price=200.0)
    assert decision.premium_estimated
    assert decision.contracts == 2


def test_unaffordable_contract_sizes_to_zero() -> None:
    decision = size_option_position(1_000, option_price=10.0)
    assert decision.contracts == 0
    assert not decision.tradable
    assert decision.reason == "insufficient_buying_power"


@pytest.mark.parametrize("power", [None, "n/a", -5, float("nan"), 0])
def test_bad_buying_power_never_goes_negative(power) -> None:
    decision = size_option_position(power, option_price=1.0)
    assert decision.contracts == 0


def test_missing_prices_report_no_premium() -> None:
    decision = size_option_position(100_000)
    assert decision.contracts == 0
    assert decision.reason == "no_premium"
