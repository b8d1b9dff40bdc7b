"""
State tables: every status a strategy defines resolves to a state whose edges stay inside
the same order type, and the per-order filter on APPROVED.
"""
import warnings
from pathlib import Path

import pytest

from _helper import make_item, make_order
from order_engine.models import OrderStatus, OrderType
from order_engine.strategies import STRATEGIES, get_strategy

S = OrderStatus

STATES_DIR = Path(__file__).resolve().parent.parent / "order_engine" / "states"


@pytest.mark.parametrize("order_type", list(OrderType))
def test_every_status_has_a_state_with_edges_inside_the_type(order_type):
    strategy = get_strategy(order_type)
    assert strategy is not None
    for status in strategy.statuses:
        state = strategy.get_state(status)
        assert state is not None
        assert state.status == status
        assert set(state.transitions) <= strategy.statuses


@pytest.mark.parametrize(
    "order_type, initial",
    [(OrderType.CUSTOM, S.QUOTE), (OrderType.INVENTORY, S.PLANNED), (OrderType.SALE, S.PENDING)],
)
def test_initial_status(order_type, initial):
    assert STRATEGIES[order_type].initial_status == initial


def test_foreign_and_legacy_statuses_have_no_state():
    custom = get_strategy(OrderType.CUSTOM)
    assert custom.get_state(S.PENDING) is None
    assert custom.get_state(S.IN_PRODUCTION) is None
    assert custom.get_state(None) is None
    assert get_strategy(OrderType.SALE).get_state(S.QUOTE) is None


def test_registry_is_read_only():
    with pytest.raises(TypeError):
        STRATEGIES[OrderType.CUSTOM] = None


def test_unknown_type_has_no_strategy():
    assert get_strategy("RENTAL") is None


@pytest.mark.parametrize(
    "order_type, terminal",
    [
        (OrderType.CUSTOM, {S.DELIVERED, S.CANCELLED}),
        (OrderType.INVENTORY, {S.FINISHED, S.CANCELLED}),
        (OrderType.SALE, {S.DELIVERED, S.CANCELLED}),
    ],
)
def test_terminal_states(order_type, terminal):
    strategy = get_strategy(order_type)
    assert {s for s in strategy.statuses if strategy.get_state(s).is_terminal} == terminal


def test_approved_offers_manufacturing_when_a_gap_exists():
    custom = get_strategy(OrderType.CUSTOM)
    order = make_order(status=S.APPROVED, items=[make_item(quantity=5, product_variant_id=1, reserved_quantity=3)])
    assert custom.allowed_transitions(S.APPROVED, order) == [S.MANUFACTURING, S.CANCELLED]
    assert not custom.can_transition(S.APPROVED, S.FINISHED, order)


def test_approved_offers_finished_when_fully_covered():
    custom = get_strategy(OrderType.CUSTOM)
    order = make_order(status=S.APPROVED, items=[make_item(quantity=5, product_variant_id=1, reserved_quantity=5)])
    assert custom.allowed_transitions(S.APPROVED, order) == [S.FINISHED, S.CANCELLED]
    assert custom.get_state(S.APPROVED).determine_next_state(order) == S.FINISHED


def test_unfiltered_edges_without_an_order():
    custom = get_strategy(OrderType.CUSTOM)
    assert custom.allowed_transitions(S.APPROVED) == [S.MANUFACTURING, S.FINISHED, S.CANCELLED]
    assert custom.allowed_transitions(S.IN_PRODUCTION) == []


def test_only_approved_auto_advances():
    for strategy in STRATEGIES.values():
        for status in strategy.statuses:
            if (strategy.order_type, status) == (OrderType.CUSTOM, S.APPROVED):
                continue
            order = make_order(strategy.order_type, status=status)
            assert strategy.get_state(status).determine_next_state(order) is None


@pytest.mark.parametrize("path", sorted(STATES_DIR.glob("*.py")), ids=lambda p: p.name)
def test_state_modules_compile_without_warnings(path):
    # the diagrams in the docstrings are full of backslashes
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        compile(path.read_text(), str(path), "exec")
