from datetime import date
from decimal import Decimal

import pytest

from posledger.core.config import settings
from posledger.core.errors import DuplicateOrderNumber, InvalidOrderData, OrderNumberAllocationFailed
from posledger.models.order import ShippingOrder
from posledger.services import order_number_service
from posledger.services.order_number_service import (
    allocate,
    format_order_number,
    insert_with_number,
    normalize_order_number,
    preview_next_number,
    renumber_order,
)

TODAY = date(2024, 3, 15)


def _build(allocated):
    return ShippingOrder(
        human_number=allocated.human_number,
        order_number=allocated.order_number,
        workflow="standard",
        status="pending",
        payment_status="unpaid",
        total_amount=Decimal("0"),
    )


def _insert(db, candidate=None, today=TODAY):
    return insert_with_number(db, _build, candidate=candidate, today=today)


def test_generated_numbers_run_per_day(db):
    first = _insert(db)
    second = _insert(db)
    next_day = _insert(db, today=date(2024, 3, 16))

    assert first.human_number == "SO20240315001"
    assert second.human_number == "SO20240315002"
    assert next_day.human_number == "SO20240316001"
    assert first.order_number == first.human_number


def test_short_year_format(db, monkeypatch):
    monkeypatch.setattr(settings, "order_number_short_year", True)

    assert _insert(db).human_number == "SO240315001"


def test_counter_widens_instead_of_wrapping():
    assert format_order_number("SO20240315", 7) == "SO20240315007"
    assert format_order_number("SO20240315", 1000) == "SO202403151000"


def test_preview_does_not_reserve(db):
    assert preview_next_number(db, today=TODAY) == "SO20240315001"
    assert preview_next_number(db, today=TODAY) == "SO20240315001"
    _insert(db)
    assert preview_next_number(db, today=TODAY) == "SO20240315002"


def test_hand_entered_numbers_do_not_disturb_the_counter(db):
    _insert(db, candidate="SO20240315ABC")
    assert _insert(db).human_number == "SO20240315001"


def test_sequential_allocations_never_repeat(db):
    numbers = [_insert(db).human_number for _ in range(25)]

    assert len(set(numbers)) == 25
    assert numbers[-1] == "SO20240315025"


def test_supplied_number_is_normalized(db):
    order = _insert(db, candidate="  inv-77 ")

    assert order.human_number == "INV-77"


def test_duplicate_supplied_number_is_rejected_case_insensitively(db):
    _insert(db, candidate="INV-77")

    with pytest.raises(DuplicateOrderNumber) as exc_info:
        _insert(db, candidate="Inv-77")

    assert exc_info.value.number == "INV-77"


def test_blank_or_oversized_numbers_are_invalid():
    with pytest.raises(InvalidOrderData):
        normalize_order_number("   ")
    with pytest.raises(InvalidOrderData):
        normalize_order_number("X" * 65)


def test_internal_key_is_suffixed_when_taken(db):
    db.add(
        ShippingOrder(
            human_number="LEGACY-1",
            order_number="SO-9",
            status="pending",
            payment_status="unpaid",
            total_amount=Decimal("0"),
        )
    )
    db.flush()

    allocated = allocate(db, "so-9")

    assert allocated.human_number == "SO-9"
    assert allocated.order_number == "SO-9-1"


def test_allocator_retries_after_losing_a_race(db, monkeypatch):
    _insert(db)
    real_max = order_number_service._max_sequence_for_prefix
    calls = []

    def stale_then_real(session, prefix):
        calls.append(prefix)
        if len(calls) == 1:
            return 0
        return real_max(session, prefix)

    monkeypatch.setattr(order_number_service, "_max_sequence_for_prefix", stale_then_real)

    order = _insert(db)

    assert order.human_number == "SO20240315002"
    assert len(calls) == 2


def test_allocator_gives_up_after_bounded_attempts(db, monkeypatch):
    _insert(db)
    monkeypatch.setattr(settings, "order_number_max_attempts", 3)
    monkeypatch.setattr(order_number_service, "_max_sequence_for_prefix", lambda session, prefix: 0)

    with pytest.raises(OrderNumberAllocationFailed) as exc_info:
        _insert(db)

    assert exc_info.value.attempts == 3
    assert db.query(ShippingOrder).count() == 1


def test_renumber_rejects_number_in_use(db):
    first = _insert(db, candidate="A-1")
    second = _insert(db, candidate="B-1")

    with pytest.raises(DuplicateOrderNumber):
        renumber_order(db, second, "a-1")

    assert second.human_number == "B-1"
    assert renumber_order(db, first, "C-1") is True
    assert first.order_number == "C-1"
    assert renumber_order(db, first, "c-1") is False
