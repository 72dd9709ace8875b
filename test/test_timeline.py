from datetime import timedelta

from _helper import T0, make_order
from hypothesis import given
from hypothesis import strategies as st

from orderflow.timeline import CANCELLED_LABEL, MilestoneState, build_timeline

LABELS = ["Created", "Payment Received", "Shipped", "Delivered"]


def test_new_order_has_only_created_completed():
    timeline = build_timeline(make_order())
    assert [m.label for m in timeline] == LABELS
    assert [m.completed for m in timeline] == [True, False, False, False]
    assert timeline[0].timestamp == T0
    assert all(m.state is MilestoneState.PENDING and m.timestamp is None for m in timeline[1:])


def test_delivered_order_completes_every_milestone():
    stamps = [T0 + timedelta(hours=h) for h in (1, 2, 3)]
    order = make_order(
        is_paid=True,
        paid_at=stamps[0],
        is_shipped=True,
        shipped_at=stamps[1],
        is_delivered=True,
        delivered_at=stamps[2],
    )
    timeline = build_timeline(order)
    assert all(m.completed for m in timeline)
    assert [m.timestamp for m in timeline] == [T0, *stamps]


def test_cancelled_order_marks_unreached_milestones_unreachable():
    order = make_order(
        is_paid=True,
        paid_at=T0 + timedelta(hours=1),
        is_cancelled=True,
        cancelled_at=T0 + timedelta(hours=2),
        cancellation_reason="changed my mind",
    )
    timeline = build_timeline(order)
    assert [m.label for m in timeline] == [*LABELS, CANCELLED_LABEL]
    assert [m.state for m in timeline] == [
        MilestoneState.COMPLETED,
        MilestoneState.COMPLETED,
        MilestoneState.UNREACHABLE,
        MilestoneState.UNREACHABLE,
        MilestoneState.COMPLETED,
    ]
    assert timeline[-1].timestamp == T0 + timedelta(hours=2)


@given(paid=st.booleans(), shipped=st.booleans(), delivered=st.booleans(), cancelled=st.booleans())
def test_completed_iff_flag_set(paid, shipped, delivered, cancelled):
    order = make_order(is_paid=paid, is_shipped=shipped, is_delivered=delivered, is_cancelled=cancelled)
    by_label = {m.label: m for m in build_timeline(order)}
    assert by_label["Created"].completed
    for label, flag in [("Payment Received", paid), ("Shipped", shipped), ("Delivered", delivered)]:
        milestone = by_label[label]
        assert milestone.completed == flag
        if not flag:
            expected = MilestoneState.UNREACHABLE if cancelled else MilestoneState.PENDING
            assert milestone.state is expected
    assert (CANCELLED_LABEL in by_label) == cancelled
