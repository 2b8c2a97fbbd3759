"""Unit tests for booking reconciliation."""

from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest

from conftest import make_booking
from tourdesk.channel.normalizer import normalize, parse_booking
from tourdesk.models import Guide, Tour, TourGroup
from tourdesk.services.reconciler import ReconcileOutcome, Reconciler, ReconciliationConflict

NOW = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)


def booking_for(booking_id, **kwargs):
    return normalize(parse_booking(make_booking(booking_id, **kwargs)))


async def reload(session, tour_id):
    return await session.get(Tour, tour_id, populate_existing=True)


@pytest.fixture
def reconciler(test_session):
    return Reconciler(test_session, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_new_booking_is_inserted(reconciler, test_session):
    """Test that an unknown booking creates a tour awaiting a guide."""
    result = await reconciler.reconcile(booking_for(100))

    assert result.outcome == ReconcileOutcome.INSERTED
    tour = await reload(test_session, result.tour_id)
    assert tour.external_id == "100"
    assert tour.confirmation_code == "FLO-100"
    assert tour.date == date(2026, 11, 2)
    assert tour.time == time(10, 0)
    assert tour.participants == 2
    assert tour.external_source == "channel"
    assert tour.payment_status == "unpaid"
    assert tour.needs_guide_assignment is True
    assert tour.group_id is None
    assert tour.last_synced.replace(tzinfo=None) == NOW.replace(tzinfo=None)


@pytest.mark.asyncio
async def test_same_booking_twice_is_unchanged(reconciler, test_session):
    """Test that re-syncing an identical booking writes nothing."""
    first = await reconciler.reconcile(booking_for(101))
    second = await reconciler.reconcile(booking_for(101))

    assert second.outcome == ReconcileOutcome.UNCHANGED
    assert second.tour_id == first.tour_id


@pytest.mark.asyncio
async def test_update_preserves_dispatcher_fields(reconciler, test_session):
    """Test that channel updates never touch guide, group, payment or notes."""
    guide = Guide(name="Giulia", languages=["Italian"])
    test_session.add(guide)
    await test_session.flush()
    group = TourGroup(
        group_date=date(2026, 11, 2), group_time=time(10, 0), display_name="Uffizi", total_pax=2
    )
    test_session.add(group)
    await test_session.commit()

    inserted = await reconciler.reconcile(booking_for(102))
    tour = await reload(test_session, inserted.tour_id)
    tour.guide_id = guide.id
    tour.group_id = group.id
    tour.needs_guide_assignment = False
    tour.payment_status = "paid"
    tour.total_amount_paid = Decimal("120.00")
    tour.notes = "Meet at the north entrance"
    await test_session.commit()

    result = await reconciler.reconcile(booking_for(102, categories={"ADULT": 3}))

    assert result.outcome == ReconcileOutcome.UPDATED
    assert result.rescheduled is False
    assert result.group_id == group.id
    tour = await reload(test_session, inserted.tour_id)
    assert tour.participants == 3
    assert tour.guide_id == guide.id
    assert tour.group_id == group.id
    assert tour.needs_guide_assignment is False
    assert tour.payment_status == "paid"
    assert tour.total_amount_paid == Decimal("120.00")
    assert tour.notes == "Meet at the north entrance"


@pytest.mark.asyncio
async def test_descriptive_change_does_not_flag_group(reconciler, test_session):
    """Test that a change outside date, time, pax or cancellation leaves the group alone."""
    await reconciler.reconcile(booking_for(103))

    result = await reconciler.reconcile(booking_for(103, customerExternalNotes="Late arrival"))

    assert result.outcome == ReconcileOutcome.UPDATED
    assert result.group_id is None


@pytest.mark.asyncio
async def test_reschedule_keeps_first_original_slot(reconciler, test_session):
    """Test that the original slot is recorded once across reschedules."""
    inserted = await reconciler.reconcile(booking_for(104))

    moved = await reconciler.reconcile(booking_for(104, start_time_str="11:30"))
    assert moved.rescheduled is True

    await reconciler.reconcile(booking_for(104, start="2026-11-03T09:00:00Z", start_time_str="15:00"))

    tour = await reload(test_session, inserted.tour_id)
    assert tour.rescheduled is True
    assert tour.date == date(2026, 11, 3)
    assert tour.time == time(15, 0)
    assert tour.original_date == date(2026, 11, 2)
    assert tour.original_time == time(10, 0)
    assert tour.rescheduled_at is not None


@pytest.mark.asyncio
async def test_cancellation_is_recorded(reconciler, test_session):
    """Test that a channel cancellation updates the tour in place."""
    inserted = await reconciler.reconcile(booking_for(105))

    result = await reconciler.reconcile(booking_for(105, status="CANCELLED"))

    assert result.outcome == ReconcileOutcome.UPDATED
    tour = await reload(test_session, inserted.tour_id)
    assert tour.cancelled is True
    assert tour.live_pax == 0


@pytest.mark.asyncio
async def test_match_by_confirmation_code_backfills_external_id(reconciler, test_session):
    """Test that a manually entered tour is adopted by its confirmation code."""
    manual = Tour(
        confirmation_code="FLO-106",
        title="Uffizi Gallery Tour",
        date=date(2026, 11, 2),
        time=time(10, 0),
        participants=2,
    )
    test_session.add(manual)
    await test_session.commit()

    result = await reconciler.reconcile(booking_for(106))

    assert result.outcome == ReconcileOutcome.UPDATED
    assert result.tour_id == manual.id
    tour = await reload(test_session, manual.id)
    assert tour.external_id == "106"


@pytest.mark.asyncio
async def test_identifiers_pointing_at_different_tours_conflict(reconciler, test_session):
    """Test that external id and confirmation code must agree."""
    test_session.add_all([
        Tour(external_id="107", confirmation_code="OLD-1", title="A", date=date(2026, 11, 2), time=time(9, 0)),
        Tour(confirmation_code="FLO-107", title="B", date=date(2026, 11, 2), time=time(9, 0)),
    ])
    await test_session.commit()

    with pytest.raises(ReconciliationConflict) as exc_info:
        await reconciler.reconcile(booking_for(107))

    assert exc_info.value.external_id == "107"
    assert exc_info.value.confirmation_code == "FLO-107"


@pytest.mark.asyncio
async def test_confirmation_code_owned_by_other_booking_conflicts(reconciler, test_session):
    """Test that a code already tied to another external booking is not reused."""
    test_session.add(
        Tour(external_id="999", confirmation_code="FLO-108", title="A", date=date(2026, 11, 2), time=time(9, 0))
    )
    await test_session.commit()

    with pytest.raises(ReconciliationConflict):
        await reconciler.reconcile(booking_for(108))


@pytest.mark.asyncio
async def test_duplicate_confirmation_codes_conflict(reconciler, test_session):
    """Test that an ambiguous confirmation code is rejected."""
    test_session.add_all([
        Tour(confirmation_code="FLO-109", title="A", date=date(2026, 11, 2), time=time(9, 0)),
        Tour(confirmation_code="FLO-109", title="B", date=date(2026, 11, 2), time=time(9, 0)),
    ])
    await test_session.commit()

    with pytest.raises(ReconciliationConflict):
        await reconciler.reconcile(booking_for(109))
