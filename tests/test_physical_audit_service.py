"""
Physical audit service tests: lifecycle, counting and planning updates.
"""
import uuid
from decimal import Decimal

import pytest
from pydantic import ValidationError

from factories import PRODUCT_1, PRODUCT_2, PRODUCT_3, counter, make_create_payload, scheduled_time
from inventory_audit.core.exceptions import BadRequestError, NotFoundError
from inventory_audit.schemas.physical_audit import (
    AttachmentCreate, AuditEntryInput, CountEntryInput, PhysicalAuditUpdate, RecordCountsRequest
)


def counts(*items) -> RecordCountsRequest:
    return RecordCountsRequest(entries=[
        CountEntryInput(product_id=product_id, counted_qty=Decimal(str(qty)), notes=notes)
        for product_id, qty, notes in items
    ])


def entry_for(session, product_id) -> dict:
    return next(e for e in session.entries if e["product_id"] == str(product_id))


# ============================================================================
# CREATE
# ============================================================================

async def test_create_without_schedule_is_draft(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)

    assert session.status == "draft"
    assert session.reference.startswith("AUD-")
    assert session.version == 1
    assert session.created_by == user_id
    assert [e["status"] for e in session.entries] == ["pending", "pending"]
    assert entry_for(session, PRODUCT_1)["expected_qty"] == 10
    assert entry_for(session, PRODUCT_1)["counted_qty"] is None
    assert session.attachments == []
    assert session.started_at is None


async def test_create_with_schedule_is_scheduled(service, user_id, store_id):
    session = await service.create_session(
        make_create_payload(store_id, scheduled_for=scheduled_time()), user_id
    )
    assert session.status == "scheduled"
    assert session.scheduled_for is not None


async def test_create_requires_entries(service, user_id, store_id):
    with pytest.raises(BadRequestError) as exc:
        await service.create_session(make_create_payload(store_id, entries=[]), user_id)
    assert exc.value.message == "At least one entry is required"

    sessions, pagination = await service.list_sessions()
    assert sessions == []
    assert pagination.total == 0


async def test_create_keeps_duplicate_products_as_separate_lines(service, user_id, store_id):
    payload = make_create_payload(store_id, entries=[
        AuditEntryInput(product_id=PRODUCT_1, expected_qty=Decimal("4")),
        AuditEntryInput(product_id=PRODUCT_1, expected_qty=Decimal("6")),
    ])
    session = await service.create_session(payload, user_id)
    assert len(session.entries) == 2


async def test_create_stores_fractional_quantities(service, user_id, store_id):
    payload = make_create_payload(store_id, entries=[
        AuditEntryInput(product_id=PRODUCT_3, expected_qty=Decimal("2.5")),
    ])
    session = await service.create_session(payload, user_id)
    assert entry_for(session, PRODUCT_3)["expected_qty"] == 2.5


async def test_get_unknown_session_raises_not_found(service):
    with pytest.raises(NotFoundError):
        await service.get_session(uuid.uuid4())


# ============================================================================
# FULL LIFECYCLE
# ============================================================================

async def test_count_review_complete_flow(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)

    session = await service.start_counting(session.id, user_id)
    assert session.status == "counting"
    assert session.started_at is not None

    session = await service.record_counts(session.id, counts((PRODUCT_1, 10, None)), user_id)
    p1 = entry_for(session, PRODUCT_1)
    assert p1["variance"] == 0
    assert p1["status"] == "counted"
    assert p1["last_counted_by"] == str(user_id)
    p2 = entry_for(session, PRODUCT_2)
    assert p2["status"] == "pending"
    assert p2["counted_qty"] is None
    assert p2["variance"] is None

    session = await service.record_counts(session.id, counts((PRODUCT_2, 3, "shelf damaged")), user_id)
    p2 = entry_for(session, PRODUCT_2)
    assert p2["variance"] == -2
    assert p2["status"] == "needs_review"
    assert p2["notes"] == "shelf damaged"
    assert entry_for(session, PRODUCT_1)["status"] == "counted"

    session = await service.move_to_review(session.id, user_id)
    assert session.status == "review"

    session = await service.complete_session(session.id, user_id)
    assert session.status == "completed"
    assert session.completed_at is not None

    with pytest.raises(BadRequestError) as exc:
        await service.record_counts(session.id, counts((PRODUCT_1, 9, None)), user_id)
    assert exc.value.message == "Invalid state transition from completed. Allowed: counting"


async def test_cancel_draft_replaces_instructions(service, user_id, store_id):
    session = await service.create_session(
        make_create_payload(store_id, instructions="count aisle 4 first"), user_id
    )

    session = await service.cancel_session(session.id, "wrong store", user_id)
    assert session.status == "cancelled"
    assert session.instructions == "wrong store"
    assert session.cancelled_at is not None

    with pytest.raises(BadRequestError):
        await service.start_counting(session.id, user_id)


async def test_cancel_without_reason_keeps_instructions(service, user_id, store_id):
    session = await service.create_session(
        make_create_payload(store_id, instructions="count aisle 4 first", scheduled_for=scheduled_time()),
        user_id,
    )
    session = await service.cancel_session(session.id, None, user_id)
    assert session.status == "cancelled"
    assert session.instructions == "count aisle 4 first"


async def test_cancel_after_counting_started_is_rejected(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)
    await service.start_counting(session.id, user_id)

    with pytest.raises(BadRequestError) as exc:
        await service.cancel_session(session.id, "too late", user_id)
    assert exc.value.message == "Invalid state transition from counting. Allowed: draft, scheduled"


async def test_every_mutation_bumps_version(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)
    assert session.version == 1
    session = await service.start_counting(session.id, user_id)
    assert session.version == 2
    session = await service.record_counts(session.id, counts((PRODUCT_1, 10, None)), user_id)
    assert session.version == 3


# ============================================================================
# RECORD COUNTS
# ============================================================================

async def test_recount_overwrites_previous_count(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)
    await service.start_counting(session.id, user_id)

    await service.record_counts(session.id, counts((PRODUCT_2, 3, "first pass")), user_id)
    session = await service.record_counts(session.id, counts((PRODUCT_2, 5, None)), user_id)

    p2 = entry_for(session, PRODUCT_2)
    assert p2["counted_qty"] == 5
    assert p2["variance"] == 0
    assert p2["status"] == "counted"
    assert p2["notes"] is None


async def test_fractional_variance_within_tolerance_is_counted(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)
    await service.start_counting(session.id, user_id)

    session = await service.record_counts(
        session.id, counts((PRODUCT_1, "10.01", None), (PRODUCT_2, "5.011", None)), user_id
    )
    assert entry_for(session, PRODUCT_1)["status"] == "counted"
    assert Decimal(str(entry_for(session, PRODUCT_1)["variance"])) == Decimal("0.01")
    assert entry_for(session, PRODUCT_2)["status"] == "needs_review"


async def test_unknown_products_in_counts_are_ignored(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)
    await service.start_counting(session.id, user_id)

    session = await service.record_counts(
        session.id, counts((PRODUCT_3, 7, None), (PRODUCT_1, 10, None)), user_id
    )
    assert len(session.entries) == 2
    assert entry_for(session, PRODUCT_1)["status"] == "counted"


async def test_duplicate_product_lines_all_receive_the_count(service, user_id, store_id):
    payload = make_create_payload(store_id, entries=[
        AuditEntryInput(product_id=PRODUCT_1, expected_qty=Decimal("4")),
        AuditEntryInput(product_id=PRODUCT_1, expected_qty=Decimal("6")),
    ])
    session = await service.create_session(payload, user_id)
    await service.start_counting(session.id, user_id)

    session = await service.record_counts(
        session.id, counts((PRODUCT_1, 1, None), (PRODUCT_1, 6, None)), user_id
    )
    assert [e["counted_qty"] for e in session.entries] == [6, 6]
    assert [e["variance"] for e in session.entries] == [2, 0]


async def test_record_counts_before_start_is_rejected(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)
    with pytest.raises(BadRequestError) as exc:
        await service.record_counts(session.id, counts((PRODUCT_1, 10, None)), user_id)
    assert exc.value.message == "Invalid state transition from draft. Allowed: counting"


# ============================================================================
# UPDATE
# ============================================================================

async def test_update_applies_only_provided_fields(service, user_id, store_id):
    session = await service.create_session(
        make_create_payload(store_id, instructions="bring scanners"), user_id
    )
    editor = uuid.uuid4()

    session = await service.update_session(
        session.id, PhysicalAuditUpdate(name="Back store count"), editor
    )
    assert session.name == "Back store count"
    assert session.instructions == "bring scanners"
    assert session.audit_type == "cycle"
    assert session.updated_by == editor
    assert len(session.entries) == 2


async def test_update_can_clear_instructions(service, user_id, store_id):
    session = await service.create_session(
        make_create_payload(store_id, instructions="bring scanners"), user_id
    )
    session = await service.update_session(
        session.id, PhysicalAuditUpdate(instructions=None), user_id
    )
    assert session.instructions is None


async def test_update_replaces_entries(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)
    session = await service.update_session(
        session.id,
        PhysicalAuditUpdate(entries=[AuditEntryInput(product_id=PRODUCT_3, expected_qty=Decimal("12"))]),
        user_id,
    )
    assert [e["product_id"] for e in session.entries] == [str(PRODUCT_3)]
    assert session.entries[0]["status"] == "pending"


async def test_update_with_empty_entries_is_rejected(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)
    with pytest.raises(BadRequestError):
        await service.update_session(
            session.id, PhysicalAuditUpdate(name="renamed", entries=[]), uuid.uuid4()
        )

    assert session not in service.db.dirty
    assert session.name == "Front store cycle count"
    assert session.updated_by == user_id


async def test_update_does_not_change_status(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)
    session = await service.update_session(
        session.id, PhysicalAuditUpdate(scheduled_for=scheduled_time()), user_id
    )
    assert session.status == "draft"
    assert session.scheduled_for is not None


async def test_update_after_counting_started_is_rejected(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)
    await service.start_counting(session.id, user_id)
    with pytest.raises(BadRequestError):
        await service.update_session(session.id, PhysicalAuditUpdate(name="late"), user_id)


# ============================================================================
# COUNTERS
# ============================================================================

async def test_start_counting_activates_counters(service, user_id, store_id):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    session = await service.create_session(
        make_create_payload(store_id, counters=[counter(alice), counter(bob, "supervisor")]), user_id
    )
    assert [c["status"] for c in session.counters] == ["pending", "pending"]

    session = await service.start_counting(session.id, user_id)
    assert [c["status"] for c in session.counters] == ["active", "active"]
    assert session.counters[1]["role"] == "supervisor"


async def test_complete_counter(service, user_id, store_id):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    session = await service.create_session(
        make_create_payload(store_id, counters=[counter(alice), counter(bob)]), user_id
    )
    await service.start_counting(session.id, user_id)

    session = await service.complete_counter(session.id, alice, user_id)
    statuses = {c["user_id"]: c["status"] for c in session.counters}
    assert statuses == {str(alice): "complete", str(bob): "active"}


async def test_complete_counter_requires_assignment(service, user_id, store_id):
    session = await service.create_session(
        make_create_payload(store_id, counters=[counter(uuid.uuid4())]), user_id
    )
    await service.start_counting(session.id, user_id)

    with pytest.raises(BadRequestError) as exc:
        await service.complete_counter(session.id, uuid.uuid4(), uuid.uuid4())
    assert exc.value.message == "User is not assigned as a counter on this audit"

    assert session not in service.db.dirty
    assert session.updated_by == user_id


async def test_complete_counter_outside_counting_is_rejected(service, user_id, store_id):
    alice = uuid.uuid4()
    session = await service.create_session(
        make_create_payload(store_id, counters=[counter(alice)]), user_id
    )
    with pytest.raises(BadRequestError):
        await service.complete_counter(session.id, alice, user_id)


async def test_update_counters_resets_them_to_pending(service, user_id, store_id):
    session = await service.create_session(
        make_create_payload(store_id, counters=[counter(uuid.uuid4())]), user_id
    )
    carol = uuid.uuid4()
    session = await service.update_session(
        session.id, PhysicalAuditUpdate(counters=[counter(carol)]), user_id
    )
    assert session.counters == [{"user_id": str(carol), "role": "counter", "status": "pending"}]


# ============================================================================
# ATTACHMENTS & SUMMARY
# ============================================================================

async def test_add_attachment(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)
    await service.start_counting(session.id, user_id)

    session = await service.add_attachment(
        session.id, AttachmentCreate(name="sheet-1.pdf", url="https://files.example.com/sheet-1.pdf"), user_id
    )
    session = await service.add_attachment(
        session.id, AttachmentCreate(name="shelf.jpg", url="https://files.example.com/shelf.jpg"), user_id
    )
    assert [a["name"] for a in session.attachments] == ["sheet-1.pdf", "shelf.jpg"]
    assert session.attachments[0]["uploaded_by"] == str(user_id)
    assert session.attachments[0]["uploaded_at"]


async def test_add_attachment_to_closed_session_is_rejected(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)
    await service.cancel_session(session.id, None, user_id)

    with pytest.raises(BadRequestError):
        await service.add_attachment(
            session.id, AttachmentCreate(name="late.pdf", url="https://files.example.com/late.pdf"), user_id
        )


async def test_session_summary(service, user_id, store_id):
    session = await service.create_session(make_create_payload(store_id), user_id)
    await service.start_counting(session.id, user_id)
    await service.record_counts(session.id, counts((PRODUCT_2, 3, None)), user_id)

    summary = await service.get_session_summary(session.id)
    assert summary.reference == session.reference
    assert summary.status == "counting"
    assert summary.total_entries == 2
    assert summary.pending_entries == 1
    assert summary.needs_review_entries == 1
    assert summary.counted_entries == 0
    assert summary.total_expected_qty == Decimal("15")
    assert summary.total_counted_qty == Decimal("3")
    assert summary.net_variance == Decimal("-2")
    assert summary.absolute_variance == Decimal("2")
    assert summary.accuracy_rate == Decimal("0.00")


# ============================================================================
# PRODUCT KEYS
# ============================================================================

async def test_product_keys_are_opaque_strings(service, user_id, store_id):
    payload = make_create_payload(store_id, entries=[
        AuditEntryInput(product_id="64b7f0c2e4b0a1a2b3c4d5e6", expected_qty=Decimal("3")),
        AuditEntryInput(product_id="SKU:BOTTLE-500ML", expected_qty=Decimal("8")),
    ])
    session = await service.create_session(payload, user_id)
    await service.start_counting(session.id, user_id)

    session = await service.record_counts(
        session.id, counts(("64b7f0c2e4b0a1a2b3c4d5e6", 3, None), ("SKU:BOTTLE-500ML", 7, None)), user_id
    )
    assert entry_for(session, "64b7f0c2e4b0a1a2b3c4d5e6")["status"] == "counted"
    assert entry_for(session, "SKU:BOTTLE-500ML")["variance"] == -1


def test_empty_product_key_is_rejected():
    with pytest.raises(ValidationError):
        AuditEntryInput(product_id="", expected_qty=Decimal("1"))
    with pytest.raises(ValidationError):
        CountEntryInput(product_id="", counted_qty=Decimal("1"))
