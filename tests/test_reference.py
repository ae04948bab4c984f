import pytest

from factories import make_create_payload
from inventory_audit.config import settings
from inventory_audit.core.exceptions import ConflictError
from inventory_audit.services import physical_audit_service
from inventory_audit.services.physical_audit_service import PhysicalAuditService
from inventory_audit.services.reference import generate_reference, to_base36

FROZEN_MS = 1_760_000_000_000


def test_to_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"
    with pytest.raises(ValueError):
        to_base36(-1)


def test_reference_encodes_timestamp():
    reference = generate_reference(FROZEN_MS)
    assert reference.startswith("AUD-")
    assert reference[4:] == reference[4:].upper()
    assert int(reference[4:], 36) == FROZEN_MS


def test_reference_defaults_to_now():
    assert generate_reference().startswith("AUD-")


@pytest.fixture
def frozen_clock(monkeypatch):
    monkeypatch.setattr(physical_audit_service, "current_timestamp_ms", lambda: FROZEN_MS)


async def test_same_millisecond_references_stay_unique(
    frozen_clock, service, db, tenant_b, user_id, store_id
):
    first = await service.create_session(make_create_payload(store_id), user_id)
    second = await service.create_session(make_create_payload(store_id), user_id)

    assert first.reference == generate_reference(FROZEN_MS)
    assert second.reference == generate_reference(FROZEN_MS + 1)

    other_tenant = PhysicalAuditService(db, tenant_b)
    third = await other_tenant.create_session(make_create_payload(store_id), user_id)
    assert third.reference == generate_reference(FROZEN_MS)


async def test_reference_attempts_are_bounded(frozen_clock, monkeypatch, service, user_id, store_id):
    monkeypatch.setattr(settings, "REFERENCE_MAX_ATTEMPTS", 1)
    await service.create_session(make_create_payload(store_id), user_id)

    with pytest.raises(ConflictError):
        await service.create_session(make_create_payload(store_id), user_id)
