from datetime import timedelta

import pytest

from fieldclock.core.errors import EntryLocked, EntryNotFound, Forbidden, InvalidInput, OverlapDetected
from fieldclock.core.timeutil import utcnow
from fieldclock.database import SessionLocal
from fieldclock.models.audit_record import AuditRecord
from fieldclock.services import audit_service
from fieldclock.services.audit_service import EntryChanges

COMPANY_ID = 73001
WORKER_ID = "worker-73"


def _day_start():
    return (utcnow() - timedelta(days=2)).replace(hour=0, minute=0, second=0, microsecond=0)


def _audit_rows(entry_id):
    db = SessionLocal()
    try:
        return db.query(AuditRecord).filter(AuditRecord.entry_id == entry_id).all()
    finally:
        db.close()


def test_edit_moves_clock_out_and_is_audited(entry_factory):
    day = _day_start()
    entry = entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=8), day + timedelta(hours=17))

    result = audit_service.edit_time_entry(
        entry.time_entry_id,
        EntryChanges(clock_out_at=day + timedelta(hours=16)),
        "Worker forgot to clock out on time",
        "mgr-1",
        company_id=COMPANY_ID,
        actor_role="MANAGER",
    )

    assert result.entry.clock_out_at == day + timedelta(hours=16)
    assert result.entry.version == 2
    assert result.has_overlap is False
    assert result.force_edit is False

    [audit] = _audit_rows(entry.time_entry_id)
    assert audit.id == result.audit_record_id
    assert audit.edit_reason == "Worker forgot to clock out on time"
    assert audit.before["clock_out_at"] != audit.after["clock_out_at"]


def test_edit_resets_approval(entry_factory):
    day = _day_start()
    entry = entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=8), day + timedelta(hours=17), approved=True)

    result = audit_service.edit_time_entry(
        entry.time_entry_id,
        EntryChanges(clock_in_at=day + timedelta(hours=7, minutes=30)),
        "Started early",
        "mgr-1",
        company_id=COMPANY_ID,
        actor_role="MANAGER",
    )

    assert result.entry.approved is False
    assert result.requires_reapproval is True


def test_overlap_rejected_unless_forced(entry_factory):
    day = _day_start()
    entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=8), day + timedelta(hours=12))
    later = entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=13), day + timedelta(hours=17))

    with pytest.raises(OverlapDetected) as excinfo:
        audit_service.edit_time_entry(
            later.time_entry_id,
            EntryChanges(clock_in_at=day + timedelta(hours=11)),
            "Started earlier than recorded",
            "mgr-1",
            company_id=COMPANY_ID,
            actor_role="MANAGER",
        )
    assert len(excinfo.value.context["overlapping_entry_ids"]) == 1
    assert _audit_rows(later.time_entry_id) == []

    result = audit_service.edit_time_entry(
        later.time_entry_id,
        EntryChanges(clock_in_at=day + timedelta(hours=11)),
        "Started earlier than recorded",
        "admin-1",
        company_id=COMPANY_ID,
        actor_role="ADMIN",
        force=True,
    )
    assert result.has_overlap is True
    assert "overlap" in result.entry.exception_tags


def test_adjacent_entries_do_not_overlap(entry_factory):
    day = _day_start()
    entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=8), day + timedelta(hours=12))
    later = entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=13), day + timedelta(hours=17))

    result = audit_service.edit_time_entry(
        later.time_entry_id,
        EntryChanges(clock_in_at=day + timedelta(hours=12)),
        "Back from lunch on time",
        "mgr-1",
        company_id=COMPANY_ID,
        actor_role="MANAGER",
    )
    assert result.has_overlap is False


def test_cancelled_entries_are_ignored_for_overlap(entry_factory):
    day = _day_start()
    entry_factory(
        COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=8), day + timedelta(hours=12), exception_tags=["cancelled"]
    )
    later = entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=13), day + timedelta(hours=17))

    result = audit_service.edit_time_entry(
        later.time_entry_id,
        EntryChanges(clock_in_at=day + timedelta(hours=9)),
        "Duplicate shift was cancelled",
        "mgr-1",
        company_id=COMPANY_ID,
        actor_role="MANAGER",
    )
    assert result.has_overlap is False


def test_locked_entry_requires_admin_force(entry_factory):
    day = _day_start()
    entry = entry_factory(
        COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=8), day + timedelta(hours=17), invoice_id="INV-9"
    )

    with pytest.raises(EntryLocked):
        audit_service.edit_time_entry(
            entry.time_entry_id,
            EntryChanges(notes="adjusted"),
            "Client disputed hours",
            "mgr-1",
            company_id=COMPANY_ID,
            actor_role="MANAGER",
        )

    with pytest.raises(Forbidden):
        audit_service.edit_time_entry(
            entry.time_entry_id,
            EntryChanges(notes="adjusted"),
            "Client disputed hours",
            "mgr-1",
            company_id=COMPANY_ID,
            actor_role="MANAGER",
            force=True,
        )

    result = audit_service.edit_time_entry(
        entry.time_entry_id,
        EntryChanges(clock_out_at=day + timedelta(hours=16)),
        "Client disputed hours",
        "admin-1",
        company_id=COMPANY_ID,
        actor_role="ADMIN",
        force=True,
    )
    assert result.force_edit is True
    assert "forced_edit" in result.entry.exception_tags

    [audit] = _audit_rows(entry.time_entry_id)
    assert audit.force_edit is True


@pytest.mark.parametrize("reason", ["", "  ", "ab", "x" * 501])
def test_edit_reason_length_enforced(entry_factory, reason):
    day = _day_start()
    entry = entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=8), day + timedelta(hours=17))

    with pytest.raises(InvalidInput):
        audit_service.edit_time_entry(
            entry.time_entry_id,
            EntryChanges(notes="n"),
            reason,
            "mgr-1",
            company_id=COMPANY_ID,
            actor_role="MANAGER",
        )


def test_employee_cannot_edit(entry_factory):
    day = _day_start()
    entry = entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=8), day + timedelta(hours=17))

    with pytest.raises(Forbidden):
        audit_service.edit_time_entry(
            entry.time_entry_id,
            EntryChanges(notes="n"),
            "Fixing my own hours",
            WORKER_ID,
            company_id=COMPANY_ID,
            actor_role="EMPLOYEE",
        )


def test_edit_rejects_inverted_and_too_long_shifts(entry_factory):
    day = _day_start()
    entry = entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=8), day + timedelta(hours=17))

    with pytest.raises(InvalidInput):
        audit_service.edit_time_entry(
            entry.time_entry_id,
            EntryChanges(clock_out_at=day + timedelta(hours=7)),
            "Typo fix",
            "mgr-1",
            company_id=COMPANY_ID,
            actor_role="MANAGER",
        )

    with pytest.raises(InvalidInput):
        audit_service.edit_time_entry(
            entry.time_entry_id,
            EntryChanges(clock_out_at=day + timedelta(hours=8 + 25)),
            "Typo fix",
            "mgr-1",
            company_id=COMPANY_ID,
            actor_role="MANAGER",
        )


def test_edit_of_other_company_entry_is_not_found(entry_factory):
    day = _day_start()
    entry = entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=8), day + timedelta(hours=17))

    with pytest.raises(EntryNotFound):
        audit_service.edit_time_entry(
            entry.time_entry_id,
            EntryChanges(notes="n"),
            "Wrong tenant",
            "mgr-1",
            company_id=COMPANY_ID + 1,
            actor_role="MANAGER",
        )


def test_empty_change_set_rejected(entry_factory):
    day = _day_start()
    entry = entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=8), day + timedelta(hours=17))

    with pytest.raises(InvalidInput):
        audit_service.edit_time_entry(
            entry.time_entry_id,
            EntryChanges(),
            "Nothing to do",
            "mgr-1",
            company_id=COMPANY_ID,
            actor_role="MANAGER",
        )


def test_cancel_and_restore(entry_factory):
    day = _day_start()
    entry = entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=8), day + timedelta(hours=17))

    cancelled = audit_service.edit_time_entry(
        entry.time_entry_id,
        EntryChanges(cancelled=True),
        "Duplicate shift",
        "mgr-1",
        company_id=COMPANY_ID,
        actor_role="MANAGER",
    )
    assert "cancelled" in cancelled.entry.exception_tags

    restored = audit_service.edit_time_entry(
        entry.time_entry_id,
        EntryChanges(cancelled=False),
        "Not a duplicate after all",
        "mgr-1",
        company_id=COMPANY_ID,
        actor_role="MANAGER",
    )
    assert "cancelled" not in restored.entry.exception_tags
    assert restored.entry.version == 3
    assert len(_audit_rows(entry.time_entry_id)) == 2


def test_bulk_approval_collects_failures(entry_factory):
    day = _day_start()
    closed = entry_factory(COMPANY_ID, WORKER_ID, 1, day + timedelta(hours=8), day + timedelta(hours=17))
    already = entry_factory(
        COMPANY_ID, "worker-b", 1, day + timedelta(hours=8), day + timedelta(hours=17), approved=True
    )
    open_entry = entry_factory(COMPANY_ID, "worker-c", 1, day + timedelta(hours=8))

    result = audit_service.approve_entries(
        [closed.time_entry_id, already.time_entry_id, open_entry.time_entry_id, "missing", closed.time_entry_id],
        company_id=COMPANY_ID,
        actor_id="mgr-1",
        actor_role="MANAGER",
    )

    assert result.approved == 2
    assert result.failed == 2
    assert {e["entry_id"]: e["code"] for e in result.errors} == {
        open_entry.time_entry_id: "invalid-input",
        "missing": "not-found",
    }

    [audit] = _audit_rows(closed.time_entry_id)
    assert audit.after["approved"] is True
    assert audit.after["approved_by"] == "mgr-1"
    assert _audit_rows(already.time_entry_id) == []


def test_bulk_approval_batch_limit():
    with pytest.raises(InvalidInput):
        audit_service.approve_entries(
            [f"e-{i}" for i in range(501)],
            company_id=COMPANY_ID,
            actor_id="mgr-1",
            actor_role="MANAGER",
        )
