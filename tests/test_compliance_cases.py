import uuid
from datetime import date, datetime

import pytest

from fleet_compliance.errors import NotFound, ValidationError
from fleet_compliance.models.models import ComplianceCase
from fleet_compliance.services import compliance_cases


def test_open_or_get_is_idempotent(db, factory):
    n = factory.notification()

    case, existing = compliance_cases.open_or_get(db, n.id)
    again, existing_again = compliance_cases.open_or_get(db, n.id)

    assert existing is False
    assert existing_again is True
    assert again.id == case.id
    assert case.application_status == "not_applied"
    assert db.query(ComplianceCase).count() == 1


def test_concurrent_open_converges_on_one_row(factory, session_factory, monkeypatch):
    n = factory.notification()
    winner = session_factory()
    loser = session_factory()
    real_find = compliance_cases._find
    misses = {"n": 0}

    def stale_find(session, notification_id):
        # the loser's first lookup ran before the winner committed
        if session is loser and misses["n"] == 0:
            misses["n"] += 1
            return None
        return real_find(session, notification_id)

    monkeypatch.setattr(compliance_cases, "_find", stale_find)
    try:
        won, won_existing = compliance_cases.open_or_get(winner, n.id)
        lost, lost_existing = compliance_cases.open_or_get(loser, n.id)

        assert won_existing is False
        assert lost_existing is True
        assert lost.id == won.id
        assert loser.query(ComplianceCase).count() == 1
    finally:
        winner.close()
        loser.close()


def test_open_for_unknown_notification(db):
    with pytest.raises(NotFound):
        compliance_cases.open_or_get(db, uuid.uuid4())


def test_application_status_can_move_both_ways(db, factory):
    case, _ = compliance_cases.open_or_get(db, factory.notification().id)

    updated = compliance_cases.update_case(
        db,
        case.id,
        {"application_status": "applied", "date_applied": date(2030, 1, 2), "appointment_date": datetime(2030, 1, 9, 10, 0)},
    )
    assert updated.application_status == "applied"
    assert updated.date_applied == date(2030, 1, 2)
    assert updated.updated_at is not None

    reverted = compliance_cases.update_case(db, case.id, {"application_status": "not_applied"})
    assert reverted.application_status == "not_applied"
    assert reverted.date_applied == date(2030, 1, 2)


def test_invalid_application_status(db, factory):
    case, _ = compliance_cases.open_or_get(db, factory.notification().id)
    with pytest.raises(ValidationError):
        compliance_cases.update_case(db, case.id, {"application_status": "approved"})
    with pytest.raises(ValidationError):
        compliance_cases.update_case(db, case.id, {"application_status": None})


def test_list_and_get_cases(db, factory):
    first, _ = compliance_cases.open_or_get(db, factory.notification().id)
    second, _ = compliance_cases.open_or_get(db, factory.notification().id)
    compliance_cases.update_case(db, second.id, {"application_status": "applied"})

    assert {c.id for c in compliance_cases.list_cases(db)} == {first.id, second.id}
    assert [c.id for c in compliance_cases.list_cases(db, "applied")] == [second.id]
    assert compliance_cases.get_case(db, first.id).notification is not None
    with pytest.raises(NotFound):
        compliance_cases.get_case(db, uuid.uuid4())
