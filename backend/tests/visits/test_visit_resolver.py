from __future__ import annotations

import uuid
from datetime import date

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from app.db.session import engine
from app.models.expense import PatientExpense
from app.models.patient import Patient
from app.models.trial import Trial, VisitType
from app.services.users import get_user_by_email
from app.services.visits import (
    EligibleVisit,
    InvalidVisitQuery,
    SequencingMode,
    VisitLookupError,
    can_register_visit,
    registrable_visit_names,
    resolve_eligible_visits,
)


@pytest.fixture()
def actor(db_session, admin_credentials):
    return get_user_by_email(db_session, admin_credentials[0])


def _trial(db, actor, visits):
    trial = Trial(
        name=f"MK-053-{uuid.uuid4().hex[:6]}",
        sponsor="Acme Pharma",
        created_by_user_id=actor.id,
    )
    db.add(trial)
    db.flush()
    for name, order_number in visits:
        db.add(
            VisitType(
                trial_id=trial.id,
                name=name,
                order_number=order_number,
                created_by_user_id=actor.id,
            )
        )
    db.flush()
    return trial


def _patient(db, actor):
    patient = Patient(
        code=f"P1-{uuid.uuid4().hex[:6]}",
        first_name="Pablo",
        first_surname="Uno",
        created_by_user_id=actor.id,
    )
    db.add(patient)
    db.flush()
    return patient


def _submit(db, actor, patient, trial, visit_name):
    db.add(
        PatientExpense(
            patient_id=patient.id,
            trial_id=trial.id,
            visit_type=visit_name,
            visit_date=date(2026, 3, 1),
            created_by_user_id=actor.id,
        )
    )
    db.flush()


def test_mk053_scenario(db_session, actor):
    trial = _trial(db_session, actor, [("Screening", 1), ("Visit 1", 2), ("Visit 2", 3)])
    patient = _patient(db_session, actor)
    _submit(db_session, actor, patient, trial, "Screening")

    visits = resolve_eligible_visits(db_session, patient.id, trial.id)

    assert [(v.name, v.order_number, v.is_completed) for v in visits] == [
        ("Screening", 1, True),
        ("Visit 1", 2, False),
        ("Visit 2", 3, False),
    ]
    assert can_register_visit(db_session, patient.id, trial.id, "Visit 1") is True
    assert can_register_visit(db_session, patient.id, trial.id, "Screening") is False
    assert can_register_visit(db_session, patient.id, trial.id, "Visit 3") is False


def test_output_covers_every_visit_type_in_order(db_session, actor):
    trial = _trial(db_session, actor, [("Follow-up", 30), ("Baseline", 5), ("Week 4", 12)])
    patient = _patient(db_session, actor)

    visits = resolve_eligible_visits(db_session, patient.id, trial.id)

    assert [v.name for v in visits] == ["Baseline", "Week 4", "Follow-up"]
    assert [v.order_number for v in visits] == sorted(v.order_number for v in visits)
    assert not any(v.is_completed for v in visits)


def test_completion_is_scoped_to_patient_and_trial(db_session, actor):
    trial = _trial(db_session, actor, [("Screening", 1), ("Visit 1", 2)])
    other_trial = _trial(db_session, actor, [("Screening", 1)])
    patient = _patient(db_session, actor)
    other_patient = _patient(db_session, actor)
    _submit(db_session, actor, other_patient, trial, "Screening")
    _submit(db_session, actor, patient, other_trial, "Screening")

    visits = resolve_eligible_visits(db_session, patient.id, trial.id)

    assert all(not v.is_completed for v in visits)


def test_trial_without_visit_types_resolves_empty(db_session, actor):
    trial = _trial(db_session, actor, [])
    patient = _patient(db_session, actor)

    assert resolve_eligible_visits(db_session, patient.id, trial.id) == []
    assert can_register_visit(db_session, patient.id, trial.id, "Screening") is False


def test_resolution_is_idempotent(db_session, actor):
    trial = _trial(db_session, actor, [("Screening", 1), ("Visit 1", 2)])
    patient = _patient(db_session, actor)
    _submit(db_session, actor, patient, trial, "Visit 1")

    first = resolve_eligible_visits(db_session, patient.id, trial.id)
    second = resolve_eligible_visits(db_session, patient.id, trial.id)

    assert first == second


def test_resolution_issues_two_reads(db_session, actor):
    trial = _trial(db_session, actor, [("Screening", 1), ("Visit 1", 2)])
    patient = _patient(db_session, actor)
    statements: list[str] = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", _record)
    try:
        resolve_eligible_visits(db_session, patient.id, trial.id)
    finally:
        event.remove(engine, "before_cursor_execute", _record)

    assert len(statements) == 2


@pytest.mark.parametrize(
    ("patient_id", "trial_id"),
    [(None, 1), (1, None), (0, 1), (1, -4), ("", 1), ("abc", 1), (True, 1), ("²", 1), (1, "١٢")],
)
def test_invalid_identifiers_are_rejected(db_session, patient_id, trial_id):
    with pytest.raises(InvalidVisitQuery):
        resolve_eligible_visits(db_session, patient_id, trial_id)


def test_empty_visit_name_is_rejected(db_session):
    with pytest.raises(InvalidVisitQuery):
        can_register_visit(db_session, 1, 1, "  ")


class _BrokenSession:
    def scalars(self, *_args, **_kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection lost"))


def test_lookup_failure_surfaces_as_single_error():
    with pytest.raises(VisitLookupError):
        resolve_eligible_visits(_BrokenSession(), 1, 1)


def test_registrable_names_permissive_and_strict():
    visits = [
        EligibleVisit(id=1, name="Screening", order_number=1, is_completed=True),
        EligibleVisit(id=2, name="Visit 1", order_number=2, is_completed=False),
        EligibleVisit(id=3, name="Visit 2", order_number=3, is_completed=False),
    ]

    assert registrable_visit_names(visits) == {"Visit 1", "Visit 2"}
    assert registrable_visit_names(visits, SequencingMode.strict) == {"Visit 1"}
    completed = [EligibleVisit(id=1, name="Screening", order_number=1, is_completed=True)]
    assert registrable_visit_names(completed, SequencingMode.strict) == set()


def test_strict_mode_only_allows_next_visit(db_session, actor):
    trial = _trial(db_session, actor, [("Screening", 1), ("Visit 1", 2), ("Visit 2", 3)])
    patient = _patient(db_session, actor)

    assert can_register_visit(
        db_session, patient.id, trial.id, "Visit 2", mode=SequencingMode.strict
    ) is False
    assert can_register_visit(
        db_session, patient.id, trial.id, "Screening", mode=SequencingMode.strict
    ) is True
