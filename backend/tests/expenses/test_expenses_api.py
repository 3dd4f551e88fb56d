from decimal import Decimal

from app.db.session import SessionLocal
from app.models.trial import VisitType


def _submit(api_client, headers, patient_id, trial_id, visit, items=None, visit_date="2026-03-01"):
    return api_client.post(
        "/expenses",
        json={
            "patient_id": patient_id,
            "trial_id": trial_id,
            "visit_type": visit,
            "visit_date": visit_date,
            "items": items if items is not None else [{"category": "transport", "cost": "10.00"}],
        },
        headers=headers,
    )


def test_submit_expense_drops_empty_lines(api_client, auth_headers, patient_factory, trial_factory):
    patient = patient_factory()
    trial = trial_factory()

    res = _submit(
        api_client,
        auth_headers,
        patient["id"],
        trial["id"],
        "Screening",
        items=[
            {"category": "transport", "cost": "15.25"},
            {"category": "food", "cost": "0"},
            {"category": "accommodation", "cost": "80.00"},
        ],
    )

    assert res.status_code == 201, res.text
    body = res.json()
    assert {item["category"] for item in body["items"]} == {"transport", "accommodation"}
    assert Decimal(body["total"]) == Decimal("95.25")
    assert body["created_by"]["email"]


def test_duplicate_visit_submission_conflicts(api_client, auth_headers, patient_factory, trial_factory):
    patient = patient_factory()
    trial = trial_factory()

    first = _submit(api_client, auth_headers, patient["id"], trial["id"], "Visit 1")
    second = _submit(api_client, auth_headers, patient["id"], trial["id"], "Visit 1")

    assert first.status_code == 201, first.text
    assert second.status_code == 409, second.text


def test_unknown_visit_is_rejected(api_client, auth_headers, patient_factory, trial_factory):
    patient = patient_factory()
    trial = trial_factory()

    res = _submit(api_client, auth_headers, patient["id"], trial["id"], "Visit 9")

    assert res.status_code == 409


def test_missing_patient_or_trial(api_client, auth_headers, patient_factory, trial_factory):
    patient = patient_factory()
    trial = trial_factory()

    assert _submit(api_client, auth_headers, 999999, trial["id"], "Screening").status_code == 404
    assert _submit(api_client, auth_headers, patient["id"], 999999, "Screening").status_code == 404


def test_duplicate_categories_rejected(api_client, auth_headers, patient_factory, trial_factory):
    patient = patient_factory()
    trial = trial_factory()

    res = _submit(
        api_client,
        auth_headers,
        patient["id"],
        trial["id"],
        "Screening",
        items=[{"category": "food", "cost": "5"}, {"category": "food", "cost": "6"}],
    )

    assert res.status_code == 422


def test_update_replaces_items_and_checks_new_visit(
    api_client, auth_headers, patient_factory, trial_factory
):
    patient = patient_factory()
    trial = trial_factory()
    _submit(api_client, auth_headers, patient["id"], trial["id"], "Screening")
    created = _submit(api_client, auth_headers, patient["id"], trial["id"], "Visit 1")
    expense_id = created.json()["id"]

    taken = api_client.put(
        f"/expenses/{expense_id}",
        json={"visit_type": "Screening", "visit_date": "2026-03-02", "items": []},
        headers=auth_headers,
    )
    assert taken.status_code == 409, taken.text

    updated = api_client.put(
        f"/expenses/{expense_id}",
        json={
            "visit_type": "Visit 2",
            "visit_date": "2026-03-05",
            "items": [{"category": "trip1", "cost": "7.00"}, {"category": "trip2", "cost": "3.00"}],
        },
        headers=auth_headers,
    )
    assert updated.status_code == 200, updated.text
    body = updated.json()
    assert body["visit_type"] == "Visit 2"
    assert sorted(item["category"] for item in body["items"]) == ["trip1", "trip2"]
    assert Decimal(body["total"]) == Decimal("10.00")

    fetched = api_client.get(f"/expenses/{expense_id}", headers=auth_headers)
    assert fetched.status_code == 200
    assert len(fetched.json()["items"]) == 2


def test_update_keeps_same_visit(api_client, auth_headers, patient_factory, trial_factory):
    patient = patient_factory()
    trial = trial_factory()
    created = _submit(api_client, auth_headers, patient["id"], trial["id"], "Screening")

    res = api_client.put(
        f"/expenses/{created.json()['id']}",
        json={"visit_type": "Screening", "visit_date": "2026-04-01", "items": []},
        headers=auth_headers,
    )

    assert res.status_code == 200, res.text
    assert res.json()["items"] == []


def test_delete_frees_the_visit(api_client, auth_headers, patient_factory, trial_factory):
    patient = patient_factory()
    trial = trial_factory()
    created = _submit(api_client, auth_headers, patient["id"], trial["id"], "Screening")

    deleted = api_client.delete(f"/expenses/{created.json()['id']}", headers=auth_headers)
    assert deleted.status_code == 204

    assert api_client.get(f"/expenses/{created.json()['id']}", headers=auth_headers).status_code == 404
    again = _submit(api_client, auth_headers, patient["id"], trial["id"], "Screening")
    assert again.status_code == 201, again.text


def test_patient_expenses_sorted_by_visit_order(
    api_client, auth_headers, patient_factory, trial_factory
):
    patient = patient_factory()
    trial = trial_factory()
    _submit(api_client, auth_headers, patient["id"], trial["id"], "Visit 2", visit_date="2026-01-01")
    _submit(api_client, auth_headers, patient["id"], trial["id"], "Screening", visit_date="2026-03-01")
    _submit(api_client, auth_headers, patient["id"], trial["id"], "Visit 1", visit_date="2026-02-01")

    res = api_client.get(f"/patients/{patient['id']}/expenses", headers=auth_headers)

    assert res.status_code == 200, res.text
    body = res.json()
    assert [item["visit_type"] for item in body["items"]] == ["Screening", "Visit 1", "Visit 2"]
    assert [item["visit_order"] for item in body["items"]] == [1, 2, 3]
    assert body["items"][0]["trial_name"] == trial["name"]
    assert Decimal(body["total"]) == Decimal("30.00")


def test_renamed_visit_sorts_last(api_client, auth_headers, patient_factory, trial_factory):
    patient = patient_factory()
    trial = trial_factory(visits=(("Screening", 1), ("Visit 1", 2)))
    _submit(api_client, auth_headers, patient["id"], trial["id"], "Visit 1")
    _submit(api_client, auth_headers, patient["id"], trial["id"], "Screening")
    other = trial_factory(visits=(("Baseline", 1),))
    _submit(api_client, auth_headers, patient["id"], other["id"], "Baseline")

    visit_types = api_client.get(f"/trials/{other['id']}/visit-types", headers=auth_headers).json()
    # Visit types referenced by submissions cannot be deleted, so drop the row directly.
    with SessionLocal() as db:
        db.delete(db.get(VisitType, visit_types[0]["id"]))
        db.commit()

    res = api_client.get(f"/patients/{patient['id']}/expenses", headers=auth_headers)
    orders = [item["visit_order"] for item in res.json()["items"]]

    assert orders == [1, 2, None]


def test_operator_cannot_delete_expense(
    api_client, auth_headers, patient_factory, trial_factory, user_factory
):
    patient = patient_factory()
    trial = trial_factory()
    created = _submit(api_client, auth_headers, patient["id"], trial["id"], "Screening")
    _, operator_headers = user_factory("operator")

    res = api_client.delete(f"/expenses/{created.json()['id']}", headers=operator_headers)

    assert res.status_code == 403
