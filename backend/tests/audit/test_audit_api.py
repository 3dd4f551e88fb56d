import csv
import io


def test_expense_changes_are_audited(api_client, auth_headers, patient_factory, trial_factory):
    patient = patient_factory()
    trial = trial_factory()
    created = api_client.post(
        "/expenses",
        json={
            "patient_id": patient["id"],
            "trial_id": trial["id"],
            "visit_type": "Screening",
            "visit_date": "2026-02-01",
            "items": [{"category": "transport", "cost": "5.00"}],
        },
        headers={**auth_headers, "request-id": "req-audit-1"},
    )
    expense_id = created.json()["id"]
    api_client.put(
        f"/expenses/{expense_id}",
        json={"visit_type": "Screening", "visit_date": "2026-02-02", "items": []},
        headers=auth_headers,
    )
    api_client.delete(f"/expenses/{expense_id}", headers=auth_headers)

    res = api_client.get(
        "/audit",
        params={"entity_type": "patient_expense", "entity_id": str(expense_id)},
        headers=auth_headers,
    )

    assert res.status_code == 200, res.text
    entries = res.json()
    assert [entry["action"] for entry in entries] == ["delete", "update", "create"]
    create_entry = entries[-1]
    assert create_entry["request_id"] == "req-audit-1"
    assert create_entry["after_json"]["items"][0]["cost"] == "5.00"
    assert entries[1]["before_json"]["visit_date"] == "2026-02-01"
    assert entries[1]["after_json"]["items"] == []


def test_audit_export_csv(api_client, auth_headers, patient_factory):
    patient = patient_factory()

    res = api_client.get(
        "/audit/export.csv",
        params={"entity_type": "patient", "entity_id": str(patient["id"]), "days": 1},
        headers=auth_headers,
    )

    assert res.status_code == 200, res.text
    rows = list(csv.DictReader(io.StringIO(res.text)))
    assert [row["action"] for row in rows] == ["create"]
    assert rows[0]["entity_id"] == str(patient["id"])


def test_operator_cannot_read_audit(api_client, user_factory):
    _, headers = user_factory("operator")

    assert api_client.get("/audit", headers=headers).status_code == 403
