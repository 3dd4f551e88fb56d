from pathlib import Path

from app.core.settings import settings
from app.models.expense import ExpenseCategory, ExpenseItem
from app.services.expenses import unreferenced_receipt_keys


def _upload(api_client, headers, patient, trial, visit="Screening", category="transport", name="ticket.PDF", data=b"%PDF-1.4 receipt"):
    return api_client.post(
        "/expenses/receipts",
        data={
            "patient_id": str(patient["id"]),
            "trial_id": str(trial["id"]),
            "visit_type": visit,
            "category": category,
        },
        files={"file": (name, data, "application/pdf")},
        headers=headers,
    )


def test_receipt_upload_uses_slot_path(api_client, auth_headers, patient_factory, trial_factory):
    patient = patient_factory()
    trial = trial_factory()

    res = _upload(api_client, auth_headers, patient, trial)

    assert res.status_code == 201, res.text
    key = res.json()["receipt_key"]
    assert key == f"{trial['name']}/{patient['code']}/Screening/transport/receipt.pdf"
    assert (Path(settings.receipts_dir) / key).read_bytes() == b"%PDF-1.4 receipt"


def test_reupload_replaces_previous_file(api_client, auth_headers, patient_factory, trial_factory):
    patient = patient_factory()
    trial = trial_factory()
    first = _upload(api_client, auth_headers, patient, trial, name="ticket.pdf")
    second = _upload(api_client, auth_headers, patient, trial, name="ticket.png", data=b"png")

    assert second.status_code == 201, second.text
    assert not (Path(settings.receipts_dir) / first.json()["receipt_key"]).exists()
    assert (Path(settings.receipts_dir) / second.json()["receipt_key"]).read_bytes() == b"png"


def test_receipt_for_unknown_visit_is_rejected(api_client, auth_headers, patient_factory, trial_factory):
    patient = patient_factory()
    trial = trial_factory()

    res = _upload(api_client, auth_headers, patient, trial, visit="Visit 9")

    assert res.status_code == 404


def test_receipt_too_large(api_client, auth_headers, patient_factory, trial_factory, monkeypatch):
    monkeypatch.setattr(settings, "max_receipt_bytes", 8)
    patient = patient_factory()
    trial = trial_factory()

    res = _upload(api_client, auth_headers, patient, trial, data=b"0123456789")

    assert res.status_code == 413


def test_receipt_download_and_cleanup(api_client, auth_headers, patient_factory, trial_factory):
    patient = patient_factory()
    trial = trial_factory()
    upload = _upload(api_client, auth_headers, patient, trial, category="food")
    key = upload.json()["receipt_key"]
    created = api_client.post(
        "/expenses",
        json={
            "patient_id": patient["id"],
            "trial_id": trial["id"],
            "visit_type": "Screening",
            "visit_date": "2026-03-01",
            "items": [{"category": "food", "cost": "0", "receipt_key": key}],
        },
        headers=auth_headers,
    )
    assert created.status_code == 201, created.text
    expense = created.json()
    item = expense["items"][0]
    assert item["receipt_key"] == key

    download = api_client.get(
        f"/expenses/{expense['id']}/items/{item['id']}/receipt", headers=auth_headers
    )
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 receipt"
    assert download.headers["content-type"].startswith("application/pdf")

    replaced = api_client.put(
        f"/expenses/{expense['id']}",
        json={"visit_type": "Screening", "visit_date": "2026-03-01", "items": []},
        headers=auth_headers,
    )
    assert replaced.status_code == 200, replaced.text
    assert not (Path(settings.receipts_dir) / key).exists()


def _submit(api_client, headers, patient, trial, items, visit="Screening"):
    return api_client.post(
        "/expenses",
        json={
            "patient_id": patient["id"],
            "trial_id": trial["id"],
            "visit_type": visit,
            "visit_date": "2026-03-01",
            "items": items,
        },
        headers=headers,
    )


def test_receipt_from_another_slot_is_rejected(api_client, auth_headers, patient_factory, trial_factory):
    owner = patient_factory()
    other = patient_factory()
    trial = trial_factory()
    key = _upload(api_client, auth_headers, owner, trial).json()["receipt_key"]
    assert _submit(
        api_client, auth_headers, owner, trial, [{"category": "transport", "cost": "10", "receipt_key": key}]
    ).status_code == 201

    for patient, items in (
        (other, [{"category": "transport", "cost": "10", "receipt_key": key}]),
        (owner, [{"category": "food", "cost": "10", "receipt_key": key}]),
        (other, [{"category": "food", "cost": "1", "receipt_key": "../outside.pdf"}]),
    ):
        res = _submit(api_client, auth_headers, patient, trial, items, visit="Visit 1")
        assert res.status_code == 422, res.text

    assert (Path(settings.receipts_dir) / key).exists()
    listed = api_client.get(f"/patients/{other['id']}/expenses", headers=auth_headers)
    assert listed.json()["items"] == []


def test_edit_rejects_receipt_from_another_slot(api_client, auth_headers, patient_factory, trial_factory):
    owner = patient_factory()
    other = patient_factory()
    trial = trial_factory()
    key = _upload(api_client, auth_headers, owner, trial).json()["receipt_key"]
    expense = _submit(api_client, auth_headers, other, trial, [{"category": "food", "cost": "3"}]).json()

    res = api_client.put(
        f"/expenses/{expense['id']}",
        json={
            "visit_type": "Screening",
            "visit_date": "2026-03-01",
            "items": [{"category": "transport", "cost": "3", "receipt_key": key}],
        },
        headers=auth_headers,
    )

    assert res.status_code == 422, res.text
    assert (Path(settings.receipts_dir) / key).exists()


def test_rejected_reupload_keeps_existing_receipt(
    api_client, auth_headers, patient_factory, trial_factory, monkeypatch
):
    patient = patient_factory()
    trial = trial_factory()
    key = _upload(api_client, auth_headers, patient, trial).json()["receipt_key"]
    expense = _submit(
        api_client, auth_headers, patient, trial, [{"category": "transport", "cost": "7", "receipt_key": key}]
    ).json()
    monkeypatch.setattr(settings, "max_receipt_bytes", 4)

    res = _upload(api_client, auth_headers, patient, trial, name="ticket.png", data=b"0123456789")

    assert res.status_code == 413
    path = Path(settings.receipts_dir) / key
    assert path.read_bytes() == b"%PDF-1.4 receipt"
    assert [entry.name for entry in path.parent.iterdir()] == ["receipt.pdf"]
    download = api_client.get(
        f"/expenses/{expense['id']}/items/{expense['items'][0]['id']}/receipt", headers=auth_headers
    )
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 receipt"


def test_shared_receipt_survives_other_expense_changes(
    api_client, auth_headers, db_session, patient_factory, trial_factory
):
    owner = patient_factory()
    other = patient_factory()
    trial = trial_factory()
    key = _upload(api_client, auth_headers, owner, trial).json()["receipt_key"]
    assert _submit(
        api_client, auth_headers, owner, trial, [{"category": "transport", "cost": "10", "receipt_key": key}]
    ).status_code == 201
    edited = _submit(api_client, auth_headers, other, trial, [{"category": "transport", "cost": "2"}]).json()
    deleted = _submit(
        api_client, auth_headers, other, trial, [{"category": "transport", "cost": "2"}], visit="Visit 1"
    ).json()
    # Rows written before receipt keys were checked can still share a file.
    for expense in (edited, deleted):
        db_session.get(ExpenseItem, expense["items"][0]["id"]).receipt_key = key
    db_session.commit()

    replaced = api_client.put(
        f"/expenses/{edited['id']}",
        json={"visit_type": "Screening", "visit_date": "2026-03-01", "items": []},
        headers=auth_headers,
    )
    assert replaced.status_code == 200, replaced.text
    assert api_client.delete(f"/expenses/{deleted['id']}", headers=auth_headers).status_code == 204

    assert (Path(settings.receipts_dir) / key).read_bytes() == b"%PDF-1.4 receipt"


def test_unreferenced_receipt_keys(api_client, auth_headers, db_session, patient_factory, trial_factory):
    expense = _submit(
        api_client, auth_headers, patient_factory(), trial_factory(), [{"category": "food", "cost": "4"}]
    ).json()
    db_session.add(
        ExpenseItem(
            patient_expense_id=expense["id"],
            category=ExpenseCategory.transport,
            receipt_key="a/b/c/transport/receipt.pdf",
        )
    )
    db_session.flush()

    keys = unreferenced_receipt_keys(db_session, ["a/b/c/transport/receipt.pdf", "a/b/c/food/receipt.pdf"])

    assert keys == ["a/b/c/food/receipt.pdf"]
    assert unreferenced_receipt_keys(db_session, []) == []
