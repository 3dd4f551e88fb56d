from decimal import Decimal


def test_services_and_allocations(api_client, auth_headers, trial_factory):
    trial = trial_factory()
    base = f"/trials/{trial['id']}/services"

    service = api_client.post(
        base, json={"name": "Screening visit fee", "amount": "1500000", "currency": "CLP"}, headers=auth_headers
    )
    assert service.status_code == 201, service.text
    service_id = service.json()["id"]
    assert service.json()["amount_display"] == "$1.500.000 CLP"

    for name, amount, kind in (
        ("PI share", "900000", "principal_investigator"),
        ("Sub-I share", "250000.50", "sub_investigator"),
    ):
        res = api_client.post(
            f"{base}/{service_id}/allocations",
            json={"name": name, "amount": amount, "currency": "CLP", "allocation_type": kind},
            headers=auth_headers,
        )
        assert res.status_code == 201, res.text

    listed = api_client.get(base, headers=auth_headers)
    assert listed.status_code == 200
    summary = listed.json()[0]
    assert len(summary["allocations"]) == 2
    assert Decimal(summary["total_allocated"]) == Decimal("1150000.50")
    assert summary["total_allocated_display"] == "$1.150.000,5 CLP"


def test_update_service_and_delete_cascades(api_client, auth_headers, trial_factory):
    trial = trial_factory()
    base = f"/trials/{trial['id']}/services"
    service_id = api_client.post(
        base, json={"name": "Visit fee", "amount": "120.5"}, headers=auth_headers
    ).json()["id"]
    allocation = api_client.post(
        f"{base}/{service_id}/allocations",
        json={"name": "PI", "amount": "100", "allocation_type": "principal_investigator"},
        headers=auth_headers,
    ).json()

    updated = api_client.put(
        f"{base}/{service_id}", json={"name": "Visit fee", "amount": "1234.5"}, headers=auth_headers
    )
    assert updated.status_code == 200, updated.text
    assert updated.json()["amount_display"] == "$1,234.5 USD"

    edited = api_client.put(
        f"{base}/{service_id}/allocations/{allocation['id']}",
        json={"name": "PI", "amount": "80", "allocation_type": "principal_investigator"},
        headers=auth_headers,
    )
    assert Decimal(edited.json()["amount"]) == Decimal("80")

    assert api_client.delete(f"{base}/{service_id}", headers=auth_headers).status_code == 204
    assert api_client.get(base, headers=auth_headers).json() == []


def test_viewer_cannot_read_fee_schedule(api_client, user_factory, trial_factory):
    trial = trial_factory()
    _, headers = user_factory("viewer")

    res = api_client.get(f"/trials/{trial['id']}/services", headers=headers)

    assert res.status_code == 403
