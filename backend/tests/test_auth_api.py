def test_login_rejects_bad_password(api_client, admin_credentials):
    email, _ = admin_credentials

    res = api_client.post("/auth/login", json={"email": email, "password": "wrong-password"})

    assert res.status_code == 401


def test_login_is_case_insensitive_and_records_time(api_client, admin_credentials, auth_headers):
    email, password = admin_credentials

    res = api_client.post("/auth/login", json={"email": email.upper(), "password": password})

    assert res.status_code == 200, res.text
    assert res.json()["token_type"] == "bearer"
    profile = api_client.get("/me", headers=auth_headers).json()
    assert profile["last_login_at"] is not None


def test_new_user_must_change_password(api_client, auth_headers, user_factory):
    user_id, headers = user_factory("viewer")
    user = api_client.get(f"/users/{user_id}", headers=auth_headers).json()
    assert user["must_change_password"] is True

    changed = api_client.post(
        "/auth/change-password", json={"new_password": "AnotherPass123!"}, headers=headers
    )
    assert changed.status_code == 200, changed.text

    relogin = api_client.post(
        "/auth/login", json={"email": user["email"], "password": "AnotherPass123!"}
    )
    assert relogin.status_code == 200
    assert relogin.json()["must_change_password"] is False

    again = api_client.post(
        "/auth/change-password", json={"new_password": "ThirdPass12345!"}, headers=headers
    )
    assert again.status_code == 400


def test_disabled_account_cannot_log_in(api_client, auth_headers):
    email = "disabled-user@example.com"
    created = api_client.post(
        "/users",
        json={"email": email, "role": "viewer", "temp_password": "ChangeMe12345!"},
        headers=auth_headers,
    )
    assert created.status_code == 201, created.text
    api_client.patch(f"/users/{created.json()['id']}", json={"is_active": False}, headers=auth_headers)

    res = api_client.post("/auth/login", json={"email": email, "password": "ChangeMe12345!"})

    assert res.status_code == 403


def test_missing_token_is_unauthorized(api_client):
    assert api_client.get("/me").status_code == 401
    assert api_client.get("/me", headers={"Authorization": "Bearer nonsense"}).status_code == 401
