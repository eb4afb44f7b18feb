def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_root_redirects_to_dashboard(client):
    r = client.get("/")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/dashboard/")


def test_login_and_dashboard_access(client, login):
    # Anonymous should be sent to the login page
    r = client.get("/dashboard/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]

    r = login(client)
    assert r.status_code == 302

    r = client.get("/dashboard/")
    assert r.status_code == 200
    assert b"Welcome, System Administrator" in r.data


def test_audit_page_lists_login(client, login):
    login(client)
    r = client.get("/dashboard/audit?action=auth.login")
    assert r.status_code == 200
    assert b"auth.login" in r.data


def test_audit_page_forbidden_for_viewer(client, login):
    login(client, "viewer@example.com")
    r = client.get("/dashboard/audit")
    assert r.status_code == 403


def test_unknown_page_renders_404(client, login):
    login(client)
    r = client.get("/dashboard/no-such-page")
    assert r.status_code == 404


def test_files_require_login(client):
    r = client.get("/files/vehicles/attachments/1/missing.pdf")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]


def test_missing_file_is_404(client, login):
    login(client)
    r = client.get("/files/vehicles/attachments/1/missing.pdf")
    assert r.status_code == 404
