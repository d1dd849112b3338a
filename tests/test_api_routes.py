"""
tests/test_api_routes.py -- Integration tests for the v1 REST routes.

These tests exercise the full stack: FastAPI routing -> bearer-token dependency
-> SessionManager / TaskStore / UserStore -> response model serialization.

Coverage:
  - Health: 200 without auth
  - Auth failures: 401 on protected routes without or with a bad token
  - Auth flow: login, wrong password (AuthResponse shape, no lockout),
    register, refresh rotation and replay, logout, change-password
  - Tasks: scope on list, 404 for out-of-scope tasks, creator-only delete,
    the User-denied / Manager-allowed update scenario, comments
  - Users and categories: role-gated administration and self-protection

Fixtures used (from conftest.py):
  - api_client: ApiContext with admin / manager / alice / bob tokens.
    All fixture users share TEST_PASSWORD.
"""

from __future__ import annotations

import uuid

from tests.conftest import TEST_PASSWORD, ApiContext, auth_headers


def _login(api: ApiContext, email: str, password: str = TEST_PASSWORD):
    return api.client.post("/api/v1/auth/login", json={"email": email, "password": password})


def _register(api: ApiContext, email: str | None = None, password: str = TEST_PASSWORD):
    email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
    return api.client.post(
        "/api/v1/auth/register",
        json={"name": "New User", "email": email, "password": password, "confirm_password": password},
    )


def _create_task(api: ApiContext, who: str, **body) -> dict:
    body.setdefault("title", "A task")
    resp = api.client.post("/api/v1/tasks", json=body, headers=api.headers(who))
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestHealth:
    def test_health_no_auth_required(self, api_client: ApiContext) -> None:
        resp = api_client.client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestAuthRequired:
    def test_protected_routes_without_token(self, api_client: ApiContext) -> None:
        for path in ("/api/v1/tasks", "/api/v1/auth/me", "/api/v1/users", "/api/v1/categories"):
            resp = api_client.client.get(path)
            assert resp.status_code == 401, path
            assert resp.json()["error"]["code"] == "unauthorized"

    def test_garbage_token(self, api_client: ApiContext) -> None:
        resp = api_client.client.get("/api/v1/auth/me", headers=auth_headers("garbage"))
        assert resp.status_code == 401


class TestLoginAndRegister:
    def test_login_success(self, api_client: ApiContext) -> None:
        resp = _login(api_client, "alice@example.com")
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["success"] is True
        assert data["access_token"] and data["refresh_token"] and data["expires_at"]
        assert data["user"]["email"] == "alice@example.com"
        assert "hashed_password" not in data["user"]

    def test_wrong_password_three_times_same_answer(self, api_client: ApiContext) -> None:
        bodies = [_login(api_client, "alice@example.com", "Wrong1!x") for _ in range(3)]
        assert {r.status_code for r in bodies} == {401}
        assert len({r.json()["message"] for r in bodies}) == 1
        assert bodies[0].json() == {"success": False, "message": "Invalid email or password."}
        unknown = _login(api_client, "nobody@example.com")
        assert unknown.json() == bodies[0].json()

    def test_register_and_use_token(self, api_client: ApiContext) -> None:
        resp = _register(api_client)
        assert resp.status_code == 200
        data = resp.json()
        assert data["user"]["role"] == "User"
        me = api_client.client.get("/api/v1/auth/me", headers=auth_headers(data["access_token"]))
        assert me.status_code == 200
        assert me.json()["id"] == data["user"]["id"]

    def test_register_taken_email(self, api_client: ApiContext) -> None:
        resp = _register(api_client, email="alice@example.com")
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert resp.json()["message"] == "This email is already in use."

    def test_register_password_policy(self, api_client: ApiContext) -> None:
        assert _register(api_client, password="alllowercase1!").status_code == 422
        mismatch = api_client.client.post(
            "/api/v1/auth/register",
            json={"name": "X Y", "email": "mm@example.com", "password": TEST_PASSWORD, "confirm_password": "Other1!x"},
        )
        assert mismatch.status_code == 422
        assert mismatch.json()["error"]["code"] == "validation_error"

    def test_check_email(self, api_client: ApiContext) -> None:
        assert api_client.client.get("/api/v1/auth/check-email/alice@example.com").json()["taken"] is True
        assert api_client.client.get("/api/v1/auth/check-email/free@example.com").json()["taken"] is False

    def test_check_email_normalizes_like_register(self, api_client: ApiContext) -> None:
        local = f"Case-{uuid.uuid4().hex[:8]}"
        assert _register(api_client, email=f"{local}@EXAMPLE.com").status_code == 200
        resp = api_client.client.get(f"/api/v1/auth/check-email/{local}@Example.COM")
        assert resp.status_code == 200
        assert resp.json() == {"email": f"{local}@example.com", "taken": True}
        assert api_client.client.get("/api/v1/auth/check-email/not-an-email").status_code == 422

    def test_register_rejects_password_over_72_bytes(self, api_client: ApiContext) -> None:
        email = f"long-{uuid.uuid4().hex[:8]}@example.com"
        resp = _register(api_client, email=email, password="Aa1!" + "x" * 96)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
        assert api_client.client.get(f"/api/v1/auth/check-email/{email}").json()["taken"] is False

    def test_password_whitespace_is_kept(self, api_client: ApiContext) -> None:
        email = f"space-{uuid.uuid4().hex[:8]}@example.com"
        assert _register(api_client, email=email, password=" Passw0rd! ").status_code == 200
        assert _login(api_client, email, " Passw0rd! ").status_code == 200
        assert _login(api_client, email, "Passw0rd!").status_code == 401

    def test_name_and_email_are_trimmed(self, api_client: ApiContext) -> None:
        email = f"trim-{uuid.uuid4().hex[:8]}@example.com"
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={
                "name": "  Trim Me ",
                "email": f"  {email} ",
                "password": TEST_PASSWORD,
                "confirm_password": TEST_PASSWORD,
            },
        )
        assert resp.status_code == 200
        assert resp.json()["user"]["name"] == "Trim Me"
        assert resp.json()["user"]["email"] == email
        assert _login(api_client, f" {email}").status_code == 200


class TestSessions:
    def test_refresh_rotates_and_replay_fails(self, api_client: ApiContext) -> None:
        pair = _register(api_client).json()
        body = {"access_token": pair["access_token"], "refresh_token": pair["refresh_token"]}

        first = api_client.client.post("/api/v1/auth/refresh", json=body)
        assert first.status_code == 200
        assert first.json()["refresh_token"] != pair["refresh_token"]

        replay = api_client.client.post("/api/v1/auth/refresh", json=body)
        assert replay.status_code == 401
        assert replay.json() == {"success": False, "message": "Invalid refresh token."}

    def test_logout_kills_only_that_session(self, api_client: ApiContext) -> None:
        email = f"two-{uuid.uuid4().hex[:8]}@example.com"
        first = _register(api_client, email=email).json()
        second = _login(api_client, email).json()

        resp = api_client.client.post("/api/v1/auth/logout", headers=auth_headers(first["access_token"]))
        assert resp.status_code == 200

        dead = {"access_token": first["access_token"], "refresh_token": first["refresh_token"]}
        live = {"access_token": second["access_token"], "refresh_token": second["refresh_token"]}
        assert api_client.client.post("/api/v1/auth/refresh", json=dead).status_code == 401
        assert api_client.client.post("/api/v1/auth/refresh", json=live).status_code == 200

    def test_sessions_listing_marks_current(self, api_client: ApiContext) -> None:
        email = f"list-{uuid.uuid4().hex[:8]}@example.com"
        first = _register(api_client, email=email).json()
        _login(api_client, email)
        resp = api_client.client.get("/api/v1/auth/sessions", headers=auth_headers(first["access_token"]))
        assert resp.status_code == 200
        rows = resp.json()
        assert len(rows) == 2
        assert [r["current"] for r in rows].count(True) == 1
        assert all("token" not in r for r in rows)

    def test_change_password_revokes_everything(self, api_client: ApiContext) -> None:
        pair = _register(api_client).json()
        resp = api_client.client.post(
            "/api/v1/auth/change-password",
            json={"current_password": TEST_PASSWORD, "new_password": "N3w!pass", "confirm_new_password": "N3w!pass"},
            headers=auth_headers(pair["access_token"]),
        )
        assert resp.status_code == 200
        refresh = api_client.client.post(
            "/api/v1/auth/refresh",
            json={"access_token": pair["access_token"], "refresh_token": pair["refresh_token"]},
        )
        assert refresh.status_code == 401

    def test_change_password_wrong_current(self, api_client: ApiContext) -> None:
        pair = _register(api_client).json()
        resp = api_client.client.post(
            "/api/v1/auth/change-password",
            json={"current_password": "Wrong1!x", "new_password": "N3w!pass", "confirm_new_password": "N3w!pass"},
            headers=auth_headers(pair["access_token"]),
        )
        assert resp.status_code == 400

    def test_change_password_keeps_whitespace(self, api_client: ApiContext) -> None:
        email = f"cp-{uuid.uuid4().hex[:8]}@example.com"
        pair = _register(api_client, email=email).json()
        new = "NewPassw0rd! "
        resp = api_client.client.post(
            "/api/v1/auth/change-password",
            json={"current_password": TEST_PASSWORD, "new_password": new, "confirm_new_password": new},
            headers=auth_headers(pair["access_token"]),
        )
        assert resp.status_code == 200
        assert _login(api_client, email, new).status_code == 200

    def test_change_password_rejects_password_over_72_bytes(self, api_client: ApiContext) -> None:
        email = f"cplong-{uuid.uuid4().hex[:8]}@example.com"
        pair = _register(api_client, email=email).json()
        new = "Aa1!" + "x" * 96
        resp = api_client.client.post(
            "/api/v1/auth/change-password",
            json={"current_password": TEST_PASSWORD, "new_password": new, "confirm_new_password": new},
            headers=auth_headers(pair["access_token"]),
        )
        assert resp.status_code == 422
        assert _login(api_client, email).status_code == 200

    def test_validate(self, api_client: ApiContext) -> None:
        ok = api_client.client.get("/api/v1/auth/validate", headers=api_client.headers("alice")).json()
        assert ok == {"valid": True, "user_id": api_client.ids["alice"], "role": "User"}
        assert api_client.client.get("/api/v1/auth/validate").json()["valid"] is False


class TestTasks:
    def test_list_is_scoped_for_users(self, api_client: ApiContext) -> None:
        mine = _create_task(api_client, "alice", title="alice only")
        shared = _create_task(api_client, "alice", title="for bob", assigned_to=api_client.ids["bob"])

        bob_view = api_client.client.get("/api/v1/tasks?page_size=100", headers=api_client.headers("bob")).json()
        bob_ids = {t["id"] for t in bob_view}
        assert shared["id"] in bob_ids
        assert mine["id"] not in bob_ids

        staff = api_client.client.get("/api/v1/tasks?page_size=100", headers=api_client.headers("manager")).json()
        assert {mine["id"], shared["id"]} <= {t["id"] for t in staff}

    def test_out_of_scope_task_looks_missing(self, api_client: ApiContext) -> None:
        task = _create_task(api_client, "alice", title="private")
        hidden = api_client.client.get(f"/api/v1/tasks/{task['id']}", headers=api_client.headers("bob"))
        missing = api_client.client.get("/api/v1/tasks/999999", headers=api_client.headers("bob"))
        assert hidden.status_code == missing.status_code == 404
        assert hidden.json() == missing.json()

    def test_update_denied_for_other_user_allowed_for_manager(self, api_client: ApiContext) -> None:
        task = _create_task(api_client, "alice", title="original")
        body = {"title": "changed", "status": 2, "priority": 3}
        denied = api_client.client.put(f"/api/v1/tasks/{task['id']}", json=body, headers=api_client.headers("bob"))
        assert denied.status_code == 404

        allowed = api_client.client.put(
            f"/api/v1/tasks/{task['id']}", json=body, headers=api_client.headers("manager")
        )
        assert allowed.status_code == 200
        assert allowed.json()["title"] == "changed"
        assert allowed.json()["status_name"] == "In Progress"

    def test_assignee_completes_but_cannot_delete(self, api_client: ApiContext) -> None:
        task = _create_task(api_client, "alice", assigned_to=api_client.ids["bob"])
        url = f"/api/v1/tasks/{task['id']}"

        done = api_client.client.post(f"{url}/complete", headers=api_client.headers("bob"))
        assert done.status_code == 200
        assert done.json()["completed_at"] is not None

        assert api_client.client.delete(url, headers=api_client.headers("bob")).status_code == 404
        assert api_client.client.delete(url, headers=api_client.headers("alice")).status_code == 200
        assert api_client.client.get(url, headers=api_client.headers("alice")).status_code == 404

    def test_created_by_comes_from_token(self, api_client: ApiContext) -> None:
        task = _create_task(api_client, "alice", created_by=api_client.ids["bob"])
        assert task["created_by"] == api_client.ids["alice"]

    def test_unknown_assignee_rejected(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(
            "/api/v1/tasks", json={"title": "x", "assigned_to": 999999}, headers=api_client.headers("alice")
        )
        assert resp.status_code == 400

    def test_comments(self, api_client: ApiContext) -> None:
        task = _create_task(api_client, "alice", assigned_to=api_client.ids["bob"])
        url = f"/api/v1/tasks/{task['id']}/comments"

        posted = api_client.client.post(url, json={"content": "on it"}, headers=api_client.headers("bob"))
        assert posted.status_code == 201
        comment_id = posted.json()["id"]

        listed = api_client.client.get(url, headers=api_client.headers("alice")).json()
        assert [c["content"] for c in listed] == ["on it"]

        other = _create_task(api_client, "manager")
        outsider = api_client.client.post(
            f"/api/v1/tasks/{other['id']}/comments", json={"content": "hi"}, headers=api_client.headers("bob")
        )
        assert outsider.status_code == 404

        comment_url = f"/api/v1/tasks/comments/{comment_id}"
        forbidden = api_client.client.delete(comment_url, headers=api_client.headers("alice"))
        assert forbidden.status_code == 404
        deleted = api_client.client.delete(comment_url, headers=api_client.headers("bob"))
        assert deleted.status_code == 200

    def test_due_date_range(self, api_client: ApiContext) -> None:
        early = _create_task(api_client, "bob", title="early", due_date="2031-01-10T12:00:00Z")
        late = _create_task(api_client, "bob", title="late", due_date="2031-03-10T12:00:00Z")
        _create_task(api_client, "bob", title="undated")

        window = api_client.client.get(
            "/api/v1/tasks",
            params={"due_from": "2031-01-01T00:00:00Z", "due_to": "2031-02-01T00:00:00Z", "page_size": 100},
            headers=api_client.headers("bob"),
        )
        assert window.status_code == 200
        assert [t["id"] for t in window.json()] == [early["id"]]

        open_ended = api_client.client.get(
            "/api/v1/tasks",
            params={"due_from": "2031-02-01T00:00:00Z", "page_size": 100},
            headers=api_client.headers("bob"),
        )
        assert [t["id"] for t in open_ended.json()] == [late["id"]]

        bad = api_client.client.get("/api/v1/tasks", params={"due_to": "soon"}, headers=api_client.headers("bob"))
        assert bad.status_code == 422

    def test_stats(self, api_client: ApiContext) -> None:
        resp = api_client.client.get("/api/v1/tasks/stats", headers=api_client.headers("alice"))
        assert resp.status_code == 200
        assert set(resp.json()) >= {"total_tasks", "completed_tasks", "overdue_tasks", "completion_rate"}


class TestUsers:
    def test_user_lists_only_self(self, api_client: ApiContext) -> None:
        users = api_client.client.get("/api/v1/users", headers=api_client.headers("alice")).json()
        assert [u["id"] for u in users] == [api_client.ids["alice"]]

    def test_user_cannot_view_others(self, api_client: ApiContext) -> None:
        resp = api_client.client.get(f"/api/v1/users/{api_client.ids['bob']}", headers=api_client.headers("alice"))
        assert resp.status_code == 403

    def test_stats_for_staff_only(self, api_client: ApiContext) -> None:
        assert api_client.client.get("/api/v1/users/stats", headers=api_client.headers("alice")).status_code == 403
        resp = api_client.client.get("/api/v1/users/stats", headers=api_client.headers("manager"))
        assert resp.status_code == 200
        assert resp.json()["total_admins"] >= 1

    def test_admin_cannot_modify_self(self, api_client: ApiContext) -> None:
        admin_id = api_client.ids["admin"]
        role = api_client.client.put(
            f"/api/v1/users/{admin_id}/role", json={"role": "User"}, headers=api_client.headers("admin")
        )
        deactivate = api_client.client.delete(f"/api/v1/users/{admin_id}", headers=api_client.headers("admin"))
        assert role.status_code == deactivate.status_code == 400
        assert role.json()["error"]["code"] == "self_modification_denied"

    def test_manager_cannot_change_roles(self, api_client: ApiContext) -> None:
        resp = api_client.client.put(
            f"/api/v1/users/{api_client.ids['alice']}/role",
            json={"role": "Admin"},
            headers=api_client.headers("manager"),
        )
        assert resp.status_code == 403

    def test_admin_role_change(self, api_client: ApiContext) -> None:
        target = _register(api_client).json()["user"]["id"]
        resp = api_client.client.put(
            f"/api/v1/users/{target}/role", json={"role": "Manager"}, headers=api_client.headers("admin")
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "Manager"

    def test_deactivation_ends_every_session(self, api_client: ApiContext) -> None:
        email = f"gone-{uuid.uuid4().hex[:8]}@example.com"
        pair = _register(api_client, email=email).json()
        target = pair["user"]["id"]

        resp = api_client.client.delete(f"/api/v1/users/{target}", headers=api_client.headers("admin"))
        assert resp.status_code == 200

        assert api_client.client.get("/api/v1/auth/me", headers=auth_headers(pair["access_token"])).status_code == 401
        refresh = api_client.client.post(
            "/api/v1/auth/refresh",
            json={"access_token": pair["access_token"], "refresh_token": pair["refresh_token"]},
        )
        assert refresh.status_code == 401
        assert _login(api_client, email).status_code == 401

        reactivated = api_client.client.post(f"/api/v1/users/{target}/activate", headers=api_client.headers("admin"))
        assert reactivated.status_code == 200
        assert _login(api_client, email).status_code == 200


class TestCategories:
    def test_seeded_categories_visible_to_users(self, api_client: ApiContext) -> None:
        resp = api_client.client.get("/api/v1/categories", headers=api_client.headers("alice"))
        assert resp.status_code == 200
        assert {"Development", "Bug Fix"} <= {c["name"] for c in resp.json()}

    def test_create_and_delete_rules(self, api_client: ApiContext) -> None:
        body = {"name": "Research", "color": "#aabbcc"}
        denied = api_client.client.post("/api/v1/categories", json=body, headers=api_client.headers("alice"))
        assert denied.status_code == 403

        created = api_client.client.post("/api/v1/categories", json=body, headers=api_client.headers("manager"))
        assert created.status_code == 201
        cat_id = created.json()["id"]

        url = f"/api/v1/categories/{cat_id}"
        assert api_client.client.delete(url, headers=api_client.headers("manager")).status_code == 403
        assert api_client.client.delete(url, headers=api_client.headers("admin")).status_code == 200
        listed = api_client.client.get("/api/v1/categories", headers=api_client.headers("admin")).json()
        names = {c["name"] for c in listed}
        assert "Research" not in names

    def test_bad_color_rejected(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(
            "/api/v1/categories", json={"name": "X", "color": "red"}, headers=api_client.headers("admin")
        )
        assert resp.status_code == 422
