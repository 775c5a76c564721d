from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine, select

from vision_console import main as app_main
from vision_console.domain.models import (
    AuditLog,
    Company,
    EventRecord,
    Vision,
    VisionGroupRoot,
    VisionMembership,
)
from vision_console.domain.uniqueness import NoConflict
from vision_console.infra import audit, db
from vision_console.services import vision_service
from vision_console.services.access_service import AccessService


@pytest.fixture()
def vision_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "vision_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _bootstrap_admin(client: TestClient, username: str, password: str) -> str:
    response = client.post(
        "/api/identity/bootstrap-admin",
        json={"username": username, "password": password},
    )
    assert response.status_code == 201
    return response.json()["id"]


def _login(client: TestClient, username: str, password: str) -> str:
    response = client.post(
        "/api/identity/dev-login",
        json={"username": username, "password": password},
    )
    assert response.status_code == 200
    return response.json()["access_token"]


def _create_client(client: TestClient, token: str, name: str) -> str:
    response = client.post("/api/identity/clients", json={"name": name}, headers=_auth_header(token))
    assert response.status_code == 201
    return response.json()["id"]


def _create_company(client: TestClient, token: str, client_id: str, root: str, name: str) -> str:
    response = client.post(
        f"/api/clients/{client_id}/companies",
        json={"root": root, "name": name, "integration_code": f"INT-{name}"},
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return response.json()["id"]


def _grant(
    client: TestClient,
    token: str,
    operator_id: str,
    client_id: str,
    company_ids: list[str | None],
) -> None:
    response = client.put(
        f"/api/identity/operators/{operator_id}/clients/{client_id}/grants",
        json={"grants": [{"company_id": item} for item in company_ids]},
        headers=_auth_header(token),
    )
    assert response.status_code == 200


def _create_operator(client: TestClient, token: str, username: str, password: str) -> str:
    response = client.post(
        "/api/identity/operators",
        json={
            "username": username,
            "password": password,
            "permissions": ["company.read", "vision.read", "vision.write"],
        },
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return response.json()["id"]


def _save(
    client: TestClient,
    token: str,
    client_id: str,
    body: dict[str, object],
    vision_id: str | None = None,
):
    if vision_id is None:
        return client.post(f"/api/clients/{client_id}/visions", json=body, headers=_auth_header(token))
    return client.put(
        f"/api/clients/{client_id}/visions/{vision_id}",
        json=body,
        headers=_auth_header(token),
    )


@pytest.fixture()
def acme(vision_client: TestClient) -> dict[str, str]:
    """Client ACME with companies A and B under R1 and C under R2; admin holds full access."""
    admin_id = _bootstrap_admin(vision_client, "admin", "admin-pass")
    token = _login(vision_client, "admin", "admin-pass")
    client_id = _create_client(vision_client, token, "ACME")
    _grant(vision_client, token, admin_id, client_id, [None])
    company_a = _create_company(vision_client, token, client_id, "R1", "A")
    company_b = _create_company(vision_client, token, client_id, "R1", "B")
    company_c = _create_company(vision_client, token, client_id, "R2", "C")
    return {
        "admin_id": admin_id,
        "token": token,
        "client_id": client_id,
        "A": company_a,
        "B": company_b,
        "C": company_c,
    }


def test_full_access_operator_sees_all_types_and_roots(vision_client: TestClient, acme: dict[str, str]) -> None:
    headers = _auth_header(acme["token"])
    client_id = acme["client_id"]

    access_resp = vision_client.get(f"/api/clients/{client_id}/access", headers=headers)
    assert access_resp.status_code == 200
    assert access_resp.json()["full_access"] is True

    types_resp = vision_client.get(f"/api/clients/{client_id}/vision-types", headers=headers)
    assert types_resp.status_code == 200
    assert set(types_resp.json()) == {"CLIENT_WIDE", "ROOT_SCOPED", "GROUP_SCOPED", "CUSTOM"}

    roots_resp = vision_client.get(f"/api/clients/{client_id}/companies/roots", headers=headers)
    assert roots_resp.status_code == 200
    assert [item["root"] for item in roots_resp.json()] == ["R1", "R2"]

    companies_resp = vision_client.get(f"/api/clients/{client_id}/companies", headers=headers)
    assert companies_resp.status_code == 200
    assert [item["name"] for item in companies_resp.json()] == ["A", "B", "C"]
    assert companies_resp.json()[0]["label"] == "(no tax id) A"


def test_membership_preview_per_type(vision_client: TestClient, acme: dict[str, str]) -> None:
    headers = _auth_header(acme["token"])
    url = f"/api/clients/{acme['client_id']}/visions/membership-preview"

    root_resp = vision_client.post(url, json={"vision_type": "ROOT_SCOPED", "root": "R1"}, headers=headers)
    assert root_resp.status_code == 200
    assert set(root_resp.json()["company_ids"]) == {acme["A"], acme["B"]}

    wide_resp = vision_client.post(url, json={"vision_type": "CLIENT_WIDE"}, headers=headers)
    assert set(wide_resp.json()["company_ids"]) == {acme["A"], acme["B"], acme["C"]}

    group_resp = vision_client.post(url, json={"vision_type": "GROUP_SCOPED", "roots": ["R2"]}, headers=headers)
    assert group_resp.json()["company_ids"] == [acme["C"]]

    empty_resp = vision_client.post(url, json={"vision_type": "GROUP_SCOPED", "roots": []}, headers=headers)
    assert empty_resp.status_code == 200
    assert empty_resp.json()["company_ids"] == []

    missing_root_resp = vision_client.post(url, json={"vision_type": "ROOT_SCOPED"}, headers=headers)
    assert missing_root_resp.json()["company_ids"] == []


def test_root_scoped_save_and_duplicate_root(vision_client: TestClient, acme: dict[str, str]) -> None:
    token = acme["token"]
    client_id = acme["client_id"]

    first = _save(vision_client, token, client_id, {"name": "north", "vision_type": "ROOT_SCOPED", "root": "R1"})
    assert first.status_code == 201
    body = first.json()
    assert body["name"] == "NORTH"
    assert body["client_name"] == "ACME"
    assert set(body["company_ids"]) == {acme["A"], acme["B"]}
    assert body["membership_count"] == 2

    check_resp = vision_client.post(
        f"/api/clients/{client_id}/visions/uniqueness-check",
        json={"vision_type": "ROOT_SCOPED", "root": "R1"},
        headers=_auth_header(token),
    )
    assert check_resp.status_code == 200
    assert check_resp.json()["conflict"] is True
    assert check_resp.json()["conflicting_vision_id"] == body["id"]

    duplicate = _save(vision_client, token, client_id, {"name": "north-2", "vision_type": "ROOT_SCOPED", "root": "R1"})
    assert duplicate.status_code == 409

    other_root = _save(vision_client, token, client_id, {"name": "south", "vision_type": "ROOT_SCOPED", "root": "R2"})
    assert other_root.status_code == 201
    assert other_root.json()["company_ids"] == [acme["C"]]


def test_client_wide_is_unique_per_client(vision_client: TestClient, acme: dict[str, str]) -> None:
    token = acme["token"]
    client_id = acme["client_id"]

    first = _save(vision_client, token, client_id, {"name": "everything", "vision_type": "CLIENT_WIDE"})
    assert first.status_code == 201
    assert first.json()["membership_count"] == 3

    second = _save(vision_client, token, client_id, {"name": "everything-2", "vision_type": "CLIENT_WIDE"})
    assert second.status_code == 409

    with Session(db.get_engine()) as session:
        rows = session.exec(select(Vision).where(Vision.client_id == client_id)).all()
    assert len(rows) == 1


def test_group_scoped_overlap_rules(vision_client: TestClient, acme: dict[str, str]) -> None:
    token = acme["token"]
    client_id = acme["client_id"]

    first = _save(vision_client, token, client_id, {"name": "g1", "vision_type": "GROUP_SCOPED", "roots": ["R1"]})
    assert first.status_code == 201

    overlapping = _save(
        vision_client,
        token,
        client_id,
        {"name": "g2", "vision_type": "GROUP_SCOPED", "roots": ["R1", "R2"]},
    )
    assert overlapping.status_code == 409
    assert "R1" in overlapping.json()["detail"]

    disjoint = _save(vision_client, token, client_id, {"name": "g3", "vision_type": "GROUP_SCOPED", "roots": ["R2"]})
    assert disjoint.status_code == 201

    with Session(db.get_engine()) as session:
        roots = session.exec(select(VisionGroupRoot).where(VisionGroupRoot.client_id == client_id)).all()
    assert sorted(item.root for item in roots) == ["R1", "R2"]


def test_incomplete_configuration_is_rejected_on_save(vision_client: TestClient, acme: dict[str, str]) -> None:
    token = acme["token"]
    client_id = acme["client_id"]

    no_root = _save(vision_client, token, client_id, {"name": "x", "vision_type": "ROOT_SCOPED"})
    assert no_root.status_code == 409

    no_roots = _save(vision_client, token, client_id, {"name": "y", "vision_type": "GROUP_SCOPED", "roots": []})
    assert no_roots.status_code == 409

    blank_name = _save(vision_client, token, client_id, {"name": "   ", "vision_type": "CLIENT_WIDE"})
    assert blank_name.status_code == 422


def test_resave_excludes_itself_and_rewrites_membership(vision_client: TestClient, acme: dict[str, str]) -> None:
    token = acme["token"]
    client_id = acme["client_id"]

    created = _save(vision_client, token, client_id, {"name": "north", "vision_type": "ROOT_SCOPED", "root": "R1"})
    vision_id = created.json()["id"]

    same = _save(
        vision_client,
        token,
        client_id,
        {"name": "north", "vision_type": "ROOT_SCOPED", "root": "R1"},
        vision_id=vision_id,
    )
    assert same.status_code == 200
    assert same.json()["company_ids"] == created.json()["company_ids"]

    moved = _save(
        vision_client,
        token,
        client_id,
        {"name": "north", "vision_type": "CUSTOM", "company_ids": [acme["C"]]},
        vision_id=vision_id,
    )
    assert moved.status_code == 200
    assert moved.json()["vision_type"] == "CUSTOM"
    assert moved.json()["root"] is None

    with Session(db.get_engine()) as session:
        rows = session.exec(select(VisionMembership).where(VisionMembership.vision_id == vision_id)).all()
    assert [item.company_id for item in rows] == [acme["C"]]
    assert rows[0].integration_code == "INT-C"


def test_inactive_vision_does_not_block(vision_client: TestClient, acme: dict[str, str]) -> None:
    token = acme["token"]
    client_id = acme["client_id"]

    dormant = _save(
        vision_client,
        token,
        client_id,
        {"name": "old", "vision_type": "CLIENT_WIDE", "is_active": False},
    )
    assert dormant.status_code == 201

    active = _save(vision_client, token, client_id, {"name": "new", "vision_type": "CLIENT_WIDE"})
    assert active.status_code == 201

    reactivate = _save(
        vision_client,
        token,
        client_id,
        {"name": "old", "vision_type": "CLIENT_WIDE", "is_active": True},
        vision_id=dormant.json()["id"],
    )
    assert reactivate.status_code == 409

    listed = vision_client.get(f"/api/clients/{client_id}/visions", headers=_auth_header(token))
    assert [item["name"] for item in listed.json()] == ["NEW", "OLD"]


def test_storage_constraint_rejects_when_precheck_misses(
    vision_client: TestClient,
    acme: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    token = acme["token"]
    client_id = acme["client_id"]

    first = _save(vision_client, token, client_id, {"name": "north", "vision_type": "ROOT_SCOPED", "root": "R1"})
    assert first.status_code == 201

    # Simulate a concurrent writer slipping past the early check.
    monkeypatch.setattr(vision_service, "check_uniqueness", lambda *args, **kwargs: NoConflict())
    racing = _save(vision_client, token, client_id, {"name": "race", "vision_type": "ROOT_SCOPED", "root": "R1"})
    assert racing.status_code == 409

    group = _save(vision_client, token, client_id, {"name": "g1", "vision_type": "GROUP_SCOPED", "roots": ["R2"]})
    assert group.status_code == 201
    racing_group = _save(
        vision_client,
        token,
        client_id,
        {"name": "g2", "vision_type": "GROUP_SCOPED", "roots": ["R2"]},
    )
    assert racing_group.status_code == 409

    with Session(db.get_engine()) as session:
        names = sorted(item.name for item in session.exec(select(Vision)).all())
        memberships = session.exec(select(VisionMembership)).all()
    assert names == ["G1", "NORTH"]
    assert len(memberships) == 3


def test_scoped_operator_view(vision_client: TestClient, acme: dict[str, str]) -> None:
    admin_token = acme["token"]
    client_id = acme["client_id"]

    wide = _save(vision_client, admin_token, client_id, {"name": "all", "vision_type": "CLIENT_WIDE"})
    custom_a = _save(
        vision_client,
        admin_token,
        client_id,
        {"name": "only-a", "vision_type": "CUSTOM", "company_ids": [acme["A"]]},
    )
    assert wide.status_code == 201
    assert custom_a.status_code == 201

    operator_id = _create_operator(vision_client, admin_token, "scoped", "scoped-pass")
    _grant(vision_client, admin_token, operator_id, client_id, [acme["A"]])
    token = _login(vision_client, "scoped", "scoped-pass")
    headers = _auth_header(token)

    access_resp = vision_client.get(f"/api/clients/{client_id}/access", headers=headers)
    assert access_resp.json() == {
        "client_id": client_id,
        "full_access": False,
        "company_ids": [acme["A"]],
        "allowed_vision_types": ["CUSTOM"],
    }

    types_resp = vision_client.get(f"/api/clients/{client_id}/vision-types", headers=headers)
    assert types_resp.json() == ["CUSTOM"]

    listed = vision_client.get(f"/api/clients/{client_id}/visions", headers=headers)
    assert listed.status_code == 200
    assert [item["id"] for item in listed.json()] == [custom_a.json()["id"]]

    hidden = vision_client.get(f"/api/clients/{client_id}/visions/{wide.json()['id']}", headers=headers)
    assert hidden.status_code == 404

    forbidden_type = _save(vision_client, token, client_id, {"name": "mine", "vision_type": "CLIENT_WIDE"})
    assert forbidden_type.status_code == 403

    outside = _save(
        vision_client,
        token,
        client_id,
        {"name": "mine", "vision_type": "CUSTOM", "company_ids": [acme["A"], acme["B"]]},
    )
    assert outside.status_code == 409

    preview_forbidden = vision_client.post(
        f"/api/clients/{client_id}/visions/membership-preview",
        json={"vision_type": "ROOT_SCOPED", "root": "R1"},
        headers=headers,
    )
    assert preview_forbidden.status_code == 403

    check_url = f"/api/clients/{client_id}/visions/uniqueness-check"
    hidden_checks = (
        {"vision_type": "CLIENT_WIDE"},
        {"vision_type": "ROOT_SCOPED", "root": "R1"},
        {"vision_type": "GROUP_SCOPED", "roots": ["R1"]},
    )
    for body in hidden_checks:
        check_forbidden = vision_client.post(check_url, json=body, headers=headers)
        assert check_forbidden.status_code == 403
        assert wide.json()["id"] not in check_forbidden.text

    check_custom = vision_client.post(
        check_url,
        json={"vision_type": "CUSTOM", "company_ids": [acme["A"]]},
        headers=headers,
    )
    assert check_custom.status_code == 200
    assert check_custom.json() == {"conflict": False, "conflicting_vision_id": None, "reason": None}

    companies_resp = vision_client.get(f"/api/clients/{client_id}/companies", headers=headers)
    assert [item["id"] for item in companies_resp.json()] == [acme["A"]]

    delete_hidden = vision_client.delete(f"/api/clients/{client_id}/visions/{wide.json()['id']}", headers=headers)
    assert delete_hidden.status_code == 404


def test_operator_without_grant_is_denied(vision_client: TestClient, acme: dict[str, str]) -> None:
    operator_id = _create_operator(vision_client, acme["token"], "nobody", "nobody-pass")
    assert operator_id
    token = _login(vision_client, "nobody", "nobody-pass")

    listed = vision_client.get(f"/api/clients/{acme['client_id']}/visions", headers=_auth_header(token))
    assert listed.status_code == 403

    types_resp = vision_client.get(f"/api/clients/{acme['client_id']}/vision-types", headers=_auth_header(token))
    assert types_resp.json() == []


def test_cross_client_vision_is_not_found(vision_client: TestClient, acme: dict[str, str]) -> None:
    token = acme["token"]
    other_client = _create_client(vision_client, token, "GLOBEX")
    _grant(vision_client, token, acme["admin_id"], other_client, [None])
    _create_company(vision_client, token, other_client, "R9", "Z")

    created = _save(vision_client, token, acme["client_id"], {"name": "acme-all", "vision_type": "CLIENT_WIDE"})
    vision_id = created.json()["id"]

    foreign = vision_client.get(f"/api/clients/{other_client}/visions/{vision_id}", headers=_auth_header(token))
    assert foreign.status_code == 404

    own_wide = _save(vision_client, token, other_client, {"name": "globex-all", "vision_type": "CLIENT_WIDE"})
    assert own_wide.status_code == 201

    foreign_custom = _save(
        vision_client,
        token,
        other_client,
        {"name": "sneaky", "vision_type": "CUSTOM", "company_ids": [acme["A"]]},
    )
    assert foreign_custom.status_code == 409


def test_list_filters_by_name(vision_client: TestClient, acme: dict[str, str]) -> None:
    token = acme["token"]
    client_id = acme["client_id"]
    _save(vision_client, token, client_id, {"name": "north", "vision_type": "ROOT_SCOPED", "root": "R1"})
    _save(vision_client, token, client_id, {"name": "south", "vision_type": "ROOT_SCOPED", "root": "R2"})

    response = vision_client.get(
        f"/api/clients/{client_id}/visions",
        params={"name": "nor"},
        headers=_auth_header(token),
    )
    assert response.status_code == 200
    assert [item["name"] for item in response.json()] == ["NORTH"]


def test_delete_removes_vision_and_children(vision_client: TestClient, acme: dict[str, str]) -> None:
    token = acme["token"]
    client_id = acme["client_id"]

    created = _save(vision_client, token, client_id, {"name": "g", "vision_type": "GROUP_SCOPED", "roots": ["R1"]})
    vision_id = created.json()["id"]

    response = vision_client.delete(f"/api/clients/{client_id}/visions/{vision_id}", headers=_auth_header(token))
    assert response.status_code == 204

    missing = vision_client.get(f"/api/clients/{client_id}/visions/{vision_id}", headers=_auth_header(token))
    assert missing.status_code == 404

    with Session(db.get_engine()) as session:
        assert session.exec(select(VisionMembership)).all() == []
        assert session.exec(select(VisionGroupRoot)).all() == []

    again = _save(vision_client, token, client_id, {"name": "g", "vision_type": "GROUP_SCOPED", "roots": ["R1"]})
    assert again.status_code == 201


def test_writes_record_events_and_audit(vision_client: TestClient, acme: dict[str, str]) -> None:
    token = acme["token"]
    client_id = acme["client_id"]

    created = _save(vision_client, token, client_id, {"name": "all", "vision_type": "CLIENT_WIDE"})
    rejected = _save(vision_client, token, client_id, {"name": "all-2", "vision_type": "CLIENT_WIDE"})
    assert rejected.status_code == 409
    vision_client.delete(f"/api/clients/{client_id}/visions/{created.json()['id']}", headers=_auth_header(token))

    with Session(db.get_engine()) as session:
        event_types = sorted(
            item.event_type for item in session.exec(select(EventRecord).where(EventRecord.client_id == client_id))
        )
        conflict_logs = session.exec(
            select(AuditLog).where(AuditLog.action == "vision.create").where(AuditLog.status_code == 409)
        ).all()
    assert event_types == ["vision.created", "vision.deleted"]
    assert len(conflict_logs) == 1
    assert conflict_logs[0].client_id == client_id
    assert conflict_logs[0].detail["result"]["outcome"] == "conflict"
    assert conflict_logs[0].detail["result"]["conflicting_vision_id"] == created.json()["id"]


def test_vision_endpoints_require_token(vision_client: TestClient, acme: dict[str, str]) -> None:
    response = vision_client.get(f"/api/clients/{acme['client_id']}/visions")
    assert response.status_code == 401


def test_uniqueness_check_excludes_the_edited_vision(vision_client: TestClient, acme: dict[str, str]) -> None:
    token = acme["token"]
    client_id = acme["client_id"]
    check_url = f"/api/clients/{client_id}/visions/uniqueness-check"

    group = _save(vision_client, token, client_id, {"name": "g1", "vision_type": "GROUP_SCOPED", "roots": ["R1", "R2"]})
    vision_id = group.json()["id"]

    without_exclusion = vision_client.post(
        check_url,
        json={"vision_type": "GROUP_SCOPED", "roots": ["R1", "R2"]},
        headers=_auth_header(token),
    )
    assert without_exclusion.json()["conflict"] is True
    assert without_exclusion.json()["conflicting_vision_id"] == vision_id

    unchanged = vision_client.post(
        check_url,
        json={"vision_type": "GROUP_SCOPED", "roots": ["R1", "R2"], "exclude_vision_id": vision_id},
        headers=_auth_header(token),
    )
    assert unchanged.status_code == 200
    assert unchanged.json() == {"conflict": False, "conflicting_vision_id": None, "reason": None}


def test_company_create_requires_grant_on_client(vision_client: TestClient, acme: dict[str, str]) -> None:
    admin_token = acme["token"]
    other_client = _create_client(vision_client, admin_token, "GLOBEX")
    response = vision_client.post(
        "/api/identity/operators",
        json={"username": "clerk", "password": "clerk-pass", "permissions": ["company.read", "company.write"]},
        headers=_auth_header(admin_token),
    )
    assert response.status_code == 201
    _grant(vision_client, admin_token, response.json()["id"], other_client, [None])
    token = _login(vision_client, "clerk", "clerk-pass")

    denied = vision_client.post(
        f"/api/clients/{acme['client_id']}/companies",
        json={"root": "R1", "name": "Intruder"},
        headers=_auth_header(token),
    )
    assert denied.status_code == 403

    missing = vision_client.post(
        "/api/clients/no-such-client/companies",
        json={"root": "R1", "name": "Ghost"},
        headers=_auth_header(token),
    )
    assert missing.status_code == 404

    allowed = _create_company(vision_client, token, other_client, "R9", "Z")
    assert allowed

    with Session(db.get_engine()) as session:
        names = sorted(item.name for item in session.exec(select(Company)).all())
    assert names == ["A", "B", "C", "Z"]


def test_store_outage_maps_to_service_unavailable(
    vision_client: TestClient,
    acme: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _unreachable(*args: object, **kwargs: object) -> None:
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(AccessService, "load_access", _unreachable)
    headers = _auth_header(acme["token"])
    client_id = acme["client_id"]

    listed = vision_client.get(f"/api/clients/{client_id}/visions", headers=headers)
    assert listed.status_code == 503
    assert listed.json()["detail"] == "store unavailable while listing visions"

    saved = _save(vision_client, acme["token"], client_id, {"name": "all", "vision_type": "CLIENT_WIDE"})
    assert saved.status_code == 503

    access_resp = vision_client.get(f"/api/clients/{client_id}/access", headers=headers)
    assert access_resp.status_code == 503
