import pytest

import crud
import models
import schemas
from auth import Scope
from errors import AlreadyExists
from tokens import Principal


def test_stats(test_client, admin_user, employer, register_user):
    test_client.post(
        "/api/employer/jobs", json={"title": "Dev", "description": "Code"}, headers=employer["headers"]
    )
    register_user("creative")

    resp = test_client.get("/api/admin/stats", headers=admin_user["headers"])
    assert resp.status_code == 200
    assert resp.json() == {
        "total_users": 3,
        "total_jobs": 1,
        "active_jobs": 1,
        "total_applications": 0,
        "total_projects": 0,
        "total_companies": 1,
    }


def test_list_users_paginated_and_filtered(test_client, admin_user, register_user):
    for _ in range(3):
        register_user("creative")
    register_user("employer")

    page = test_client.get("/api/admin/users", params={"limit": 2}, headers=admin_user["headers"]).json()
    assert page["totalCount"] == 5
    assert page["totalPages"] == 3
    assert len(page["items"]) == 2

    creatives = test_client.get(
        "/api/admin/users", params={"role": "creative"}, headers=admin_user["headers"]
    ).json()
    assert creatives["totalCount"] == 3
    assert {u["role"] for u in creatives["items"]} == {"creative"}


def test_admin_cannot_change_own_role(test_client, admin_user):
    resp = test_client.put(
        f"/api/admin/users/{admin_user['id']}/role",
        json={"role": "creative"},
        headers=admin_user["headers"],
    )
    assert resp.status_code == 422


def test_role_change_on_missing_user(test_client, admin_user):
    resp = test_client.put("/api/admin/users/999999/role", json={"role": "creative"}, headers=admin_user["headers"])
    assert resp.status_code == 404


def test_delete_user_cascades_and_blocks_login(test_client, admin_user, employer, register_user, category_id):
    job = test_client.post(
        "/api/employer/jobs", json={"title": "Dev", "description": "Code"}, headers=employer["headers"]
    ).json()
    creative = register_user("creative", password="secret123")
    project = test_client.post(
        "/api/projects",
        json={
            "title": "Zine",
            "description": "Risograph",
            "category_id": category_id,
            "image_urls": ["https://cdn.example.com/z.jpg"],
        },
        headers=creative["headers"],
    ).json()

    for user_id in (employer["id"], creative["id"]):
        resp = test_client.delete(f"/api/admin/users/{user_id}", headers=admin_user["headers"])
        assert resp.status_code == 200

    assert test_client.get(f"/api/jobs/{job['id']}").status_code == 404
    assert test_client.get(f"/api/projects/{project['id']}").status_code == 404
    login = test_client.post("/api/auth/login", json={"email": creative["email"], "password": "secret123"})
    assert login.status_code == 401

    # already gone
    resp = test_client.delete(f"/api/admin/users/{creative['id']}", headers=admin_user["headers"])
    assert resp.status_code == 404


def test_admin_cannot_delete_self(test_client, admin_user):
    resp = test_client.delete(f"/api/admin/users/{admin_user['id']}", headers=admin_user["headers"])
    assert resp.status_code == 422


def test_admin_job_listing_includes_every_status(test_client, admin_user, employer):
    job = test_client.post(
        "/api/employer/jobs", json={"title": "Dev", "description": "Code"}, headers=employer["headers"]
    ).json()
    resp = test_client.put(
        f"/api/admin/jobs/{job['id']}/status", json={"status": "pending"}, headers=admin_user["headers"]
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "pending"

    assert test_client.get("/api/jobs").json()["totalCount"] == 0
    all_jobs = test_client.get("/api/admin/jobs", headers=admin_user["headers"]).json()
    assert [j["status"] for j in all_jobs["items"]] == ["pending"]


def test_admin_application_listing(test_client, admin_user, employer, register_user):
    job = test_client.post(
        "/api/employer/jobs", json={"title": "Dev", "description": "Code"}, headers=employer["headers"]
    ).json()
    seeker = register_user("job_seeker")
    test_client.put("/api/profile", json={"resume_url": "https://cdn.example.com/cv.pdf"}, headers=seeker["headers"])
    test_client.post(f"/api/jobs/{job['id']}/apply", json={}, headers=seeker["headers"])

    page = test_client.get("/api/admin/applications", headers=admin_user["headers"]).json()
    assert page["totalCount"] == 1
    assert page["items"][0]["user"]["id"] == seeker["id"]


def test_soft_delete_user_hides_the_account(db_session, make_user):
    target = make_user("target@example.com")
    admin = Principal(id=target.id + 1000, email="root@example.com", role=models.Role.ADMIN)

    crud.soft_delete_user(db_session, Scope.admin(admin), target.id)
    assert crud.get_user_by_id(db_session, target.id) is None
    assert crud.get_user_by_email(db_session, target.email) is None

    # the email stays reserved
    with pytest.raises(AlreadyExists):
        crud.create_user(
            db_session,
            schemas.RegisterRequest(name="again", email=target.email, password="secret123"),
        )


def test_ensure_admin_is_idempotent(db_session):
    first = crud.ensure_admin(db_session, "Root@Example.com", "pw-123456")
    second = crud.ensure_admin(db_session, "root@example.com", "other-pw")
    assert first.id == second.id
    assert second.role is models.Role.ADMIN


def test_admin_recount_endpoint(test_client, admin_user, db_session, make_user, make_project):
    project = make_project(make_user("owner@example.com"))
    db_session.query(models.Project).filter(models.Project.id == project.id).update({"likes_count": 9})
    db_session.commit()

    resp = test_client.post(f"/api/admin/projects/{project.id}/recount", headers=admin_user["headers"])
    assert resp.status_code == 200
    assert resp.json() == {"result": "recounted", "count": 0}

    resp = test_client.post("/api/admin/projects/424242/recount", headers=admin_user["headers"])
    assert resp.status_code == 404


def test_recount_is_admin_only(test_client, register_user):
    creative = register_user("creative")
    resp = test_client.post("/api/admin/projects/1/recount", headers=creative["headers"])
    assert resp.status_code == 403


def test_deleted_user_token_cannot_create(test_client, admin_user, register_user, category_id):
    creative = register_user("creative")
    other = register_user("creative")
    project = test_client.post(
        "/api/projects",
        json={
            "title": "Other",
            "description": "Not theirs",
            "category_id": category_id,
            "image_urls": ["https://cdn.example.com/o.jpg"],
        },
        headers=other["headers"],
    ).json()
    assert test_client.delete(f"/api/admin/users/{creative['id']}", headers=admin_user["headers"]).status_code == 200

    resp = test_client.post(
        "/api/projects",
        json={
            "title": "Ghost",
            "description": "After deletion",
            "category_id": category_id,
            "image_urls": ["https://cdn.example.com/g.jpg"],
        },
        headers=creative["headers"],
    )
    assert resp.status_code == 404
    assert test_client.get("/api/projects", params={"search": "Ghost"}).json()["totalCount"] == 0

    resp = test_client.post(
        f"/api/projects/{project['id']}/comments", json={"content": "Boo"}, headers=creative["headers"]
    )
    assert resp.status_code == 404
    assert test_client.post(f"/api/projects/{project['id']}/like", headers=creative["headers"]).status_code == 404
    assert test_client.post(f"/api/users/{other['id']}/follow", headers=creative["headers"]).status_code == 404

    body = test_client.get(f"/api/projects/{project['id']}").json()
    assert body["likes_count"] == 0
    assert test_client.get(f"/api/projects/{project['id']}/comments").json() == []


def test_deleting_a_user_keeps_counters_in_step_with_listings(
    test_client, admin_user, register_user, category_id
):
    doomed = register_user("creative")
    star = register_user("creative")
    fan = register_user("creative")
    project = test_client.post(
        "/api/projects",
        json={
            "title": "Star work",
            "description": "Popular",
            "category_id": category_id,
            "image_urls": ["https://cdn.example.com/s.jpg"],
        },
        headers=star["headers"],
    ).json()

    test_client.post(f"/api/users/{star['id']}/follow", headers=doomed["headers"])
    test_client.post(f"/api/users/{doomed['id']}/follow", headers=fan["headers"])
    test_client.post(f"/api/projects/{project['id']}/like", headers=doomed["headers"])

    assert test_client.delete(f"/api/admin/users/{doomed['id']}", headers=admin_user["headers"]).status_code == 200

    star_profile = test_client.get("/api/profile", headers=star["headers"]).json()
    followers = test_client.get(f"/api/users/{star['id']}/followers").json()
    assert star_profile["followers_count"] == len(followers) == 0

    fan_profile = test_client.get("/api/profile", headers=fan["headers"]).json()
    following = test_client.get(f"/api/users/{fan['id']}/following").json()
    assert fan_profile["following_count"] == len(following) == 0

    liked = test_client.get(f"/api/projects/{project['id']}").json()
    likes = test_client.get(f"/api/projects/{project['id']}/likes").json()
    assert liked["likes_count"] == len(likes) == 0
