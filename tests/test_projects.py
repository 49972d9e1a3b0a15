import pytest


def _project(client, name="Shop"):
    rv = client.post("/api/projects", json={"name": name, "description": "Main store"})
    assert rv.status_code == 201
    return rv.get_json()


def _application(client, project_id, name="Storefront"):
    rv = client.post(f"/api/projects/{project_id}/applications", json={"name": name})
    assert rv.status_code == 201
    return rv.get_json()


def _environment(client, application_id, **overrides):
    body = {"name": "prod", "displayName": "Production", "url": "https://shop.example"}
    body.update(overrides)
    rv = client.post(f"/api/applications/{application_id}/environments", json=body)
    assert rv.status_code == 201, rv.get_json()
    return rv.get_json()


def test_project_crud(client):
    project = _project(client)
    assert project["name"] == "Shop"

    rv = client.get("/api/projects")
    assert [p["id"] for p in rv.get_json()] == [project["id"]]

    rv = client.patch(f"/api/projects/{project['id']}", json={"name": "Shop v2", "description": None})
    assert rv.status_code == 200
    assert rv.get_json()["name"] == "Shop v2"
    assert rv.get_json()["description"] is None

    assert client.delete(f"/api/projects/{project['id']}").status_code == 204
    assert client.get(f"/api/projects/{project['id']}").status_code == 404


@pytest.mark.parametrize("body", [{}, {"name": ""}, {"name": 3}])
def test_project_requires_name(client, body):
    rv = client.post("/api/projects", json=body)
    assert rv.status_code == 400
    assert rv.get_json()["ok"] is False


def test_patch_cannot_null_required_field(client):
    project = _project(client)
    rv = client.patch(f"/api/projects/{project['id']}", json={"name": None})
    assert rv.status_code == 400


def test_application_and_environment_lifecycle(client):
    project = _project(client)
    app_ = _application(client, project["id"])
    assert app_["projectId"] == project["id"]

    env = _environment(client, app_["id"])
    assert env["applicationId"] == app_["id"]
    assert env["isActive"] is True

    rv = client.patch(f"/api/environments/{env['id']}", json={"isActive": False, "url": "https://new.example"})
    assert rv.status_code == 200
    assert rv.get_json()["isActive"] is False
    assert rv.get_json()["url"] == "https://new.example"

    rv = client.get(f"/api/applications/{app_['id']}/environments")
    assert [e["id"] for e in rv.get_json()] == [env["id"]]

    rv = client.get(f"/api/projects/{project['id']}")
    nested = rv.get_json()
    assert nested["applications"][0]["environments"][0]["id"] == env["id"]


def test_environment_validation(client):
    app_ = _application(client, _project(client)["id"])
    base = f"/api/applications/{app_['id']}/environments"

    assert client.post(base, json={"name": "prod", "displayName": "Prod", "url": "shop.example"}).status_code == 400
    assert client.post(base, json={"name": "prod", "url": "https://shop.example"}).status_code == 400
    assert client.post(base, json={
        "name": "prod", "displayName": "Prod", "url": "https://shop.example", "isActive": "yes",
    }).status_code == 400


def test_children_of_missing_parent_are_404(client):
    assert client.get("/api/projects/999/applications").status_code == 404
    assert client.post("/api/projects/999/applications", json={"name": "x"}).status_code == 404
    assert client.get("/api/applications/999/environments").status_code == 404
    assert client.get("/api/environments/999").status_code == 404


def test_deleting_project_cascades(client):
    project = _project(client)
    app_ = _application(client, project["id"])
    env = _environment(client, app_["id"])

    assert client.delete(f"/api/projects/{project['id']}").status_code == 204
    assert client.get(f"/api/applications/{app_['id']}").status_code == 404
    assert client.get(f"/api/environments/{env['id']}").status_code == 404


def test_project_structure(client):
    first = _project(client, "A")
    second = _project(client, "B")
    app_ = _application(client, first["id"])
    _environment(client, app_["id"])

    tree = client.get("/api/project-structure").get_json()
    assert [p["id"] for p in tree] == [first["id"], second["id"]]
    assert tree[0]["applications"][0]["environments"][0]["url"] == "https://shop.example"
    assert tree[1]["applications"] == []


def test_submit_analysis_for_environment(client, dispatcher):
    project = _project(client)
    app_ = _application(client, project["id"])
    env = _environment(client, app_["id"], url="https://staging.shop.example")

    rv = client.post("/api/analyze", json={"environmentId": env["id"], "device": "mobile"})
    assert rv.status_code == 200

    job = client.get(f"/api/analysis/{rv.get_json()['jobId']}").get_json()
    assert job["input"]["url"] == "https://staging.shop.example"
    assert job["environmentId"] == env["id"]
    assert job["applicationId"] == app_["id"]
    assert job["projectId"] == project["id"]


@pytest.mark.parametrize("ids", [
    {"environmentId": 9999, "projectId": 8888},
    {"environmentId": 9999},
    {"applicationId": 9999},
    {"projectId": 9999},
])
def test_submit_with_unknown_registry_ids_is_400(client, dispatcher, ids):
    rv = client.post("/api/analyze", json={"url": "https://example.com", **ids})
    assert rv.status_code == 400
    assert client.get("/api/analyses").get_json() == []
    assert dispatcher.calls == []


def test_submit_with_mismatched_registry_ids_is_400(client, dispatcher):
    project = _project(client)
    env = _environment(client, _application(client, project["id"])["id"])
    other = _project(client, "Other")
    other_app = _application(client, other["id"], "Admin")

    for ids in (
        {"environmentId": env["id"], "projectId": other["id"]},
        {"environmentId": env["id"], "applicationId": other_app["id"]},
        {"applicationId": other_app["id"], "projectId": project["id"]},
    ):
        rv = client.post("/api/analyze", json={"url": "https://example.com", **ids})
        assert rv.status_code == 400, ids
        assert rv.get_json()["ok"] is False

    assert client.get("/api/analyses").get_json() == []
    assert dispatcher.calls == []
