"""HTTP tests for the student CRUD routes (legacy route style)."""

from unittest.mock import MagicMock

from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import WriteError

from students_api.database import get_students_collection
from students_api.main import create_app
from tests.conftest import ANA, make_settings

BASE = "/api/students"
MISSING_ID = "64b7f0c2a1b2c3d4e5f60718"
MALFORMED_IDS = ["123", "not-an-id", "64b7f0c2a1b2c3d4e5f6071", "64b7f0c2a1b2c3d4e5f6071z", "64b7f0c2a1b2c3d4e5f607180"]


def _create(client: TestClient, **overrides) -> dict:
    response = client.post(f"{BASE}/new", json={**ANA, **overrides})
    assert response.status_code == 201
    return response.json()


# --- create ---


def test_create_student(client: TestClient, students_collection) -> None:
    response = client.post(f"{BASE}/new", json=ANA)
    assert response.status_code == 201
    data = response.json()
    assert ObjectId.is_valid(data["id"])
    for field, value in ANA.items():
        assert data[field] == value
    assert students_collection.count_documents({}) == 1


def test_create_ignores_unknown_fields(client: TestClient, students_collection) -> None:
    data = _create(client, role="admin")
    assert "role" not in data
    assert "role" not in students_collection.find_one({"_id": ObjectId(data["id"])})


def test_create_missing_field_returns_422(client: TestClient, students_collection) -> None:
    for field in ANA:
        body = {k: v for k, v in ANA.items() if k != field}
        response = client.post(f"{BASE}/new", json=body)
        assert response.status_code == 422
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "UnprocessableInput"
        assert data["missing_fields"] == [field]
    assert students_collection.count_documents({}) == 0


def test_create_blank_field_returns_422(client: TestClient, students_collection) -> None:
    response = client.post(f"{BASE}/new", json={**ANA, "email": "   ", "age": 0})
    assert response.status_code == 422
    assert response.json()["missing_fields"] == ["age", "email"]
    assert students_collection.count_documents({}) == 0


def test_create_with_wrong_types_returns_422(client: TestClient, students_collection) -> None:
    response = client.post(f"{BASE}/new", json={**ANA, "age": "twenty"})
    assert response.status_code == 422
    assert response.json()["error"] == "UnprocessableInput"
    assert students_collection.count_documents({}) == 0


# --- list / get ---


def test_list_empty_returns_empty_array(client: TestClient) -> None:
    response = client.get(BASE)
    assert response.status_code == 200
    assert response.json() == []


def test_list_students(client: TestClient) -> None:
    first = _create(client)
    second = _create(client, name="Luis")
    response = client.get(BASE)
    assert response.status_code == 200
    assert {s["id"] for s in response.json()} == {first["id"], second["id"]}


def test_get_student(client: TestClient) -> None:
    created = _create(client)
    response = client.get(f"{BASE}/{created['id']}")
    assert response.status_code == 200
    assert response.json() == created


def test_get_unknown_student_returns_404(client: TestClient) -> None:
    response = client.get(f"{BASE}/{MISSING_ID}")
    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_malformed_ids_rejected_without_querying_storage(settings, connected_manager) -> None:
    collection = MagicMock()
    app = create_app(settings, connected_manager)
    app.dependency_overrides[get_students_collection] = lambda: collection
    client = TestClient(app)

    for bad_id in MALFORMED_IDS:
        for method, path, body in (
            ("GET", f"{BASE}/{bad_id}", None),
            ("PUT", f"{BASE}/update/{bad_id}", {"name": "X"}),
            ("PATCH", f"{BASE}/upload/{bad_id}", {"name": "X"}),
            ("DELETE", f"{BASE}/drop/user/{bad_id}", None),
        ):
            response = client.request(method, path, json=body)
            assert response.status_code == 400, (method, path)
            assert response.json()["error"] == "InvalidInput"

    collection.find_one.assert_not_called()
    collection.find_one_and_update.assert_not_called()
    collection.delete_one.assert_not_called()


def test_unknown_ids_return_404_on_every_operation(client: TestClient) -> None:
    assert client.put(f"{BASE}/update/{MISSING_ID}", json={"name": "X"}).status_code == 404
    assert client.patch(f"{BASE}/upload/{MISSING_ID}", json={"name": "X"}).status_code == 404
    assert client.delete(f"{BASE}/drop/user/{MISSING_ID}").status_code == 404


# --- update ---


def test_full_update_changes_only_supplied_fields(client: TestClient) -> None:
    created = _create(client)
    response = client.put(f"{BASE}/update/{created['id']}",
                          json={"name": "Ana Maria", "email": "", "age": None})
    assert response.status_code == 200
    data = response.json()
    assert data == {**created, "name": "Ana Maria"}
    assert client.get(f"{BASE}/{created['id']}").json() == data


def test_full_update_without_fields_keeps_document(client: TestClient) -> None:
    created = _create(client)
    response = client.put(f"{BASE}/update/{created['id']}", json={})
    assert response.status_code == 200
    assert response.json() == created


def test_partial_update_is_idempotent(client: TestClient) -> None:
    created = _create(client)
    changes = {"phone": "777", "address": "Av 9"}
    first = client.patch(f"{BASE}/upload/{created['id']}", json=changes)
    second = client.patch(f"{BASE}/upload/{created['id']}", json=changes)
    assert first.status_code == second.status_code == 200
    assert first.json() == second.json() == {**created, **changes}


def test_partial_update_without_fields_returns_400(client: TestClient) -> None:
    created = _create(client)
    for body in ({}, {"name": "", "age": 0}, None):
        response = client.patch(f"{BASE}/upload/{created['id']}", json=body)
        assert response.status_code == 400
        assert response.json()["error"] == "BadRequest"
    assert client.get(f"{BASE}/{created['id']}").json() == created


def test_update_storage_failure_returns_400(settings, connected_manager) -> None:
    student_id = ObjectId()
    collection = MagicMock()
    collection.find_one.return_value = {"_id": student_id, **ANA}
    collection.find_one_and_update.side_effect = WriteError("Document failed validation", code=121)
    app = create_app(settings, connected_manager)
    app.dependency_overrides[get_students_collection] = lambda: collection
    client = TestClient(app)

    response = client.put(f"{BASE}/update/{student_id}", json={"age": 30})
    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "BadRequest"
    assert "Document failed validation" in data["message"]


# --- delete ---


def test_create_get_delete_flow(client: TestClient, students_collection) -> None:
    created = _create(client)
    assert client.get(f"{BASE}/{created['id']}").json() == created

    response = client.delete(f"{BASE}/drop/user/{created['id']}")
    assert response.status_code == 200
    assert response.json() == {"message": "Student deleted", "id": created["id"]}
    assert students_collection.count_documents({}) == 0

    assert client.get(f"{BASE}/{created['id']}").status_code == 404


# --- rest route style ---


def test_rest_route_style(connected_manager) -> None:
    settings = make_settings(route_style="rest")
    client = TestClient(create_app(settings, connected_manager))

    response = client.post(BASE, json=ANA)
    assert response.status_code == 201
    student_id = response.json()["id"]

    assert client.put(f"{BASE}/{student_id}", json={"age": 22}).json()["age"] == 22
    assert client.patch(f"{BASE}/{student_id}", json={"name": "Ana B"}).json()["name"] == "Ana B"
    assert client.delete(f"{BASE}/{student_id}").json()["message"] == "Student deleted"
    assert client.get(f"{BASE}/{student_id}").status_code == 404
    # legacy paths are not mounted
    assert client.post(f"{BASE}/new", json=ANA).status_code == 404
