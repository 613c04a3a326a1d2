from pathlib import Path
from typing import Any, Iterator

import pytest
from starlette.testclient import TestClient

from app.app import create_app
from app.config import Config

from doubles import JPEG, PNG, TEXT


RECIPE = {
    "title": "Warming winter stew",
    "category": "dinner",
    "prepTime": {"readable": "2 hours", "numeric": 120, "unit": "minutes"},
    "ingredients": [{"name": "beef", "amount": {"readable": "500 g", "unit": "g"}}],
    "instructions": ["Brown the beef.", "Simmer for two hours."],
}


@pytest.fixture
def cfg(tmp_path: Path) -> Config:
    return Config(
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'recipes.db'}",
        media_dir=tmp_path / "media",
        staging_dir=tmp_path / "staging",
        intents_dir=tmp_path / "intents",
        secret_key="test",
    )


@pytest.fixture
def client(cfg: Config) -> Iterator[TestClient]:
    with TestClient(create_app(cfg)) as client:
        yield client


def sign_up(client: TestClient, username: str, password: str = "correct horse") -> str:
    resp = client.post(
        "/api/users/",
        json={
            "name": username.title(),
            "username": username,
            "email": f"{username}@example.com",
            "password": password,
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["message"]["id"]


def sign_in(client: TestClient, username: str, password: str = "correct horse") -> None:
    resp = client.post("/api/users/sign-in", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text


def new_recipe(client: TestClient, **fields: Any) -> str:
    resp = client.post("/api/recipes/", json={**RECIPE, **fields})
    assert resp.status_code == 201, resp.text
    return resp.json()["message"]["id"]


def upload(*files: tuple[str, bytes, str]) -> list[tuple[str, tuple[str, bytes, str]]]:
    return [("images", f) for f in files]


def test_recipe_needs_sign_in(client: TestClient) -> None:
    resp = client.post("/api/recipes/", json=RECIPE)
    assert resp.status_code == 401
    assert resp.json()["kind"] == "authentication_required"


def test_sign_in_with_wrong_password(client: TestClient) -> None:
    sign_up(client, "alice")
    resp = client.post("/api/users/sign-in", json={"username": "alice", "password": "nope"})
    assert resp.status_code == 401
    assert resp.json()["kind"] == "invalid_credentials"


def test_recipe_crud(client: TestClient) -> None:
    sign_up(client, "alice")
    sign_in(client, "alice")
    id = new_recipe(client)

    resp = client.get(f"/api/recipes/{id}")
    assert resp.json()["message"]["uploader"] == "alice"
    assert resp.json()["message"]["media"] == []

    resp = client.put(f"/api/recipes/{id}", json={"about": "Good in January."})
    assert resp.status_code == 200
    assert resp.json()["message"]["about"] == "Good in January."

    assert client.post("/api/recipes/", json={**RECIPE, "category": "brunch"}).status_code == 422
    assert client.post("/api/recipes/", json=RECIPE).status_code == 409

    assert client.delete(f"/api/recipes/{id}").status_code == 200
    assert client.get(f"/api/recipes/{id}").status_code == 404
    assert client.get("/api/recipes/").json()["message"] == []


def test_recipe_ownership(client: TestClient) -> None:
    sign_up(client, "alice")
    sign_up(client, "bob")
    sign_in(client, "alice")
    id = new_recipe(client)

    sign_in(client, "bob")
    resp = client.put(f"/api/recipes/{id}", json={"about": "Mine now."})
    assert resp.status_code == 403
    assert resp.json()["kind"] == "ownership_mismatch"
    assert client.post(f"/api/recipes/{id}/media", files=upload(("a.png", PNG, "image/png"))).status_code == 403
    assert client.delete(f"/api/recipes/{id}").status_code == 403
    assert client.delete(f"/api/recipes/{'0' * 32}").status_code == 404


def test_recipe_media_lifecycle(client: TestClient, cfg: Config) -> None:
    sign_up(client, "alice")
    sign_in(client, "alice")
    id = new_recipe(client)
    directory = cfg.media_dir / id

    resp = client.post(
        f"/api/recipes/{id}/media",
        files=upload(("a.png", PNG, "image/png"), ("b.png", TEXT, "image/png")),
    )
    assert resp.status_code == 201, resp.text
    [first] = resp.json()["message"]
    assert first not in ("a.png", "b.png")
    assert {p.name for p in directory.iterdir()} == {first}
    assert client.get(f"/api/recipes/{id}").json()["message"]["media"] == [first]

    resp = client.get(f"/api/recipes/{id}/media/{first}")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    assert resp.content == PNG

    resp = client.post(f"/api/recipes/{id}/media", files=upload(("c.jpg", JPEG, "image/jpeg")))
    assert resp.status_code == 409

    resp = client.put(f"/api/recipes/{id}/media", files=upload(("c.jpg", JPEG, "image/jpeg")))
    assert resp.status_code == 200
    [second] = resp.json()["message"]
    assert {p.name for p in directory.iterdir()} == {second}
    assert client.get(f"/api/recipes/{id}/media/{first}").status_code == 404

    assert client.delete(f"/api/recipes/{id}/media").status_code == 200
    assert list(directory.iterdir()) == []
    assert client.get(f"/api/recipes/{id}").json()["message"]["media"] == []

    resp = client.delete(f"/api/recipes/{id}/media")
    assert resp.status_code == 404
    assert resp.json()["kind"] == "state_missing"
    resp = client.put(f"/api/recipes/{id}/media", files=upload(("c.jpg", JPEG, "image/jpeg")))
    assert resp.status_code == 404


def test_media_gate(client: TestClient, cfg: Config) -> None:
    sign_up(client, "alice")
    sign_in(client, "alice")
    id = new_recipe(client)

    resp = client.post(f"/api/recipes/{id}/media", files=upload(("a.txt", TEXT, "text/plain")))
    assert resp.status_code == 415
    assert resp.json()["kind"] == "unsupported_type"

    resp = client.post(f"/api/recipes/{id}/media", json={"images": []})
    assert resp.status_code == 415

    resp = client.post(f"/api/recipes/{id}/media", files=upload(("b.png", TEXT, "image/png")))
    assert resp.status_code == 415

    assert not (cfg.media_dir / id).exists()
    assert client.get(f"/api/recipes/{id}").json()["message"]["media"] == []


def test_user_media_keeps_one_file(client: TestClient) -> None:
    id = sign_up(client, "alice")
    sign_in(client, "alice")

    resp = client.post(
        f"/api/users/{id}/media",
        files=upload(("me.png", PNG, "image/png"), ("me.jpg", JPEG, "image/jpeg")),
    )
    assert resp.status_code == 201
    assert len(resp.json()["message"]) == 1
    assert client.get(f"/api/users/{id}").json()["message"]["media"] == resp.json()["message"]


def test_delete_user_ends_session(client: TestClient, cfg: Config) -> None:
    id = sign_up(client, "alice")
    sign_in(client, "alice")
    client.post(f"/api/users/{id}/media", files=upload(("me.png", PNG, "image/png")))

    assert client.delete(f"/api/users/{id}").status_code == 200
    assert not (cfg.media_dir / id).exists()
    assert client.get(f"/api/users/{id}").status_code == 404
    assert client.post("/api/recipes/", json=RECIPE).status_code == 401


def test_sign_out(client: TestClient) -> None:
    id = sign_up(client, "alice")
    sign_in(client, "alice")
    assert client.post("/api/users/sign-out").status_code == 200
    assert client.put(f"/api/users/{id}", json={"name": "Al"}).status_code == 401


def test_user_rename_follows_session(client: TestClient) -> None:
    id = sign_up(client, "alice")
    sign_in(client, "alice")

    resp = client.put(f"/api/users/{id}", json={"username": "alicia"})
    assert resp.status_code == 200
    assert "password" not in resp.json()["message"]

    # Still the owner under the new name.
    assert client.put(f"/api/users/{id}", json={"name": "Alicia"}).status_code == 200


def test_old_username_cannot_take_over_recipes(client: TestClient) -> None:
    id = sign_up(client, "alice")
    sign_in(client, "alice")
    recipe = new_recipe(client)
    assert client.put(f"/api/users/{id}", json={"username": "alicia"}).status_code == 200
    client.post("/api/users/sign-out")

    resp = client.post(
        "/api/users/",
        json={"name": "A", "username": "alice", "email": "a@example.com", "password": "correct horse"},
    )
    assert resp.status_code == 409

    sign_up(client, "mallory")
    sign_in(client, "mallory")
    assert client.delete(f"/api/recipes/{recipe}").status_code == 403

    sign_in(client, "alicia")
    assert client.get(f"/api/recipes/{recipe}").json()["message"]["uploader"] == "alicia"
    assert client.put(f"/api/recipes/{recipe}", json={"about": "Still mine."}).status_code == 200


def test_deleted_username_stays_reserved(client: TestClient) -> None:
    id = sign_up(client, "alice")
    sign_in(client, "alice")
    recipe = new_recipe(client)
    assert client.delete(f"/api/users/{id}").status_code == 200

    resp = client.post(
        "/api/users/",
        json={"name": "A", "username": "alice", "email": "a@example.com", "password": "correct horse"},
    )
    assert resp.status_code == 409
    assert resp.json()["kind"] == "duplicate"
    assert client.get(f"/api/recipes/{recipe}").json()["message"]["uploader"] == "alice"


def test_oversized_upload_is_refused(cfg: Config) -> None:
    cfg.max_upload_bytes = len(PNG) - 1
    with TestClient(create_app(cfg)) as client:
        sign_up(client, "alice")
        sign_in(client, "alice")
        id = new_recipe(client)

        resp = client.post(f"/api/recipes/{id}/media", files=upload(("a.png", PNG, "image/png")))
        assert resp.status_code == 413
        assert resp.json()["kind"] == "payload_too_large"
        assert client.get(f"/api/recipes/{id}").json()["message"]["media"] == []
