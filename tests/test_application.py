from pathlib import Path

from fastapi.testclient import TestClient

from tally.application import create_application
from tally.config import Settings

SECRET = "tests-secret-key-with-enough-entropy-0123456789"


def _settings(tmp_path: Path, **overrides) -> Settings:
    return Settings(database_path=tmp_path / "tally.sqlite3", jwt_secret=SECRET, **overrides)


def test_api_is_served_under_prefix(tmp_path):
    app = create_application(settings=_settings(tmp_path))

    with TestClient(app) as client:
        login = client.post("/api/login", json={"username": "admin", "password": "password"})
        assert login.status_code == 200
        token = login.json()["token"]

        unauthenticated = client.get("/api/resources")
        assert unauthenticated.status_code == 401

        listing = client.get("/api/resources", headers={"Authorization": f"Bearer {token}"})
        assert listing.status_code == 200
        assert listing.json() == []

        missing = client.get("/api/does-not-exist")
        assert missing.status_code == 404
        assert missing.json() == {"error": "Not found"}


def test_frontend_falls_back_to_index(tmp_path):
    static_dir = tmp_path / "dist"
    (static_dir / "assets").mkdir(parents=True)
    (static_dir / "index.html").write_text("<html>tally</html>", encoding="utf-8")
    (static_dir / "assets" / "app.js").write_text("console.log('tally')", encoding="utf-8")

    app = create_application(settings=_settings(tmp_path, static_dir=static_dir))

    with TestClient(app) as client:
        asset = client.get("/assets/app.js")
        assert asset.status_code == 200
        assert "console.log" in asset.text

        route = client.get("/settings/account")
        assert route.status_code == 200
        assert "tally" in route.text

        api_missing = client.get("/api/nothing-here")
        assert api_missing.status_code == 404
        assert api_missing.json() == {"error": "Not found"}


def test_cors_preflight_allows_configured_origin(tmp_path):
    app = create_application(settings=_settings(tmp_path, cors_origins=("http://localhost:5173",)))

    with TestClient(app) as client:
        response = client.options(
            "/api/resources",
            headers={
                "Origin": "http://localhost:5173",
                "Access-Control-Request-Method": "GET",
                "Access-Control-Request-Headers": "Authorization",
            },
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


def test_supplied_database_is_prepared_only_on_request(tmp_path, monkeypatch):
    from tally import application
    from tally.database import Database

    calls = []
    original = application.prepare_database

    def counting_prepare(database, settings):
        calls.append(database)
        return original(database, settings)

    monkeypatch.setattr(application, "prepare_database", counting_prepare)
    settings = _settings(tmp_path)
    database = original(Database(settings.database_path), settings)

    create_application(settings=settings, database=database)
    assert calls == []

    create_application(settings=settings, database=database, initialize_database=True)
    assert calls == [database]
