from fastapi.testclient import TestClient

from support_directory.main import app


def test_healthz() -> None:
    client = TestClient(app)
    for path in ("/", "/healthz"):
        response = client.get(path)
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


def test_healthz_answers_head() -> None:
    client = TestClient(app)
    assert client.head("/healthz").status_code == 200
