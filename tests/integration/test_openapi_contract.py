from fastapi.testclient import TestClient

from assistant.main import app


client = TestClient(app)


def test_openapi_contains_expected_paths():
    response = client.get("/openapi.json")
    assert response.status_code == 200
    schema = response.json()
    paths = schema.get("paths", {})

    expected = [
        "/chat",
        "/resume",
        "/retry",
        "/threads",
        "/threads/{thread_id}",
        "/capabilities/match",
        "/health",
        "/ready",
        "/metrics",
    ]

    for path in expected:
        assert path in paths, f"Missing {path} from OpenAPI paths"

    assert "post" in paths["/chat"]
    assert "post" in paths["/resume"]
    assert "post" in paths["/retry"]
    assert {"get", "delete"} <= set(paths["/threads/{thread_id}"])
