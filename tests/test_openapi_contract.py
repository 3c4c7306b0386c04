import json
from pathlib import Path

from posledger.main import app


def test_openapi_paths_snapshot():
    snapshot_path = Path(__file__).parent / "snapshots" / "openapi_paths_snapshot.json"
    expected_paths = json.loads(snapshot_path.read_text(encoding="utf-8"))
    actual_paths = sorted(app.openapi()["paths"].keys())
    assert actual_paths == expected_paths


def test_error_envelope_is_documented():
    schemas = app.openapi()["components"]["schemas"]
    assert "ErrorOut" in schemas
    assert set(schemas["ErrorDetailOut"]["properties"]) == {"code", "message", "request_id", "path", "details"}
