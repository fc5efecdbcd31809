"""
Test file for the matching HTTP API

Run with: python -m pytest backend/casecontrol/api/routes/test_matching_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from main import app


client = TestClient(app)


def _payload(**overrides):
    payload = {
        "cases": [{"id": 1, "sex": "M", "site": "A", "idx_date": "2020-01-10"}],
        "control_pool": [
            {"id": 10, "sex": "M", "site": "A", "evt_date": None},
            {"id": 11, "sex": "M", "site": "A", "evt_date": "2019-06-01"},
            {"id": 12, "sex": "F", "site": "A", "evt_date": None},
        ],
        "n_controls": 2,
        "match_vars": ["sex", "site"],
        "method": "incidence_density",
        "index_date_field": "idx_date",
        "control_date_field": "evt_date",
        "seed": 1,
    }
    payload.update(overrides)
    return payload


def test_root_and_health():
    root = client.get("/")
    assert root.status_code == 200
    assert root.json()["status"] == "running"

    health = client.get("/health")
    assert health.json() == {"status": "healthy"}


@pytest.mark.filterwarnings("ignore::UserWarning")
def test_match_returns_matched_sets():
    response = client.post("/api/v1/matching/match", json=_payload())

    assert response.status_code == 200
    body = response.json()
    assert [row["id"] for row in body["rows"]] == [1, 10]
    assert [row["case"] for row in body["rows"]] == [1, 0]
    assert body["rows"][0]["idx_date"].startswith("2020-01-10")
    assert body["shortfalls"] == {"1": 1}
    assert body["n_cases"] == 1
    assert body["n_matched_controls"] == 1


@pytest.mark.filterwarnings("ignore::UserWarning")
def test_exact_method_over_http():
    payload = _payload(
        method="exact",
        n_controls=1,
        cases=[{"id": 1, "sex": "M", "site": "A"}, {"id": 2, "sex": "M", "site": "A"}],
        control_pool=[{"id": 10, "sex": "M", "site": "A"}],
        index_date_field=None,
        control_date_field=None,
    )
    response = client.post("/api/v1/matching/match", json=payload)

    assert response.status_code == 200
    rows = response.json()["rows"]
    assert [(row["id"], row["match_id"]) for row in rows] == [(1, 1), (10, 1), (2, 2)]


def test_missing_column_is_unprocessable():
    payload = _payload(match_vars=["sex", "region"])
    response = client.post("/api/v1/matching/match", json=payload)

    assert response.status_code == 422
    assert "region" in response.json()["detail"]


@pytest.mark.parametrize("overrides", [
    {"n_controls": 0},
    {"method": "propensity"},
    {"match_vars": []},
    {"unknown_option": True},
])
def test_invalid_options_are_unprocessable(overrides):
    response = client.post("/api/v1/matching/match", json=_payload(**overrides))
    assert response.status_code == 422
