"""Contract tests for the /api/policies endpoints."""

from starlette.status import (
    HTTP_200_OK,
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
)

FLEXIBLE_POLICY = {
    "policy_id": "flexible",
    "name": "Flexible",
    "description": "Full refund up to a day before",
    "rules": [
        {"rule_id": "late", "hours_before_start": 0, "refund_percentage": 25},
        {"rule_id": "early", "hours_before_start": 24, "refund_percentage": 100},
    ],
}


def test_list_policies(client, standard_policy, customer, headers) -> None:
    response = client.get("/api/policies", headers=headers(customer))

    assert response.status_code == HTTP_200_OK
    assert [p["policy_id"] for p in response.json()] == ["standard"]


def test_get_unknown_policy_is_not_found(client, db, customer, headers) -> None:
    response = client.get("/api/policies/nope", headers=headers(customer))

    assert response.status_code == HTTP_404_NOT_FOUND
    assert response.json()["error_code"] == "ERR_NF_002"


def test_policy_summary(client, standard_policy, customer, headers) -> None:
    response = client.get("/api/policies/standard/summary", headers=headers(customer))

    assert response.status_code == HTTP_200_OK
    assert "72+ hours before start: 100% refund" in response.json()["summary"]


def test_admin_creates_policy_with_sorted_rules(client, db, admin, headers) -> None:
    response = client.put("/api/policies/flexible", json=FLEXIBLE_POLICY, headers=headers(admin))

    assert response.status_code == HTTP_200_OK
    data = response.json()
    assert data["policy_id"] == "flexible"
    assert data["version"] == 1
    assert [r["hours_before_start"] for r in data["rules"]] == [24, 0]


def test_customer_cannot_write_policy(client, db, customer, headers) -> None:
    response = client.put("/api/policies/flexible", json=FLEXIBLE_POLICY, headers=headers(customer))

    assert response.status_code == HTTP_403_FORBIDDEN


def test_duplicate_thresholds_are_rejected(client, db, admin, headers) -> None:
    body = {
        **FLEXIBLE_POLICY,
        "rules": [
            {"rule_id": "a", "hours_before_start": 24, "refund_percentage": 100},
            {"rule_id": "b", "hours_before_start": 24, "refund_percentage": 50},
        ],
    }

    response = client.put("/api/policies/flexible", json=body, headers=headers(admin))

    assert response.status_code == HTTP_400_BAD_REQUEST
    assert response.json()["error_code"] == "ERR_VAL_003"


def test_stale_version_conflicts(client, db, admin, headers) -> None:
    client.put("/api/policies/flexible", json=FLEXIBLE_POLICY, headers=headers(admin))

    response = client.put(
        "/api/policies/flexible", json={**FLEXIBLE_POLICY, "version": 0}, headers=headers(admin)
    )

    assert response.status_code == HTTP_409_CONFLICT
