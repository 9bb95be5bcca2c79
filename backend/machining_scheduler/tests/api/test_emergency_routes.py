"""API tests for the emergency request workflow."""

API = "/api/v1/emergency/requests"

SUBMISSION = {
    "process_instance_id": "proc-1",
    "machine": {"id": "mill-1", "type": "milling"},
    "duration_minutes": 120,
    "emergency_level": "urgent",
    "reason": "spindle failure",
    "requested_by": "operator",
}


class TestEmergencyRoutes:
    """Test submission, listing and decisions."""

    def test_submit_and_approve(self, client, container):
        """Test the full approval flow over HTTP."""
        submitted = client.post(API, json=SUBMISSION)

        assert submitted.status_code == 201
        request_id = submitted.json()["id"]
        assert submitted.json()["status"] == "requested"
        assert [r["id"] for r in client.get(API).json()] == [request_id]

        approved = client.post(f"{API}/{request_id}/approve", json={"actor": "boss"})

        assert approved.status_code == 200
        body = approved.json()
        assert body["status"] == "scheduled"
        assert body["schedule_entry_id"]
        assert [e.event_type for e in container.publisher.events] == [
            "emergency.requested",
            "emergency.approved",
            "emergency.scheduled",
        ]
        assert client.get(f"{API}/{request_id}").json()["status"] == "scheduled"

    def test_reject(self, client):
        """Test the rejection endpoint."""
        request_id = client.post(API, json=SUBMISSION).json()["id"]

        response = client.post(
            f"{API}/{request_id}/reject", json={"actor": "boss", "reason": "no"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        assert client.get(API).json() == []

    def test_policy_violation_maps_to_409(self, client):
        """Test an over-long request."""
        response = client.post(API, json={**SUBMISSION, "duration_minutes": 20 * 60})

        assert response.status_code == 409
        assert response.json()["detail"]["type"] == "approval"

    def test_unknown_request_maps_to_404(self, client):
        """Test the not-found mapping."""
        assert client.get(f"{API}/missing").status_code == 404
        assert (
            client.post(f"{API}/missing/approve", json={"actor": "boss"}).status_code
            == 404
        )

    def test_invalid_body_is_rejected(self, client):
        """Test request model validation."""
        response = client.post(API, json={**SUBMISSION, "duration_minutes": 0})

        assert response.status_code == 422
