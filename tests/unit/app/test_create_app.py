"""Tests for the application factory."""


class TestCors:
    """CORS for the JSON API follows the CORS_* settings."""

    def test_origins_come_from_config(self, app):
        assert app.config["CORS_ORIGINS"] == ["https://pantry.test"]
        assert "PATCH" in app.config["CORS_METHODS"]

    def test_allowed_origin(self, auth_client):
        response = auth_client.get("/api/v1/receipts/current", headers={"Origin": "https://pantry.test"})

        assert response.status_code == 200
        assert response.headers["Access-Control-Allow-Origin"] == "https://pantry.test"

    def test_other_origin(self, auth_client):
        response = auth_client.get("/api/v1/receipts/current", headers={"Origin": "https://evil.test"})

        assert "Access-Control-Allow-Origin" not in response.headers
