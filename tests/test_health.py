from unittest.mock import patch

from app.core.exceptions import UpstreamError


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"

def test_health_detailed(client):
    response = client.get("/health/detailed")
    assert response.status_code == 200
    assert response.json()["services"]["database"] == "connected"
    assert response.json()["services"]["email"] == "not_configured"

def test_health_email_not_configured(client):
    assert client.get("/health/email").json()["status"] == "not_configured"

def test_locations_are_public(client, make_user, make_appointment):
    make_appointment(make_user())
    assert client.get("/locations/provinces").json() == ["Chiang Mai"]
    assert client.get("/locations/districts/Chiang Mai").json() == ["Mueang"]
    assert client.get("/locations/subdistricts/Mueang").json() == ["Suthep"]
    assert client.get("/locations/hospitals").json() == ["Maharaj Nakorn Hospital"]

def test_upstream_errors_map_to_502(client, login_as, make_user):
    rider = login_as(make_user())
    with patch("app.routers.line_router.LineService.send_test_message", side_effect=UpstreamError("LINE down")):
        response = client.post(f"/api/line/test-message/{rider.id}")
    assert response.status_code == 502
    assert response.json() == {"success": False, "detail": "LINE down"}

def test_unexpected_errors_are_generic_500(make_user, login_as):
    from starlette.testclient import TestClient
    from app.main import app

    login_as(make_user())
    with TestClient(app, raise_server_exceptions=False) as c, \
            patch("app.routers.profile_router.ProfileService.get_profile", side_effect=RuntimeError("db password leaked")):
        response = c.get("/profile/me")
    assert response.status_code == 500
    assert response.json() == {"success": False, "detail": "Internal server error"}
