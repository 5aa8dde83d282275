from unittest.mock import patch

from app.models import Appointment, AppointmentStatus, Role

BOOKING = {
    "first_name": "Malee",
    "phone": "0899999999",
    "hospital": "Nakornping Hospital",
    "appointment_date": "2026-11-20",
    "appointment_time": "08:15",
    "latitude": 18.81,
    "longitude": 98.98,
}


def test_requires_authentication(client):
    assert client.get("/appointments/1").status_code == 401

def test_rider_creates_own_booking(client, login_as, make_user):
    rider = login_as(make_user())

    response = client.post(f"/appointments/user/{rider.id}", json=BOOKING)

    assert response.status_code == 200
    appointment = response.json()["appointment"]
    assert appointment["status"] == "PENDING"
    assert appointment["latitude"] == 18.81

def test_rider_cannot_book_for_others(client, login_as, make_user):
    other = make_user()
    login_as(make_user())
    response = client.post(f"/appointments/user/{other.id}", json=BOOKING)
    assert response.status_code == 403

def test_missing_fields_are_400(client, login_as, make_user):
    rider = login_as(make_user())
    response = client.post(f"/appointments/user/{rider.id}", json={"first_name": "Malee"})
    assert response.status_code == 400
    assert response.json()["success"] is False

def test_staff_booking_requires_target_user(client, login_as, make_user):
    login_as(make_user(Role.STAFF))
    response = client.post("/appointments/staff", json=BOOKING)
    assert response.status_code == 400
    assert response.json()["detail"] == "Missing target user"

def test_staff_booking_persists_without_coordinates(client, db, login_as, make_user):
    rider = make_user()
    login_as(make_user(Role.STAFF))

    response = client.post("/appointments/staff", json=dict(BOOKING, user_id=rider.id))

    assert response.status_code == 200
    stored = db.get(Appointment, response.json()["appointment"]["id"])
    assert stored.latitude is None
    assert stored.longitude is None

def test_list_is_back_office_only(client, login_as, make_user, make_appointment):
    rider = make_user()
    make_appointment(rider)

    login_as(rider)
    assert client.get("/appointments").status_code == 403

    login_as(make_user(Role.STAFF))
    response = client.get("/appointments", params={"status": "PENDING"})
    assert response.status_code == 200
    assert response.json()["total"] == 1

def test_user_bookings(client, login_as, make_user, make_appointment):
    rider, stranger = make_user(), make_user()
    make_appointment(rider)

    login_as(rider)
    assert len(client.get(f"/appointments/user/{rider.id}").json()) == 1
    login_as(stranger)
    assert client.get(f"/appointments/user/{rider.id}").status_code == 403

def test_get_hides_coordinates_from_strangers(client, login_as, make_user, make_appointment):
    rider = make_user()
    appointment = make_appointment(rider)

    login_as(make_user(Role.STAFF))
    assert "latitude" in client.get(f"/appointments/{appointment.id}").json()

    login_as(make_user())
    assert client.get(f"/appointments/{appointment.id}").status_code == 403

def test_get_missing(client, login_as, make_user):
    login_as(make_user(Role.ADMIN))
    assert client.get("/appointments/404").status_code == 404

def test_permissions_endpoint(client, login_as, make_user, make_appointment):
    rider = make_user()
    appointment = make_appointment(rider)

    login_as(rider)
    assert client.get(f"/appointments/{appointment.id}/permissions").json() == {
        "can_edit": True,
        "can_delete": True,
        "can_view_location": True,
        "can_update_status": False,
    }

    login_as(make_user(Role.ADMIN))
    permissions = client.get(f"/appointments/{appointment.id}/permissions").json()
    assert permissions["can_update_status"] is True
    assert permissions["can_delete"] is False

def test_edit_non_pending_is_400(client, login_as, make_user, make_appointment):
    rider = make_user()
    appointment = make_appointment(rider, status=AppointmentStatus.APPROVED)

    login_as(rider)
    response = client.put(f"/appointments/{appointment.id}", json={"phone": "0800000000"})
    assert response.status_code == 400

def test_edit_others_pending_is_403(client, login_as, make_user, make_appointment):
    appointment = make_appointment(make_user())
    login_as(make_user())
    response = client.put(f"/appointments/{appointment.id}", json={"phone": "0800000000"})
    assert response.status_code == 403

@patch("app.routers.appointments_router.AppointmentService.delete")
def test_delete_calls_service(mock_delete, client, login_as, make_user):
    rider = login_as(make_user())
    response = client.delete("/appointments/7")
    assert response.status_code == 200
    args = mock_delete.call_args[0]
    assert args[1].id == rider.id
    assert args[2] == 7

def test_delete_non_pending_is_400(client, login_as, make_user, make_appointment):
    rider = make_user()
    appointment = make_appointment(rider, status=AppointmentStatus.CANCELLED)
    login_as(rider)
    assert client.delete(f"/appointments/{appointment.id}").status_code == 400
