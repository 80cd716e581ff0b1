"""Route-level tests for the HTTP API and the notification socket.

Services are patched; these tests check routing, authentication, role
gating, request validation, and the ``{"ok": ...}`` error envelope.
"""

from __future__ import annotations

import uuid
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from starlette.websockets import WebSocketDisconnect

from carsure.admin.router import router as admin_router
from carsure.api.errors import register_exception_handlers
from carsure.auth.dependencies import get_identity
from carsure.auth.tokens import Identity, create_access_token
from carsure.config import settings
from carsure.db.engine import AFTER_COMMIT_KEY, get_session
from carsure.errors import InvalidTransition, NotFound, RateLimited, SlotConflict
from carsure.models.appointment import Appointment
from carsure.models.base import utcnow
from carsure.models.car import Car
from carsure.models.enums import AccountRole, AppointmentStatus, NotificationType
from carsure.models.notification import Notification
from carsure.models.workshop import Workshop
from carsure.notifications.channel import CLOSE_UNAUTHORIZED
from carsure.notifications.channel import router as channel_router
from carsure.notifications.registry import connection_registry
from carsure.notifications.router import router as notification_router
from carsure.scheduling.router import router as appointment_router
from carsure.scheduling.router import stats_router
from carsure.scheduling.slots import Availability
from carsure.schemas.appointments import ExpiredAppointment, TodayStats

SELLER = Identity(id=uuid.uuid4(), role=AccountRole.USER)
WORKSHOP = Identity(id=uuid.uuid4(), role=AccountRole.WORKSHOP)
ADMIN = Identity(id=uuid.uuid4(), role=AccountRole.ADMIN)


def _make_appointment(status: AppointmentStatus = AppointmentStatus.EN_ATTENTE) -> Appointment:
    workshop = Workshop(id=WORKSHOP.id, name="Garage El Amel", email="amel@example.dz", phone="0555000000")
    car = Car(id=uuid.uuid4(), owner_id=SELLER.id, brand="Dacia", model="Logan", year=2018)
    appt = Appointment(
        id=uuid.uuid4(),
        workshop_id=workshop.id,
        car_id=car.id,
        owner_id=SELLER.id,
        date=date(2026, 3, 11),
        time="09:00",
        status=status.value,
        images=[],
        workshop=workshop,
        car=car,
    )
    appt.created_at = utcnow()
    return appt


@pytest.fixture
def db():
    session = AsyncMock()
    session.info = {}
    session.add = MagicMock()
    return session


def _build_app(db: AsyncMock, identity: Identity | None) -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(appointment_router)
    app.include_router(stats_router)
    app.include_router(notification_router)
    app.include_router(admin_router)
    app.include_router(channel_router)

    async def fake_session():
        yield db

    app.dependency_overrides[get_session] = fake_session
    if identity is not None:
        app.dependency_overrides[get_identity] = lambda: identity
    return app


def _client(db: AsyncMock, identity: Identity | None = SELLER) -> TestClient:
    return TestClient(_build_app(db, identity))


@pytest.fixture
def service():
    with patch("carsure.scheduling.router.scheduling_service") as mock:
        for name in (
            "get_availability",
            "create_appointment",
            "list_for_owner",
            "list_for_workshop",
            "list_for_car",
            "get_appointment",
            "change_status",
            "add_images",
            "set_report",
            "workshop_today",
        ):
            setattr(mock, name, AsyncMock())
        yield mock


@pytest.fixture
def allow_rate():
    with patch("carsure.scheduling.router.rate_limiter") as mock:
        mock.enforce_booking = AsyncMock()
        yield mock


# ── Authentication ───────────────────────────────────────────────────


class TestAuthentication:
    def test_missing_token_401(self, db, service):
        resp = _client(db, identity=None).get("/api/rdv-workshop/my-appointments")
        assert resp.status_code == 401
        assert resp.json()["ok"] is False
        assert resp.json()["message"]

    def test_bad_token_401(self, db, service):
        with patch.object(settings.security, "jwt_secret", "test-secret-please-ignore-0123456789"):
            resp = _client(db, identity=None).get(
                "/api/rdv-workshop/my-appointments",
                headers={"Authorization": "Bearer nope"},
            )
        assert resp.status_code == 401

    def test_valid_token(self, db, service):
        service.list_for_owner.return_value = []
        with patch.object(settings.security, "jwt_secret", "test-secret-please-ignore-0123456789"):
            token = create_access_token(SELLER.id, AccountRole.USER)
            resp = _client(db, identity=None).get(
                "/api/rdv-workshop/my-appointments",
                headers={"Authorization": f"Bearer {token}"},
            )
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "appointments": []}

    def test_workshop_cannot_book(self, db, service, allow_rate):
        resp = _client(db, WORKSHOP).post(
            "/api/rdv-workshop/create",
            json={"id_workshop": str(uuid.uuid4()), "id_car": str(uuid.uuid4()), "date": "2026-03-11", "time": "09:00"},
        )
        assert resp.status_code == 403
        service.create_appointment.assert_not_awaited()

    def test_seller_cannot_change_status(self, db, service):
        resp = _client(db, SELLER).put(f"/api/rdv-workshop/{uuid.uuid4()}/status", json={"status": "accepted"})
        assert resp.status_code == 403


# ── Appointments ─────────────────────────────────────────────────────


class TestAppointmentRoutes:
    def test_available_times(self, db, service):
        service.get_availability.return_value = Availability(available=["08:00", "10:00"], unavailable=["09:00"])
        workshop_id = uuid.uuid4()

        resp = _client(db).get(
            "/api/rdv-workshop/available-times",
            params={"id_workshop": str(workshop_id), "date": "2026-03-11"},
        )

        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "availableTimes": ["08:00", "10:00"], "unavailableTimes": ["09:00"]}
        service.get_availability.assert_awaited_once_with(db, workshop_id, date(2026, 3, 11))

    def test_available_times_requires_params(self, db, service):
        resp = _client(db).get("/api/rdv-workshop/available-times")
        assert resp.status_code == 422
        body = resp.json()
        assert body["ok"] is False
        assert body["errors"]

    def test_create(self, db, service, allow_rate):
        appt = _make_appointment()
        service.create_appointment.return_value = appt

        resp = _client(db).post(
            "/api/rdv-workshop/create",
            json={
                "id_workshop": str(appt.workshop_id),
                "id_car": str(appt.car_id),
                "date": "2026-03-11",
                "time": "09:00",
            },
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["ok"] is True
        assert body["appointment"]["id"] == str(appt.id)
        assert body["appointment"]["status"] == "en_attente"
        assert body["appointment"]["workshop"]["name"] == "Garage El Amel"
        assert body["appointment"]["car"]["brand"] == "Dacia"
        assert "createdAt" in body["appointment"]
        allow_rate.enforce_booking.assert_awaited_once_with(SELLER.id)

    def test_create_bad_time_label(self, db, service, allow_rate):
        resp = _client(db).post(
            "/api/rdv-workshop/create",
            json={"id_workshop": str(uuid.uuid4()), "id_car": str(uuid.uuid4()), "date": "2026-03-11", "time": "9h"},
        )
        assert resp.status_code == 422
        assert any("time" in e for e in resp.json()["errors"])
        service.create_appointment.assert_not_awaited()

    def test_create_conflict(self, db, service, allow_rate):
        service.create_appointment.side_effect = SlotConflict(["09:00", "10:00"])
        resp = _client(db).post(
            "/api/rdv-workshop/create",
            json={"id_workshop": str(uuid.uuid4()), "id_car": str(uuid.uuid4()), "date": "2026-03-11", "time": "09:00"},
        )
        assert resp.status_code == 409
        assert resp.json() == {
            "ok": False,
            "message": "Ce créneau n'est plus disponible",
            "unavailableTimes": ["09:00", "10:00"],
        }

    def test_create_rate_limited(self, db, service):
        with patch("carsure.scheduling.router.rate_limiter") as limiter:
            limiter.enforce_booking = AsyncMock(side_effect=RateLimited(30))
            resp = _client(db).post(
                "/api/rdv-workshop/create",
                json={"id_workshop": str(uuid.uuid4()), "id_car": str(uuid.uuid4()), "date": "2026-03-11", "time": "09:00"},
            )
        assert resp.status_code == 429
        assert resp.json()["retryAfter"] == 30
        assert resp.headers["Retry-After"] == "30"
        service.create_appointment.assert_not_awaited()

    def test_workshop_appointments_by_day(self, db, service):
        service.list_for_workshop.return_value = [_make_appointment()]
        resp = _client(db, WORKSHOP).get("/api/rdv-workshop/workshop-appointments", params={"date": "2026-03-11"})
        assert resp.status_code == 200
        assert len(resp.json()["appointments"]) == 1
        service.list_for_workshop.assert_awaited_once_with(db, WORKSHOP.id, day=date(2026, 3, 11))

    def test_get_unknown(self, db, service):
        service.get_appointment.side_effect = NotFound("Rendez-vous introuvable")
        resp = _client(db).get(f"/api/rdv-workshop/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json() == {"ok": False, "message": "Rendez-vous introuvable"}

    def test_car_history(self, db, service):
        service.list_for_car.return_value = [_make_appointment(AppointmentStatus.FINISH)]
        car_id = uuid.uuid4()
        resp = _client(db).get(f"/api/rdv-workshop/car/{car_id}")
        assert resp.status_code == 200
        service.list_for_car.assert_awaited_once_with(db, SELLER, car_id)

    def test_status_change(self, db, service):
        appt = _make_appointment(AppointmentStatus.ACCEPTED)
        service.change_status.return_value = appt
        resp = _client(db, WORKSHOP).put(f"/api/rdv-workshop/{appt.id}/status", json={"status": "accepted"})
        assert resp.status_code == 200
        assert resp.json()["appointment"]["status"] == "accepted"
        service.change_status.assert_awaited_once_with(db, WORKSHOP, appt.id, "accepted")

    def test_invalid_transition(self, db, service):
        service.change_status.side_effect = InvalidTransition("en_attente", "finish", ["accepted", "refused"])
        resp = _client(db, WORKSHOP).put(f"/api/rdv-workshop/{uuid.uuid4()}/status", json={"status": "finish"})
        assert resp.status_code == 409
        body = resp.json()
        assert body["currentStatus"] == "en_attente"
        assert body["allowed"] == ["accepted", "refused"]

    def test_check_expired_seller(self, db, service):
        expired = ExpiredAppointment(
            id=uuid.uuid4(), carName="Dacia Logan (2018)", workshopName="Garage El Amel",
            date=date(2026, 3, 8), time="10:00",
        )
        with patch("carsure.scheduling.router.sweep_expired", new_callable=AsyncMock, return_value=[expired]) as sweep:
            resp = _client(db).post("/api/rdv-workshop/check-expired-seller")

        assert resp.status_code == 200
        assert resp.json()["deletedAppointments"] == [
            {
                "id": str(expired.id),
                "carName": "Dacia Logan (2018)",
                "workshopName": "Garage El Amel",
                "date": "2026-03-08",
                "time": "10:00",
            }
        ]
        sweep.assert_awaited_once_with(db, owner_id=SELLER.id)

    def test_upload_images(self, db, service):
        appt = _make_appointment(AppointmentStatus.EN_COURS)
        appt.images = ["/uploads/rdv/x/a.jpg"]
        service.add_images.return_value = appt

        resp = _client(db, WORKSHOP).post(
            f"/api/rdv-workshop/{appt.id}/images",
            files=[
                ("images", ("a.jpg", b"\xff\xd8a", "image/jpeg")),
                ("images", ("b.png", b"\x89PNGb", "image/png")),
            ],
        )

        assert resp.status_code == 200
        files = service.add_images.await_args.args[3]
        assert [f.filename for f in files] == ["a.jpg", "b.png"]
        assert files[1].content_type == "image/png"
        assert files[0].data == b"\xff\xd8a"

    def test_upload_pdf(self, db, service):
        appt = _make_appointment(AppointmentStatus.EN_COURS)
        appt.rapport_pdf = "/uploads/rdv/x/r.pdf"
        service.set_report.return_value = appt

        resp = _client(db, WORKSHOP).post(
            f"/api/rdv-workshop/{appt.id}/pdf",
            files={"rapport_pdf": ("rapport.pdf", b"%PDF-1.4", "application/pdf")},
        )

        assert resp.status_code == 200
        assert resp.json()["appointment"]["rapport_pdf"] == "/uploads/rdv/x/r.pdf"

    def test_workshop_stats_today(self, db, service):
        service.workshop_today.return_value = ([], TodayStats(total=3, completed=1, pending=1, progress=1))
        resp = _client(db, WORKSHOP).get("/api/workshop-stats/today")
        assert resp.status_code == 200
        assert resp.json()["stats"] == {"total": 3, "completed": 1, "pending": 1, "progress": 1}


# ── Notifications ────────────────────────────────────────────────────


def _make_notification() -> Notification:
    n = Notification(
        id=uuid.uuid4(),
        recipient_id=SELLER.id,
        sender_id=WORKSHOP.id,
        message="Rendez-vous accepté",
        type=NotificationType.RDV_WORKSHOP.value,
        is_read=False,
    )
    n.created_at = utcnow()
    return n


@pytest.fixture
def notifications():
    with patch("carsure.notifications.router.notification_service") as mock:
        for name in ("list_for", "unread_count", "mark_read", "mark_all_read", "mark_sender_messages_read"):
            setattr(mock, name, AsyncMock())
        yield mock


class TestNotificationRoutes:
    def test_list(self, db, notifications):
        n = _make_notification()
        notifications.list_for.return_value = [n]
        notifications.unread_count.return_value = 1

        resp = _client(db).get("/api/notification")

        assert resp.status_code == 200
        body = resp.json()
        assert body["unreadCount"] == 1
        assert body["notifications"][0]["id"] == str(n.id)
        assert body["notifications"][0]["id_sender"] == str(WORKSHOP.id)

    def test_mark_read(self, db, notifications):
        n = _make_notification()
        n.is_read = True
        notifications.mark_read.return_value = n
        resp = _client(db).put(f"/api/notification/{n.id}/read")
        assert resp.status_code == 200
        assert resp.json()["notification"]["is_read"] is True

    def test_mark_read_not_found(self, db, notifications):
        notifications.mark_read.return_value = None
        resp = _client(db).put(f"/api/notification/{uuid.uuid4()}/read")
        assert resp.status_code == 404

    def test_read_all(self, db, notifications):
        notifications.mark_all_read.return_value = 5
        resp = _client(db).put("/api/notification/read-all")
        assert resp.json() == {"ok": True, "updated": 5}

    def test_read_chat_messages(self, db, notifications):
        notifications.mark_sender_messages_read.return_value = 2
        sender = uuid.uuid4()
        resp = _client(db).put(f"/api/notification/read-chat-messages/{sender}")
        assert resp.json() == {"ok": True, "updated": 2}
        notifications.mark_sender_messages_read.assert_awaited_once_with(db, SELLER.id, sender)


# ── Unit of work ─────────────────────────────────────────────────────


def _commit_failure() -> OperationalError:
    return OperationalError("COMMIT", {}, Exception("server closed the connection"))


class TestCommitBeforeResponse:
    def test_create_commits_and_pushes_before_answering(self, db, service, allow_rate):
        service.create_appointment.return_value = _make_appointment()
        hook = AsyncMock()
        db.info[AFTER_COMMIT_KEY] = [hook]

        resp = _client(db).post(
            "/api/rdv-workshop/create",
            json={"id_workshop": str(uuid.uuid4()), "id_car": str(uuid.uuid4()), "date": "2026-03-11", "time": "09:00"},
        )

        assert resp.status_code == 201
        db.commit.assert_awaited()
        hook.assert_awaited_once()

    def test_status_commit_failure_is_an_error_envelope(self, db, service):
        service.change_status.return_value = _make_appointment(AppointmentStatus.ACCEPTED)
        db.commit.side_effect = _commit_failure()

        resp = _client(db, WORKSHOP).put(
            f"/api/rdv-workshop/{uuid.uuid4()}/status", json={"status": "accepted"}
        )

        assert resp.status_code == 503
        assert resp.json()["ok"] is False

    def test_create_commit_failure_sends_no_push(self, db, service, allow_rate):
        service.create_appointment.return_value = _make_appointment()
        db.commit.side_effect = _commit_failure()
        hook = AsyncMock()
        db.info[AFTER_COMMIT_KEY] = [hook]

        resp = _client(db).post(
            "/api/rdv-workshop/create",
            json={"id_workshop": str(uuid.uuid4()), "id_car": str(uuid.uuid4()), "date": "2026-03-11", "time": "09:00"},
        )

        assert resp.status_code == 503
        assert resp.json()["ok"] is False
        hook.assert_not_awaited()

    def test_expiry_commit_failure_is_an_error_envelope(self, db):
        db.commit.side_effect = _commit_failure()
        with patch("carsure.scheduling.router.sweep_expired", new_callable=AsyncMock, return_value=[]):
            resp = _client(db).post("/api/rdv-workshop/check-expired-seller")

        assert resp.status_code == 503
        assert resp.json()["ok"] is False

    def test_read_all_commits(self, db):
        with patch("carsure.notifications.router.notification_service") as notifications:
            notifications.mark_all_read = AsyncMock(return_value=1)
            resp = _client(db).put("/api/notification/read-all")

        assert resp.status_code == 200
        db.commit.assert_awaited()


# ── Admin ────────────────────────────────────────────────────────────


class TestAdminWarning:
    def test_warn_owner(self, db):
        car = Car(id=uuid.uuid4(), owner_id=SELLER.id, brand="Kia", model="Picanto", year=2020)
        result = MagicMock()
        result.scalar_one_or_none.return_value = car
        db.execute.return_value = result

        with (
            patch("carsure.admin.router.notification_service") as mock_notify,
            patch("carsure.admin.router.emit", new_callable=AsyncMock) as mock_emit,
        ):
            mock_notify.notify = AsyncMock(return_value=_make_notification())
            resp = _client(db, ADMIN).post(
                f"/api/admin/cars/{car.id}/warning", json={"message": "Photos non conformes"}
            )

        assert resp.status_code == 200
        kwargs = mock_notify.notify.await_args.kwargs
        assert kwargs["recipient_id"] == SELLER.id
        assert kwargs["type_"] is NotificationType.WARNING
        assert "Photos non conformes" in kwargs["message"]
        mock_emit.assert_awaited_once()

    def test_non_admin_forbidden(self, db):
        resp = _client(db, SELLER).post(f"/api/admin/cars/{uuid.uuid4()}/warning", json={"message": "x"})
        assert resp.status_code == 403

    def test_longest_message_kept_whole(self, db):
        car = Car(id=uuid.uuid4(), owner_id=SELLER.id, brand="Kia", model="Picanto", year=2020)
        result = MagicMock()
        result.scalar_one_or_none.return_value = car
        db.execute.return_value = result
        text = "x" * 1000

        with (
            patch("carsure.admin.router.notification_service") as mock_notify,
            patch("carsure.admin.router.emit", new_callable=AsyncMock),
        ):
            mock_notify.notify = AsyncMock(return_value=_make_notification())
            resp = _client(db, ADMIN).post(f"/api/admin/cars/{car.id}/warning", json={"message": text})

        assert resp.status_code == 200
        assert mock_notify.notify.await_args.kwargs["message"].endswith(text)
        db.commit.assert_awaited()

    def test_message_too_long(self, db):
        resp = _client(db, ADMIN).post(f"/api/admin/cars/{uuid.uuid4()}/warning", json={"message": "x" * 1001})
        assert resp.status_code == 422

    def test_empty_message(self, db):
        resp = _client(db, ADMIN).post(f"/api/admin/cars/{uuid.uuid4()}/warning", json={"message": ""})
        assert resp.status_code == 422


# ── Socket ───────────────────────────────────────────────────────────


class TestNotificationSocket:
    def test_rejects_bad_token(self, db):
        with patch.object(settings.security, "jwt_secret", "test-secret-please-ignore-0123456789"):
            client = _client(db)
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws?token=bad") as ws:
                    ws.receive_json()
        assert exc_info.value.code == CLOSE_UNAUTHORIZED

    def test_join_own_room(self, db):
        with patch.object(settings.security, "jwt_secret", "test-secret-please-ignore-0123456789"):
            token = create_access_token(SELLER.id, AccountRole.USER)
            client = _client(db)
            with client.websocket_connect(f"/ws?token={token}") as ws:
                ws.send_json({"event": "join_user", "user_id": str(SELLER.id)})
                assert ws.receive_json() == {"event": "joined", "data": {"user_id": str(SELLER.id)}}
                assert connection_registry.is_online(str(SELLER.id))

        assert not connection_registry.is_online(str(SELLER.id))
