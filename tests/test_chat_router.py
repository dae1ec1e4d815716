import time
from unittest.mock import Mock, patch

import jwt
import pytest
from fastapi.testclient import TestClient

from app.config import settings
from app.database import get_db
from app.main import app
from app.models import ChatSession, Message


def _token(user_id=7, name="Ana", role="cliente", **claims):
    payload = {"id": user_id, "nombre": name, "rol": role, **claims}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _auth(**kwargs):
    return {"Authorization": f"Bearer {_token(**kwargs)}"}


ADVISOR = {"user_id": 1, "name": "Maria", "role": "asesor"}


@pytest.fixture
def client(flow_db):
    def override_get_db():
        yield flow_db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def web_session(client):
    response = client.post("/api/chat/session", headers=_auth())
    assert response.status_code == 200
    return response.json()["sessionId"]


class TestAuthentication:
    def test_missing_token(self, client):
        assert client.post("/api/chat/session").status_code == 401

    def test_malformed_header(self, client):
        response = client.post("/api/chat/session", headers={"Authorization": "Token abc"})
        assert response.status_code == 401

    def test_bad_signature(self, client):
        token = jwt.encode({"id": 7, "rol": "cliente"}, "otro-secreto", algorithm="HS256")
        response = client.post("/api/chat/session", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_expired_token(self, client):
        response = client.post("/api/chat/session", headers=_auth(exp=int(time.time()) - 60))
        assert response.status_code == 401
        assert response.json()["detail"] == "Token expirado"

    def test_advisor_routes_reject_clients(self, client):
        assert client.get("/api/chat/sessions", headers=_auth()).status_code == 403


class TestClientSession:
    def test_creates_session_with_greeting(self, client, flow_db, web_session):
        chat_session = flow_db.get(ChatSession, web_session)
        assert chat_session.channel == "web"
        assert chat_session.current_step == "inicio"
        assert chat_session.client.external_id == "web_7"

        messages = client.get(f"/api/chat/messages/{web_session}", headers=_auth()).json()["messages"]
        assert [m["role"] for m in messages] == ["bot"]
        assert messages[0]["content"].startswith("Bienvenido")
        assert "createdAt" in messages[0]

    def test_returns_same_open_session(self, client, web_session):
        again = client.post("/api/chat/session", headers=_auth()).json()
        assert again["sessionId"] == web_session
        assert again["state"] == "bot_active"

    def test_check(self, client):
        assert client.get("/api/chat/session/check", headers=_auth()).json() == {
            "active": False,
            "sessionId": None,
            "state": None,
        }
        session_id = client.post("/api/chat/session", headers=_auth()).json()["sessionId"]
        body = client.get("/api/chat/session/check", headers=_auth()).json()
        assert body["active"] is True
        assert body["sessionId"] == session_id

    def test_restart_flow(self, client, flow_db, web_session):
        client.post("/api/chat/message", headers=_auth(), json={"sessionId": web_session, "content": "2"})

        new_id = client.post("/api/chat/session/flow", headers=_auth()).json()["sessionId"]

        assert new_id != web_session
        assert flow_db.get(ChatSession, web_session).state == "closed"
        assert flow_db.get(ChatSession, new_id).current_step == "inicio"


class TestSendMessage:
    def test_runs_engine(self, client, flow_db, web_session):
        response = client.post(
            "/api/chat/message", headers=_auth(), json={"sessionId": web_session, "content": " 1 "}
        )

        assert response.status_code == 201
        assert response.json()["reply"].startswith("Estas al dia!")
        assert flow_db.get(ChatSession, web_session).current_step == "consulta_deuda"

    def test_blank_content(self, client, web_session):
        response = client.post("/api/chat/message", headers=_auth(), json={"sessionId": web_session, "content": "   "})
        assert response.status_code == 400

    def test_unknown_session(self, client):
        response = client.post("/api/chat/message", headers=_auth(), json={"sessionId": 999, "content": "hola"})
        assert response.status_code == 404

    def test_other_users_session(self, client, web_session):
        response = client.post(
            "/api/chat/message", headers=_auth(user_id=8), json={"sessionId": web_session, "content": "hola"}
        )
        assert response.status_code == 403

    def test_configuration_error_returns_500(self, client, flow_db, web_session):
        flow_db.get(ChatSession, web_session).current_step = "paso_borrado"
        flow_db.commit()

        response = client.post("/api/chat/message", headers=_auth(), json={"sessionId": web_session, "content": "1"})

        assert response.status_code == 500
        assert flow_db.query(Message).filter(Message.session_id == web_session).count() == 1


class TestMessages:
    def test_other_client_forbidden(self, client, web_session):
        assert client.get(f"/api/chat/messages/{web_session}", headers=_auth(user_id=8)).status_code == 403

    def test_advisor_can_read(self, client, web_session):
        assert client.get(f"/api/chat/messages/{web_session}", headers=_auth(**ADVISOR)).status_code == 200

    def test_not_found(self, client):
        assert client.get("/api/chat/messages/999", headers=_auth()).status_code == 404


class TestAdvisor:
    def test_escalated_queue(self, client, web_session):
        client.post("/api/chat/message", headers=_auth(), json={"sessionId": web_session, "content": "4"})

        sessions = client.get("/api/chat/sessions", headers=_auth(**ADVISOR)).json()["sessions"]

        assert len(sessions) == 1
        assert sessions[0]["sessionId"] == web_session
        assert sessions[0]["clientName"] == "Ana"
        assert "Un asesor se conectara" in sessions[0]["lastMessage"]

    def test_advisor_message_escalates(self, client, flow_db, web_session):
        response = client.post(
            "/api/chat/advisor-message",
            headers=_auth(**ADVISOR),
            json={"sessionId": web_session, "content": "Hola, soy Maria"},
        )

        assert response.status_code == 201
        assert response.json()["state"] == "escalated"
        last = flow_db.query(Message).order_by(Message.id.desc()).first()
        assert (last.role, last.content) == ("agent", "Hola, soy Maria")

        # the bot stays silent afterwards
        reply = client.post("/api/chat/message", headers=_auth(), json={"sessionId": web_session, "content": "gracias"})
        assert reply.json()["reply"] is None

    def test_advisor_message_on_closed_session(self, client, web_session):
        client.post(f"/api/chat/session/{web_session}/end", headers=_auth(**ADVISOR))

        response = client.post(
            "/api/chat/advisor-message",
            headers=_auth(**ADVISOR),
            json={"sessionId": web_session, "content": "hola"},
        )

        assert response.status_code == 409

    def test_advisor_message_pushed_to_telegram(self, client, flow_db, make_client, make_session):
        customer = make_client("5550001", "Luis")
        chat_session = make_session(customer, step="inicio", channel="telegram")
        flow_db.commit()
        telegram = Mock()
        telegram.send_message.return_value = {"ok": True}

        with patch("app.routers.chat.get_telegram_service", return_value=telegram):
            client.post(
                "/api/chat/advisor-message",
                headers=_auth(**ADVISOR),
                json={"sessionId": chat_session.id, "content": "Revisamos tu caso"},
            )

        telegram.send_message.assert_called_once_with("5550001", "Revisamos tu caso")

    def test_end_session(self, client, flow_db, web_session):
        response = client.post(f"/api/chat/session/{web_session}/end", headers=_auth(**ADVISOR))

        assert response.status_code == 200
        assert response.json()["state"] == "closed"
        assert response.json()["reply"] == "Gracias por contactarnos. ¡Hasta pronto!"
        assert flow_db.get(ChatSession, web_session).closed_at is not None

    def test_end_session_requires_advisor(self, client, web_session):
        assert client.post(f"/api/chat/session/{web_session}/end", headers=_auth()).status_code == 403

    def test_end_unknown_session(self, client):
        assert client.post("/api/chat/session/999/end", headers=_auth(**ADVISOR)).status_code == 404
