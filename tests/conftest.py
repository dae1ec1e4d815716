import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-for-the-support-bot-suite")

from datetime import date, datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: E402,F401
from app.database import Base  # noqa: E402
from app.models import BotStep, ChatSession, Client, Invoice, Payment  # noqa: E402

MAIN_MENU_OPTIONS = [
    {"texto": "1. Consultar deuda", "valor": "consulta_deuda", "regex": r"^\s*1\b|deuda"},
    {"texto": "2. Reportar pago", "valor": "reportar_pago", "regex": r"^\s*2\b|pago"},
    {"texto": "3. Falla tecnica", "valor": "describir_falla", "regex": r"^\s*3\b|falla"},
    {"texto": "4. Hablar con un asesor", "valor": "asesor", "regex": r"^\s*4\b|asesor"},
    {"texto": "5. Salir", "valor": "despedida"},
]

STANDARD_STEPS = [
    {"code": "inicio", "prompt": "Bienvenido a Calibra-Net. ¿En que podemos ayudarte?", "options": MAIN_MENU_OPTIONS},
    {
        "code": "consulta_deuda",
        "prompt": "Consultando tu estado de cuenta...",
        "action": "consultar_deuda",
        "options": [
            {"text": "Si", "destination": "reportar_pago"},
            {"text": "Volver", "destination": "inicio"},
        ],
    },
    {
        "code": "reportar_pago",
        "prompt": "¿Como realizaste el pago?",
        "options": [
            {"text": "Transferencia", "destination": "pedir_banco"},
            {"text": "Pago movil", "destination": "pedir_banco"},
        ],
    },
    {"code": "pedir_banco", "prompt": "¿Desde que banco?", "is_question": True, "default_next": "pedir_referencia"},
    {
        "code": "pedir_referencia",
        "prompt": "Indica el numero de referencia.",
        "is_question": True,
        "default_next": "verificar_pago",
    },
    {
        "code": "verificar_pago",
        "prompt": "Verificando tu pago...",
        "action": "verificar_pago_magico",
        "options": [
            {"text": "1. Volver al inicio", "destination": "inicio", "pattern": r"^\s*1\b|inicio"},
            {"text": "2. Cerrar chat", "destination": "despedida", "pattern": r"^\s*2\b|cerrar"},
        ],
    },
    {
        "code": "describir_falla",
        "prompt": "Describe brevemente la falla.",
        "is_question": True,
        "default_next": "ticket_creado",
    },
    {
        "code": "ticket_creado",
        "prompt": "Registramos tu reporte. Un tecnico te contactara.",
        "action": "crear_ticket",
        "options": [{"text": "Volver", "destination": "inicio"}],
    },
    {"code": "asesor", "prompt": "Te estamos transfiriendo con un asesor.", "action": "transferir_agente"},
    {"code": "despedida", "prompt": "Gracias por contactarnos. ¡Hasta pronto!", "action": "cerrar_sesion"},
]


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def mock_env(monkeypatch):
    """Set test environment variables."""
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "test-token")


@pytest.fixture
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def sqlite_db(sqlite_engine):
    """Real database session on in-memory SQLite (FOR UPDATE is a no-op there)."""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=sqlite_engine)
    db = TestingSession()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def seed_steps(sqlite_db):
    def _seed(steps=None):
        for step in steps if steps is not None else STANDARD_STEPS:
            sqlite_db.add(
                BotStep(
                    code=step["code"],
                    prompt=step["prompt"],
                    is_question=step.get("is_question", False),
                    default_next=step.get("default_next"),
                    options=step.get("options", []),
                    action=step.get("action"),
                )
            )
        sqlite_db.flush()

    return _seed


@pytest.fixture
def flow_db(sqlite_db, seed_steps):
    """SQLite session seeded (and committed) with the standard support flow."""
    seed_steps()
    sqlite_db.commit()
    return sqlite_db


@pytest.fixture
def make_client(sqlite_db):
    def _make(external_id="5550001", name="Ana"):
        now = datetime.now(timezone.utc)
        client = Client(external_id=external_id, name=name, created_at=now, updated_at=now)
        sqlite_db.add(client)
        sqlite_db.flush()
        return client

    return _make


@pytest.fixture
def make_session(sqlite_db):
    def _make(client, step=None, state="bot_active", channel="telegram", temp_data=None):
        now = datetime.now(timezone.utc)
        chat_session = ChatSession(
            client_id=client.id,
            channel=channel,
            state=state,
            flow="principal",
            current_step=step,
            temp_data=temp_data or {},
            started_at=now,
            updated_at=now,
        )
        sqlite_db.add(chat_session)
        sqlite_db.flush()
        return chat_session

    return _make


@pytest.fixture
def make_invoice(sqlite_db):
    def _make(client, amount, due_in_days=0, description=None, status="pending"):
        invoice = Invoice(
            client_id=client.id,
            amount=Decimal(str(amount)),
            description=description or f"Mensualidad {amount}",
            due_date=date.today() + timedelta(days=due_in_days),
            status=status,
            created_at=datetime.now(timezone.utc),
        )
        sqlite_db.add(invoice)
        sqlite_db.flush()
        return invoice

    return _make


@pytest.fixture
def make_payment(sqlite_db):
    def _make(reference, amount, used=False):
        payment = Payment(
            reference=reference,
            amount=Decimal(str(amount)),
            used=used,
            created_at=datetime.now(timezone.utc),
        )
        sqlite_db.add(payment)
        sqlite_db.flush()
        return payment

    return _make
