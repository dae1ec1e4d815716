"""Read-only access to the configured dialogue steps."""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import BotStep

logger = get_logger("step_repository")

ENTRY_STEP = "inicio"
FAREWELL_STEP = "despedida"
REFERENCE_STEP = "pedir_referencia"


class SystemAction(str, Enum):
    CREATE_TICKET = "crear_ticket"
    QUERY_DEBT = "consultar_deuda"
    VERIFY_PAYMENT = "verificar_pago_magico"
    CLOSE_SESSION = "cerrar_sesion"
    ESCALATE_TO_HUMAN = "transferir_agente"


class FlowError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StepNotFoundError(FlowError):
    def __init__(self, code: Optional[str]):
        self.code = code
        super().__init__(f"Step '{code}' is not configured")


@dataclass(frozen=True)
class Option:
    text: str
    destination: str
    pattern: Optional[str] = None


@dataclass(frozen=True)
class Step:
    """A configured step.

    `options` is ordered and matching is first-match-wins, so reordering the
    configured list changes which destination a message resolves to.
    """

    code: str
    prompt: str
    is_question: bool
    default_next: Optional[str]
    options: tuple[Option, ...]
    action: Optional[SystemAction]


def parse_action(raw: Optional[str], step_code: str = "") -> Optional[SystemAction]:
    """Resolve the configured action identifier. Unknown identifiers mean no action."""
    if not raw:
        return None
    try:
        return SystemAction(raw.strip())
    except ValueError:
        logger.warning(
            f"Unknown system action '{raw}' on step {step_code}, ignoring",
            extra={"context": {"step": step_code, "action": raw}},
        )
        return None


def parse_options(raw: Any) -> tuple[Option, ...]:
    """Build Option tuples from the stored JSON.

    Accepts a list or a JSON-encoded string. Entries written by the legacy
    admin panel use `texto`/`valor`/`regex` keys.
    """
    if raw is None or raw == "":
        return ()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.error(f"Invalid options JSON: {raw[:100]}")
            return ()
    if not isinstance(raw, list):
        return ()

    options = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        text = item.get("text", item.get("texto"))
        destination = item.get("destination", item.get("valor"))
        if not text or not destination:
            continue
        pattern = item.get("pattern", item.get("regex")) or None
        options.append(Option(text=str(text), destination=str(destination), pattern=pattern))
    return tuple(options)


def to_step(row: BotStep) -> Step:
    return Step(
        code=row.code,
        prompt=row.prompt or "",
        is_question=bool(row.is_question),
        default_next=row.default_next or None,
        options=parse_options(row.options),
        action=parse_action(row.action, row.code),
    )


def find_step(db: Session, code: Optional[str]) -> Optional[Step]:
    """Step by code, or None when it is not configured."""
    if not code:
        return None
    row = db.query(BotStep).filter(BotStep.code == code).first()
    return to_step(row) if row else None


def get_step(db: Session, code: Optional[str]) -> Step:
    """Step by code. Raises StepNotFoundError for unknown codes."""
    step = find_step(db, code)
    if step is None:
        raise StepNotFoundError(code)
    return step
