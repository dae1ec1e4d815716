"""Option matching, open-answer capture and reply rendering shared by the engine."""

import re
from typing import Iterable, Optional

from app.logging_config import get_logger
from app.services.step_repository import Option

logger = get_logger("transitions")

LAST_OPEN_ANSWER_KEY = "last_open_answer"
PAYMENT_METHOD_KEY = "payment_method"
REFERENCE_KEY = "reference"

# open-question steps whose answer is also kept under a named field
OPEN_ANSWER_FIELDS = {
    "pedir_referencia": REFERENCE_KEY,
    "pedir_banco": "bank",
    "pedir_datos": "new_customer_name",
    "pedir_cedula_venta": "id_number",
}

PAYMENT_METHOD_STEPS = frozenset({"generar_factura_nueva", "reportar_pago"})

OPTIONS_HEADER = "Responde con una opcion:"
UNRECOGNIZED_HEADER = "No entendi esa respuesta. Por favor, elige una opcion:"


def option_matches(option: Option, text: str) -> bool:
    if option.pattern:
        try:
            return re.search(option.pattern, text, re.IGNORECASE) is not None
        except re.error as e:
            logger.warning(f"Invalid option pattern '{option.pattern}': {e}")
            return False
    return option.text.casefold() == text.casefold()


def match_option(options: Iterable[Option], text: str) -> Optional[Option]:
    """First option (in configured order) that matches the text."""
    for option in options:
        if option_matches(option, text):
            return option
    return None


def capture_open_answer(step_code: str, temp_data: dict, text: str) -> dict:
    """Return a copy of temp_data with the open answer recorded."""
    updated = dict(temp_data)
    updated[LAST_OPEN_ANSWER_KEY] = text
    field = OPEN_ANSWER_FIELDS.get(step_code)
    if field:
        updated[field] = text
    return updated


def record_payment_method(step_code: str, temp_data: dict, option: Option) -> dict:
    if step_code not in PAYMENT_METHOD_STEPS:
        return temp_data
    updated = dict(temp_data)
    updated[PAYMENT_METHOD_KEY] = option.text
    return updated


def format_option_list(options: Iterable[Option]) -> str:
    return "\n".join(f"- {option.text}" for option in options)


def render_with_options(text: str, options: tuple[Option, ...]) -> str:
    if not options:
        return text
    return f"{text}\n\n{OPTIONS_HEADER}\n{format_option_list(options)}"


def render_unrecognized(options: tuple[Option, ...]) -> str:
    return f"{UNRECOGNIZED_HEADER}\n\n{format_option_list(options)}"
