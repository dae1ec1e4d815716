from app.services.session_service import (
    Channel,
    MessageRole,
    find_open_session,
    save_message,
    upsert_client,
)
from app.services.state_machine import (
    InvalidTransitionError,
    SessionState,
    can_transition,
    close,
    escalate,
    transition,
)
