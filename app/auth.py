"""Bearer-token verification for the web chat.

Tokens are issued by the account service; this API only verifies them and
reads the `id`, `nombre` and `rol` claims.
"""

from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("auth")

ADVISOR_ROLES = ("asesor", "admin")


@dataclass(frozen=True)
class Identity:
    user_id: str
    name: str
    role: Optional[str]

    @property
    def is_advisor(self) -> bool:
        return self.role in ADVISOR_ROLES


def decode_token(token: str) -> Identity:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expirado")
    except jwt.PyJWTError as e:
        logger.warning(f"Invalid token: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token inválido")

    user_id = payload.get("id")
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token con datos incompletos")

    return Identity(user_id=str(user_id), name=payload.get("nombre") or "Usuario", role=payload.get("rol"))


def get_current_identity(authorization: Optional[str] = Header(None)) -> Identity:
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token de acceso requerido.")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token de acceso requerido.")

    return decode_token(parts[1])


def require_role(*roles: str):
    """Dependency factory: the caller's role must be one of `roles`."""

    def checker(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in roles:
            logger.warning(f"Access denied for user {identity.user_id} with role {identity.role}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="No tienes permiso para acceder a este recurso.",
            )
        return identity

    return checker


require_advisor = require_role(*ADVISOR_ROLES)
