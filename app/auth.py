import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt

from .config import JWT_ALGORITHM, SECRET_KEY

logger = logging.getLogger(__name__)

security = HTTPBearer()

ROLE_ADMIN = "ADMIN"
ROLE_PATIENT = "PATIENT"


@dataclass
class CurrentUser:
    """Identity asserted by the external identity provider"""

    user_id: str
    role: str
    email: Optional[str] = None
    patient_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def can_act_for_patient(self, patient_id: int) -> bool:
        return self.is_admin or (self.patient_id is not None and self.patient_id == patient_id)


def decode_access_token(token: str) -> dict:
    """Verify signature and expiry of an access token and return its claims"""
    try:
        return jose_jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"🚫 Rejected access token: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token") from e


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """
    Resolve the caller from the Bearer token.

    Claims: ``sub`` (user id), ``role`` (ADMIN | PATIENT), optional ``email`` and
    ``patient_id`` for callers with a patient profile.
    """
    claims = decode_access_token(credentials.credentials)

    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token missing subject")

    patient_id = claims.get("patient_id")
    try:
        patient_id = int(patient_id) if patient_id is not None else None
    except (TypeError, ValueError):
        patient_id = None

    return CurrentUser(
        user_id=str(user_id),
        role=str(claims.get("role", ROLE_PATIENT)).upper(),
        email=claims.get("email"),
        patient_id=patient_id,
    )


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        logger.warning(f"🚫 Non-admin user {user.user_id} attempted an admin operation")
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
