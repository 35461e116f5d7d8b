# hub/auth.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from hub.db import get_db
from hub.db_models import ApiKey, Profile, hash_api_key
from lifecycle.types import Role

ERR_INVALID = "Invalid or missing API key"


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: Role
    key_prefix: str

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.ADMIN, Role.EMPLOYEE)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_identity(db: Session, raw_key: Optional[str]) -> Optional[Identity]:
    """Map a raw API key to the identity it belongs to; None for unknown, disabled or inactive."""
    if not raw_key or not str(raw_key).strip():
        return None

    row = (
        db.query(ApiKey, Profile)
        .join(Profile, Profile.id == ApiKey.user_id)
        .filter(ApiKey.key_hash == hash_api_key(str(raw_key).strip()))
        .filter(ApiKey.enabled.is_(True))
        .filter(Profile.active.is_(True))
        .first()
    )
    if row is None:
        return None
    key, profile = row
    return Identity(user_id=profile.id, role=Role(profile.role), key_prefix=key.prefix)


def require_identity(
    db: Session = Depends(get_db),
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
    authorization: Optional[str] = Header(default=None),
    apikey: Optional[str] = Query(default=None),
) -> Identity:
    raw = x_api_key or bearer_token(authorization) or apikey
    identity = resolve_identity(db, raw)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=ERR_INVALID)
    return identity


def require_admin(identity: Identity = Depends(require_identity)) -> Identity:
    if not identity.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin only")
    return identity
