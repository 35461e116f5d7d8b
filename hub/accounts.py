from __future__ import annotations

import secrets
from typing import Optional

from sqlalchemy.orm import Session

from hub.db_models import ApiKey, Profile, hash_api_key
from lifecycle.types import Role


def create_profile(
    db: Session,
    *,
    full_name: str,
    role: Role | str,
    active: bool = True,
    user_id: Optional[str] = None,
) -> Profile:
    profile = Profile(full_name=full_name, role=Role(role).value, active=active)
    if user_id:
        profile.id = user_id
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def _key_prefix(raw_key: str) -> str:
    # prefix: everything before first '_' + '_' fallback first 8 chars + '_'
    if "_" in raw_key:
        return raw_key.split("_", 1)[0] + "_"
    return raw_key[:8] + "_"


def insert_api_key(
    db: Session,
    *,
    user_id: str,
    raw_key: str,
    name: Optional[str] = None,
    enabled: bool = True,
) -> ApiKey:
    """Store the sha256 of raw_key for user_id; the raw key itself is never persisted."""
    raw_key = str(raw_key).strip()
    if not raw_key:
        raise ValueError("raw_key cannot be empty")

    row = ApiKey(
        user_id=user_id,
        name=name or "default",
        prefix=_key_prefix(raw_key),
        key_hash=hash_api_key(raw_key),
        enabled=enabled,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def mint_api_key(db: Session, *, user_id: str, prefix: str = "FO", name: Optional[str] = None) -> str:
    raw = f"{prefix.strip().upper()}_" + secrets.token_urlsafe(32)
    insert_api_key(db, user_id=user_id, raw_key=raw, name=name)
    return raw


def revoke_api_keys(db: Session, *, user_id: str) -> int:
    n = (
        db.query(ApiKey)
        .filter(ApiKey.user_id == user_id, ApiKey.enabled.is_(True))
        .update({ApiKey.enabled: False}, synchronize_session=False)
    )
    db.commit()
    return int(n)
