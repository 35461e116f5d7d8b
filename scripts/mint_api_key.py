import os
from datetime import datetime, timezone

from hub.accounts import create_profile, mint_api_key
from hub.db import session_scope
from hub.db_models import Profile


def utcnow():
    return datetime.now(timezone.utc)


def main():
    prefix = os.getenv("FO_MINT_PREFIX", "FO").strip().upper()
    user_id = os.getenv("FO_MINT_USER_ID", "").strip()
    name = os.getenv("FO_MINT_NAME", f"{prefix.lower()}-{utcnow().isoformat()}").strip()

    if not prefix:
        raise SystemExit("FO_MINT_PREFIX cannot be empty")

    with session_scope() as db:
        if user_id:
            if db.query(Profile).filter(Profile.id == user_id).first() is None:
                raise SystemExit(f"no profile {user_id}")
        else:
            # No user given: create one (admin unless FO_MINT_ROLE says otherwise).
            profile = create_profile(
                db,
                full_name=os.getenv("FO_MINT_FULL_NAME", "Administrator").strip(),
                role=os.getenv("FO_MINT_ROLE", "admin").strip().lower(),
            )
            user_id = profile.id

        raw = mint_api_key(db, user_id=user_id, prefix=prefix, name=name)

    print(raw)  # print only once


if __name__ == "__main__":
    main()
