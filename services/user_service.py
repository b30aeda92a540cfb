"""services/user_service.py - Identity lookups against app_users."""

from typing import Optional

from sqlalchemy.orm import Session

from models import AppUser


def get_user_email(db: Session, user_id: str) -> Optional[str]:
    user = db.query(AppUser).filter(AppUser.external_id == user_id).first()
    if not user or not user.email:
        return None
    email = user.email.strip()
    return email or None
