"""User lookups used by the payment flow"""
from typing import Optional
from sqlalchemy.orm import Session

from app.models.user import User


def get_user_by_id(user_id: int, db: Session) -> Optional[User]:
    """Get user by ID"""
    return db.query(User).filter(User.id == user_id).first()
