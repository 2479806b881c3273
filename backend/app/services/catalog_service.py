"""Catalog collaborator - item lookup and entitlement grants for purchases"""
import logging
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.book import Book
from app.models.course import Course
from app.models.entitlement import Entitlement
from app.models.live_class import LiveClass
from app.schemas.purchase import ItemType

logger = logging.getLogger(__name__)

CatalogItem = Union[Course, Book, LiveClass]

_ITEM_MODELS = {
    ItemType.COURSE: Course,
    ItemType.BOOK: Book,
    ItemType.LIVE_CLASS: LiveClass,
}


def find_item_by_id(item_type: ItemType, item_id: int, db: Session) -> Optional[CatalogItem]:
    """Get a course, book or live class; exposes ``price`` and ``is_published``"""
    model = _ITEM_MODELS[ItemType(item_type)]
    return db.query(model).filter(model.id == item_id).first()


def has_access(item_type: ItemType, item_id: int, user_id: int, db: Session) -> bool:
    return db.query(Entitlement).filter(
        Entitlement.user_id == user_id,
        Entitlement.item_type == ItemType(item_type).value,
        Entitlement.item_id == item_id
    ).first() is not None


def grant_access(
    item_type: ItemType,
    item_id: int,
    user_id: int,
    db: Session,
    payment_id: Optional[str] = None
) -> bool:
    """Enroll the user in a course/live class or unlock a book.

    Idempotent: returns True when access was created, False when the user
    already had it (including when a concurrent grant won the insert).
    """
    item_type = ItemType(item_type)
    if has_access(item_type, item_id, user_id, db):
        logger.info(f"User {user_id} already has access to {item_type.value} {item_id}")
        return False

    entitlement = Entitlement(
        user_id=user_id,
        item_type=item_type.value,
        item_id=item_id,
        payment_id=payment_id
    )
    db.add(entitlement)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Concurrent grant detected for user {user_id} on {item_type.value} {item_id}")
        return False

    logger.info(f"Granted {item_type.value} {item_id} to user {user_id} (payment {payment_id})")
    return True
