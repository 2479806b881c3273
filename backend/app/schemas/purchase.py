"""Purchase intent carried through the gateway round-trip in order notes"""
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ValidationError

from app.core.exceptions import InvalidItemReference, MissingPaymentNotes


class ItemType(str, Enum):
    COURSE = "course"
    BOOK = "book"
    LIVE_CLASS = "live_class"

    @property
    def note_key(self) -> str:
        """Key holding the item id in order notes and request bodies"""
        return _NOTE_KEYS[self]

    @property
    def record_column(self) -> str:
        """PaymentRecord column holding the item id"""
        return _RECORD_COLUMNS[self]


_NOTE_KEYS = {
    ItemType.COURSE: "courseId",
    ItemType.BOOK: "bookId",
    ItemType.LIVE_CLASS: "liveClassId",
}

_RECORD_COLUMNS = {
    ItemType.COURSE: "course_id",
    ItemType.BOOK: "book_id",
    ItemType.LIVE_CLASS: "live_class_id",
}


class ItemRef(BaseModel):
    item_type: ItemType
    item_id: int

    @classmethod
    def from_ids(
        cls,
        item_type: Optional[str],
        course_id: Optional[int] = None,
        book_id: Optional[int] = None,
        live_class_id: Optional[int] = None
    ) -> Optional["ItemRef"]:
        """Build a reference from the loose request fields.

        Returns None when no item id was sent at all. With ``item_type`` the
        matching id must be present; without it exactly one id must be set.
        """
        ids = {
            ItemType.COURSE: course_id,
            ItemType.BOOK: book_id,
            ItemType.LIVE_CLASS: live_class_id,
        }
        present = {t: i for t, i in ids.items() if i is not None}

        if item_type:
            try:
                resolved = ItemType(item_type)
            except ValueError:
                raise InvalidItemReference(details={"item_type": item_type})
            if resolved not in present:
                raise InvalidItemReference(details={"item_type": item_type, "ids": list(present)})
            return cls(item_type=resolved, item_id=present[resolved])

        if not present:
            return None
        if len(present) > 1:
            raise InvalidItemReference(details={"ids": [t.value for t in present]})
        resolved, item_id = next(iter(present.items()))
        return cls(item_type=resolved, item_id=item_id)


class PurchaseIntent(BaseModel):
    """Who is buying what - serialized into gateway order notes"""
    user_id: int
    item: ItemRef

    def to_notes(self) -> Dict[str, str]:
        # Gateway notes only hold strings
        return {
            "userId": str(self.user_id),
            "itemType": self.item.item_type.value,
            self.item.item_type.note_key: str(self.item.item_id),
        }

    @classmethod
    def from_notes(cls, notes: Optional[Mapping[str, Any]]) -> "PurchaseIntent":
        """Parse and validate the notes bag returned by the gateway"""
        if not isinstance(notes, Mapping):
            raise MissingPaymentNotes(details={"notes": None})

        user_id = notes.get("userId")
        item_type = notes.get("itemType")
        if not user_id or not item_type:
            raise MissingPaymentNotes(details={"keys": sorted(notes.keys())})

        try:
            resolved = ItemType(item_type)
        except ValueError:
            raise MissingPaymentNotes(details={"item_type": item_type})

        item_id = notes.get(resolved.note_key)
        if not item_id:
            raise MissingPaymentNotes(details={"item_type": item_type, "missing": resolved.note_key})

        try:
            return cls(user_id=user_id, item=ItemRef(item_type=resolved, item_id=item_id))
        except ValidationError:
            raise MissingPaymentNotes(details={"user_id": user_id, "item_id": item_id})
