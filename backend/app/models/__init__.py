"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.user import User
from app.models.course import Course
from app.models.book import Book
from app.models.live_class import LiveClass
from app.models.entitlement import Entitlement
from app.models.payment_record import PaymentRecord

# Export all for convenience
__all__ = [
    "Base", "User", "Course", "Book", "LiveClass", "Entitlement", "PaymentRecord"
]
