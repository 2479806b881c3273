"""Pydantic schemas for payments"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: Optional[float] = None  # major currency unit; overridden by the item price
    currency: Optional[str] = None
    receipt: Optional[str] = None
    notes: Optional[Dict[str, Any]] = None
    course_id: Optional[int] = Field(None, alias="courseId")
    book_id: Optional[int] = Field(None, alias="bookId")
    live_class_id: Optional[int] = Field(None, alias="liveClassId")
    item_type: Optional[str] = Field(None, alias="itemType")


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
