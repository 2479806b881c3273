"""Order issuing tests"""
import re
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from app.core.exceptions import (
    AmountMismatch, InvalidAmount, ItemNotChargeable, ItemNotFound, ItemNotPublished, ServiceUnavailable
)
from app.models import Course
from app.schemas.purchase import ItemRef, ItemType
from app.services.gateway_client import PaymentGatewayClient
from app.services.order_service import build_receipt, create_order, to_minor_units
from app.services.webhook_service import process_payment_captured


@pytest.fixture
def mock_gateway():
    gateway = Mock(spec=PaymentGatewayClient)
    gateway.create_order.side_effect = lambda amount, currency, receipt, notes: {
        "id": "order_test123",
        "amount": amount,
        "currency": currency,
        "receipt": receipt,
        "status": "created",
        "created_at": 1700000000,
    }
    return gateway


def _course_ref(course):
    return ItemRef(item_type=ItemType.COURSE, item_id=course.id)


@pytest.mark.critical
class TestPriceAuthority:
    """The server price is what gets charged"""

    def test_course_price_overrides_client_amount(self, mock_gateway, db_session, test_user, course):
        order = create_order(mock_gateway, db_session, test_user.id, 1, item_ref=_course_ref(course))

        assert mock_gateway.create_order.call_args.kwargs["amount"] == 50000
        assert order["amount"] == 50000

    def test_tampered_amount_charges_book_price_in_paise(self, mock_gateway, db_session, test_user, book):
        ref = ItemRef(item_type=ItemType.BOOK, item_id=book.id)
        create_order(mock_gateway, db_session, test_user.id, 1, item_ref=ref)

        assert mock_gateway.create_order.call_args.kwargs["amount"] == 9999

    def test_tampering_is_logged_but_not_blocked(self, mock_gateway, db_session, test_user, course):
        with patch("app.services.order_service.log_security_event") as mock_log:
            create_order(mock_gateway, db_session, test_user.id, 1, item_ref=_course_ref(course))

        event_types = [c.args[0] for c in mock_log.call_args_list]
        assert "PAYMENT_AMOUNT_TAMPERING" in event_types
        assert "PAYMENT_ORDER_CREATED" in event_types
        mock_gateway.create_order.assert_called_once()

    def test_matching_amount_is_not_tampering(self, mock_gateway, db_session, test_user, course):
        with patch("app.services.order_service.log_security_event") as mock_log:
            create_order(mock_gateway, db_session, test_user.id, 500.00, item_ref=_course_ref(course))

        event_types = [c.args[0] for c in mock_log.call_args_list]
        assert "PAYMENT_AMOUNT_TAMPERING" not in event_types

    def test_catalog_items_are_charged_in_configured_currency(self, mock_gateway, db_session, test_user, course):
        create_order(mock_gateway, db_session, test_user.id, 500, currency="usd", item_ref=_course_ref(course))

        assert mock_gateway.create_order.call_args.kwargs["currency"] == "INR"

    def test_no_item_uses_client_amount(self, mock_gateway, db_session, test_user):
        create_order(mock_gateway, db_session, test_user.id, 12.345)

        kwargs = mock_gateway.create_order.call_args.kwargs
        assert kwargs["amount"] == 1235
        assert kwargs["currency"] == "INR"
        assert kwargs["notes"]["userId"] == str(test_user.id)


@pytest.mark.critical
class TestOrderValidation:
    """Test rejected order requests"""

    @pytest.mark.parametrize("amount", [0, -5, None, "abc", float("nan"), float("inf")])
    def test_invalid_amount(self, mock_gateway, db_session, test_user, amount):
        with pytest.raises(InvalidAmount):
            create_order(mock_gateway, db_session, test_user.id, amount)
        mock_gateway.create_order.assert_not_called()

    def test_invalid_amount_rejected_even_with_priced_item(self, mock_gateway, db_session, test_user, course):
        with pytest.raises(InvalidAmount):
            create_order(mock_gateway, db_session, test_user.id, 0, item_ref=_course_ref(course))

    def test_missing_item(self, mock_gateway, db_session, test_user):
        ref = ItemRef(item_type=ItemType.COURSE, item_id=999)
        with pytest.raises(ItemNotFound):
            create_order(mock_gateway, db_session, test_user.id, 100, item_ref=ref)
        mock_gateway.create_order.assert_not_called()

    def test_unpublished_item(self, mock_gateway, db_session, test_user, draft_course):
        with pytest.raises(ItemNotPublished):
            create_order(mock_gateway, db_session, test_user.id, 300, item_ref=_course_ref(draft_course))
        mock_gateway.create_order.assert_not_called()

    def test_free_item_is_not_charged(self, mock_gateway, db_session, test_user):
        free_course = Course(title="Orientation", price=Decimal("0"), is_published=True)
        db_session.add(free_course)
        db_session.commit()

        with patch("app.services.order_service.log_security_event") as mock_log:
            with pytest.raises(ItemNotChargeable) as exc_info:
                create_order(mock_gateway, db_session, test_user.id, 10, item_ref=_course_ref(free_course))

        assert exc_info.value.status_code == 400
        assert mock_log.call_args.kwargs["reason"] == "ITEM_NOT_CHARGEABLE"
        mock_gateway.create_order.assert_not_called()

    def test_disabled_gateway_is_service_unavailable(self, db_session, test_user, course):
        gateway = PaymentGatewayClient(key_id=None, key_secret=None)
        with pytest.raises(ServiceUnavailable) as exc_info:
            create_order(gateway, db_session, test_user.id, 500, item_ref=_course_ref(course))
        assert exc_info.value.status_code == 503


@pytest.mark.high
class TestOrderDetails:
    """Test receipt and notes handling"""

    def test_short_receipt_is_kept(self, mock_gateway, db_session, test_user):
        create_order(mock_gateway, db_session, test_user.id, 10, receipt="rcpt_42")
        assert mock_gateway.create_order.call_args.kwargs["receipt"] == "rcpt_42"

    def test_long_receipt_is_replaced(self, mock_gateway, db_session, test_user):
        create_order(mock_gateway, db_session, test_user.id, 10, receipt="r" * 41)
        receipt = mock_gateway.create_order.call_args.kwargs["receipt"]
        assert re.fullmatch(r"receipt_\d{8}", receipt)

    def test_build_receipt_without_receipt(self):
        assert re.fullmatch(r"receipt_\d{8}", build_receipt(None))
        assert build_receipt("x" * 40) == "x" * 40

    def test_client_cannot_override_purchase_notes(self, mock_gateway, db_session, test_user, course):
        notes = {"userId": "999", "itemType": "book", "bookId": "1", "coupon": "SPRING"}
        create_order(mock_gateway, db_session, test_user.id, 500, notes=notes, item_ref=_course_ref(course))

        sent = mock_gateway.create_order.call_args.kwargs["notes"]
        assert sent == {
            "coupon": "SPRING",
            "userId": str(test_user.id),
            "itemType": "course",
            "courseId": str(course.id),
        }

    def test_to_minor_units_rounds_half_up(self):
        assert to_minor_units(Decimal("99.99")) == 9999
        assert to_minor_units(Decimal("0.005")) == 1
        assert to_minor_units(Decimal("500")) == 50000


@pytest.mark.critical
class TestOrderReconciliation:
    """Orders are priced exactly as the webhook will check them"""

    @pytest.mark.parametrize("fixture_name,item_type", [
        ("course", ItemType.COURSE),
        ("book", ItemType.BOOK),
        ("live_class", ItemType.LIVE_CLASS),
    ])
    def test_order_amount_passes_capture_check(
        self, request, mock_gateway, db_session, test_user, payment_event, fixture_name, item_type
    ):
        item = request.getfixturevalue(fixture_name)
        create_order(mock_gateway, db_session, test_user.id, 1, item_ref=ItemRef(item_type=item_type, item_id=item.id))
        sent = mock_gateway.create_order.call_args.kwargs

        event = payment_event(order_id="order_test123", amount=sent["amount"], notes=sent["notes"])
        result = process_payment_captured(event, db_session)

        assert result.processed is True

    def test_free_item_capture_is_rejected(self, db_session, test_user, payment_event):
        """A zero-priced item never matches a captured amount"""
        free_course = Course(title="Orientation", price=Decimal("0"), is_published=True)
        db_session.add(free_course)
        db_session.commit()
        notes = {"userId": str(test_user.id), "itemType": "course", "courseId": str(free_course.id)}

        with pytest.raises(AmountMismatch):
            process_payment_captured(payment_event(amount=1000, notes=notes), db_session)
