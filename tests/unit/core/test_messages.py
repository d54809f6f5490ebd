"""
Unit Tests for bus message contracts

Usage:
    pytest tests/unit/core/test_messages.py -v
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from core.errors import PermanentError
from core.messages import (
    MESSAGE_TYPES, OrderCancelledMessage, OrderItemPayload, PaymentCompletedMessage,
    message_type_of, parse_message,
)


class TestEnvelope:

    def test_envelope_fields(self):
        message = OrderCancelledMessage(order_id="order_1", user_id="usr_1", sender="order_service")

        envelope = message.to_envelope()

        assert envelope["message_type"] == "order_cancelled"
        assert envelope["sender"] == "order_service"
        assert envelope["version"] == "1.0"
        assert envelope["message_id"]
        assert envelope["created_at"]

    def test_message_ids_are_unique(self):
        first = OrderCancelledMessage(order_id="order_1", user_id="usr_1")
        second = OrderCancelledMessage(order_id="order_1", user_id="usr_1")

        assert first.message_id != second.message_id

    def test_decimals_travel_as_strings(self):
        item = OrderItemPayload(product_id="prod_1", quantity=1, unit_price=Decimal("9.99"))
        message = OrderCancelledMessage(order_id="order_1", user_id="usr_1", items=[item])

        assert message.to_envelope()["items"][0]["unit_price"] == "9.99"


class TestParseMessage:

    def test_parse_resolves_concrete_type(self):
        original = PaymentCompletedMessage(
            transaction_id="txn_1", order_id="order_1", user_id="usr_1",
            amount=Decimal("10.00"), provider="mock",
        )

        parsed = parse_message(original.to_envelope())

        assert isinstance(parsed, PaymentCompletedMessage)
        assert parsed.message_id == original.message_id
        assert parsed.amount == Decimal("10.00")

    def test_unknown_fields_are_ignored(self):
        envelope = OrderCancelledMessage(order_id="order_1", user_id="usr_1").to_envelope()
        envelope["added_in_v2"] = True

        assert parse_message(envelope).order_id == "order_1"

    @pytest.mark.parametrize("envelope", [
        {"message_type": "order_shipped"},
        {"order_id": "order_1"},
        "not a dict",
    ])
    def test_unknown_type_is_permanent(self, envelope):
        with pytest.raises(PermanentError):
            parse_message(envelope)

    def test_missing_required_field(self):
        with pytest.raises(PydanticValidationError):
            parse_message({"message_type": "payment_completed", "order_id": "order_1"})

    def test_registry_keys_match_models(self):
        for message_type, model in MESSAGE_TYPES.items():
            assert message_type_of(model) == message_type
