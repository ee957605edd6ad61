"""
Unit Tests for NBA Models and Boundary Validation

Tests request validation, rule value typing, template token extraction
and translation of validation failures into service errors.
"""

import pytest
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.nba.data_contract import (
    ActionConfig,
    BenefitConfig,
    Condition,
    Customer,
    NbaGeneralRequest,
    NbaGeneralRequestBuilder,
    NbaTestDataFactory,
    RuleField,
    RuleOperator,
)
from microservices.nba_service.nba_service import extract_tokens, parse_request
from microservices.nba_service.protocols import NbaValidationError


class TestNbaGeneralRequest:
    """Tests for general details validation"""

    def test_valid_request(self):
        request = NbaGeneralRequestBuilder().with_name("  Card Reminder  ").with_priority(2).build()
        assert request.name == "Card Reminder"
        assert request.priority == 2

    def test_start_must_precede_end(self):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError) as exc_info:
            NbaGeneralRequestBuilder().with_window(now, now).build()
        assert "Start Date must be before End Date" in str(exc_info.value)

    @pytest.mark.parametrize("priority", [0, 11])
    def test_priority_range(self, priority):
        with pytest.raises(ValidationError):
            NbaGeneralRequestBuilder().with_priority(priority).build()

    @pytest.mark.parametrize("weight", [0.05, 10.5])
    def test_weight_range(self, weight):
        with pytest.raises(ValidationError):
            NbaGeneralRequestBuilder().with_weight(weight).build()

    def test_short_name_rejected(self):
        with pytest.raises(ValidationError):
            NbaGeneralRequestBuilder().with_name("ab").build()

    def test_naive_dates_become_utc(self):
        start = datetime(2025, 1, 1)
        request = NbaGeneralRequestBuilder().with_window(start, start + timedelta(days=5)).build()
        assert request.start_date.tzinfo == timezone.utc
        assert request.end_date.tzinfo == timezone.utc


class TestSubConfigValidation:
    """Tests for action and benefit bounds"""

    def test_action_requires_sale_channel(self):
        with pytest.raises(ValidationError):
            ActionConfig(completion_event="done", sale_channels=[])

    def test_action_completion_event_is_stripped(self):
        action = NbaTestDataFactory.make_action(completion_event="  payment_updated ")
        assert action.completion_event == "payment_updated"

    def test_action_offer_priority_bounds(self):
        with pytest.raises(ValidationError):
            NbaTestDataFactory.make_action(offer_priority=11)

    def test_benefit_value_must_be_positive(self):
        with pytest.raises(ValidationError):
            NbaTestDataFactory.make_benefit(value_number=0)

    def test_benefit_description_length(self):
        with pytest.raises(ValidationError):
            NbaTestDataFactory.make_benefit(description="x" * 241)

    def test_benefit_defaults(self):
        benefit = NbaTestDataFactory.make_benefit()
        assert isinstance(benefit, BenefitConfig)
        assert benefit.stackability.allowed is False
        assert benefit.excluded_offer_ids == []


class TestConditionValues:
    """Rule values keep their JSON type"""

    def test_boolean_value_stays_boolean(self):
        condition = Condition(field=RuleField.CONSENT_SMS, op=RuleOperator.EQ, value=True)
        assert condition.value is True

    def test_integer_value_stays_integer(self):
        condition = Condition(field=RuleField.TENURE_MONTHS, op=RuleOperator.GT, value=12)
        assert condition.value == 12
        assert not isinstance(condition.value, bool)

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            Condition.model_validate({"field": "favourite_colour", "op": "=", "value": "red"})

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValidationError):
            Condition.model_validate({"field": "plan", "op": "~=", "value": "basic"})


class TestCustomer:

    def test_defaults(self):
        customer = Customer(customer_id="cus_1")
        assert customer.risk_flags == []
        assert customer.consent_sms is False
        assert customer.credit_card_exp_at is None


class TestExtractTokens:
    """Tests for {{token}} extraction"""

    def test_sorted_and_deduplicated(self):
        text = "Hi {{first_name}}, {{ credit }} waiting. Bye {{first_name}}"
        assert extract_tokens(text) == ["credit", "first_name"]

    def test_no_tokens(self):
        assert extract_tokens("Plain text") == []

    def test_unclosed_braces_ignored(self):
        assert extract_tokens("{{first_name") == []


class TestParseRequest:
    """Validation errors surface as NbaValidationError with the field path"""

    def test_returns_model_instance_untouched(self):
        request = NbaGeneralRequestBuilder().build()
        assert parse_request(NbaGeneralRequest, request) is request

    def test_dict_is_validated(self):
        data = NbaGeneralRequestBuilder().build_dict()
        assert isinstance(parse_request(NbaGeneralRequest, data), NbaGeneralRequest)

    def test_error_names_field(self):
        data = NbaGeneralRequestBuilder().with_priority(42).build_dict()
        with pytest.raises(NbaValidationError) as exc_info:
            parse_request(NbaGeneralRequest, data)
        assert exc_info.value.field == "priority"

    def test_nested_error_path(self):
        with pytest.raises(NbaValidationError) as exc_info:
            parse_request(ActionConfig, {"completion_event": "done", "sale_channels": ["Moon"]})
        assert exc_info.value.field == "sale_channels.0"
