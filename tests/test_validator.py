"""Tests for response contract assertions and schema validation."""
import json

import pytest

from endpoint_sentinel import validator as validator_module
from endpoint_sentinel.api_client import ResponseEnvelope
from endpoint_sentinel.errors import ConfigurationError, ContractViolation
from endpoint_sentinel.validator import ContractValidator, EntityKind, SchemaRegistry


def _envelope(status=200, domain="OK", data=None, method="GET", url="/api/test"):
    body = {"status": domain, "data": data} if domain is not None else data
    return ResponseEnvelope(method, url, status, body)


@pytest.fixture
def validator():
    return ContractValidator()


class TestStatus:
    def test_matching_status_passes(self, validator):
        response = _envelope(data=[])
        assert validator.expect_status(response, 200) is response

    def test_transport_mismatch_reports_expected_and_actual(self, validator):
        with pytest.raises(ContractViolation) as excinfo:
            validator.expect_status(_envelope(status=500), (200, 204))
        assert excinfo.value.expected == [200, 204]
        assert excinfo.value.actual == 500

    def test_domain_mismatch_fails(self, validator):
        with pytest.raises(ContractViolation) as excinfo:
            validator.expect_ok(_envelope(domain="ERROR"))
        assert excinfo.value.actual == "ERROR"

    def test_domain_check_skipped_when_body_has_no_status(self, validator):
        validator.expect_ok(_envelope(domain=None, data=["raw"]))

    def test_violation_is_an_assertion_error(self, validator):
        with pytest.raises(AssertionError):
            validator.expect_status(_envelope(status=404), 200)


class TestLists:
    def test_list_with_required_fields(self, validator):
        records = [{"_id": "1", "name": "News", "slug": "news", "date_created": "x", "visible": True}]
        assert validator.expect_list(_envelope(data=records), EntityKind.CATEGORY) == records

    def test_missing_field_is_named(self, validator):
        with pytest.raises(ContractViolation) as excinfo:
            validator.expect_list(_envelope(data=[{"_id": "1", "name": "News"}]), EntityKind.CATEGORY)
        assert "missing: slug" in excinfo.value.errors
        assert "missing: visible" in excinfo.value.errors

    def test_sample_limits_checked_elements(self, validator):
        records = [{"_id": "1", "group": "g", "code": "A", "date_created": "x"}, {"broken": True}]
        validator.expect_list(_envelope(data=records), EntityKind.COUPON, sample=1)
        with pytest.raises(ContractViolation):
            validator.expect_list(_envelope(data=records), EntityKind.COUPON)

    def test_non_array_payload_fails(self, validator):
        with pytest.raises(ContractViolation):
            validator.expect_list(_envelope(data={"_id": "1"}))

    def test_limit_enforced(self, validator):
        with pytest.raises(ContractViolation):
            validator.expect_list(_envelope(data=[{}, {}, {}]), max_length=2)

    def test_record_unwraps_single_element_list(self, validator):
        assert validator.expect_record(_envelope(data=[{"_id": "1"}])) == {"_id": "1"}


class TestNotFound:
    def test_platform_not_found_shape(self, validator):
        validator.expect_not_found(_envelope(domain="ERROR", data=None))

    def test_ok_with_null_is_not_a_coupon_not_found(self, validator):
        with pytest.raises(ContractViolation):
            validator.expect_not_found(_envelope(domain="OK", data=None))

    def test_payload_present_fails(self, validator):
        with pytest.raises(ContractViolation):
            validator.expect_not_found(_envelope(domain="ERROR", data={"_id": "1"}))

    def test_http_404_only_when_allowed(self, validator):
        response = _envelope(status=404, domain="ERROR", data=None)
        validator.expect_not_found(response, allow_http_404=True)
        with pytest.raises(ContractViolation):
            validator.expect_not_found(response)

    def test_untagged_null_accepted_without_domain_check(self, validator):
        validator.expect_not_found(_envelope(domain="OK", data=None), domain_status=None)

    def test_empty_match_accepts_null_and_empty_list(self, validator):
        validator.expect_empty_match(_envelope(data=None))
        validator.expect_empty_match(_envelope(data=[]))
        with pytest.raises(ContractViolation):
            validator.expect_empty_match(_envelope(data=[{"_id": "1"}]))


class TestErrors:
    def test_error_with_expected_payload(self, validator):
        response = _envelope(status=400, domain="ERROR", data="COUPON_CODE_ALREADY_EXISTS")
        validator.expect_error(response, 400, "COUPON_CODE_ALREADY_EXISTS")

    def test_error_without_explanation_fails(self, validator):
        with pytest.raises(ContractViolation):
            validator.expect_error(_envelope(status=400, domain="ERROR", data=None), 400)

    def test_wrong_error_payload_fails(self, validator):
        with pytest.raises(ContractViolation) as excinfo:
            validator.expect_error(_envelope(status=400, domain="ERROR", data="OTHER"), 400, "EXPECTED")
        assert excinfo.value.actual == "OTHER"


class TestTypes:
    def test_bool_is_not_a_number(self, validator):
        with pytest.raises(ContractViolation) as excinfo:
            validator.expect_types({"amount": True}, {"amount": int})
        assert excinfo.value.errors == ["amount: boolean"]

    def test_tuple_of_types(self, validator):
        validator.expect_types({"amount": 2.5}, {"amount": (int, float)})
        with pytest.raises(ContractViolation) as excinfo:
            validator.expect_types({"amount": "2.5"}, {"amount": (int, float)})
        assert excinfo.value.expected == {"amount": "number"}

    def test_equal_and_not_equal(self, validator):
        validator.expect_equal("code", "A", "A")
        validator.expect_not_equal("code", "A", "B")
        with pytest.raises(ContractViolation):
            validator.expect_equal("code", "A", "B")
        with pytest.raises(ContractViolation):
            validator.expect_not_equal("code", "A", "A")


class TestSchemas:
    @pytest.fixture
    def registry(self, tmp_path):
        schema = {
            "$schema": "http://json-schema.org/draft-07/schema#",
            "type": "object",
            "required": ["status", "data"],
            "properties": {
                "status": {"enum": ["OK"]},
                "data": {"type": "array", "items": {"type": "object", "required": ["_id", "name"]}},
            },
        }
        (tmp_path / "things").mkdir()
        (tmp_path / "things" / "list.schema.json").write_text(json.dumps(schema))
        return SchemaRegistry(tmp_path)

    def test_conforming_body_passes(self, registry):
        ContractValidator(registry).expect_schema(_envelope(data=[{"_id": "1", "name": "a"}]), "things/list")

    def test_every_error_is_reported(self, registry):
        body = _envelope(domain="ERROR", data=[{"_id": "1"}, {"name": "b"}])
        with pytest.raises(ContractViolation) as excinfo:
            ContractValidator(registry).expect_schema(body, "things/list")

        errors = excinfo.value.errors
        assert len(errors) == 3
        assert any(error.startswith("/status:") for error in errors)
        assert any(error.startswith("/data/0:") and "'name'" in error for error in errors)
        assert any(error.startswith("/data/1:") and "'_id'" in error for error in errors)

    def test_missing_schema_raises(self, registry):
        with pytest.raises(FileNotFoundError):
            registry.get("things/absent")

    def test_validator_without_registry_refuses_schema_checks(self):
        with pytest.raises(RuntimeError):
            ContractValidator().expect_schema({}, "things/list")

    def test_shipped_schemas_are_valid_documents(self, config):
        registry = SchemaRegistry(config.schema_dir)
        registry.get("coupons/group-list")
        registry.get("coupons/coupons-by-subgroup")

    def test_registry_refuses_to_run_without_format_checkers(self, tmp_path, monkeypatch):
        monkeypatch.setattr(validator_module, "REQUIRED_FORMATS", ("date-time", "no-such-format"))
        with pytest.raises(ConfigurationError) as excinfo:
            SchemaRegistry(tmp_path)
        assert "no-such-format" in str(excinfo.value)

    def test_date_time_format_is_enforced(self, config):
        validator = ContractValidator(SchemaRegistry(config.schema_dir))
        good = {"status": "OK", "data": [{"_id": "g1", "name": "x", "date_created": "2025-08-01T08:00:00.000Z"}]}
        bad = {"status": "OK", "data": [{"_id": "g1", "name": "x", "date_created": "not-a-date"}]}

        validator.expect_schema(good, "coupons/group-list")
        with pytest.raises(ContractViolation) as excinfo:
            validator.expect_schema(bad, "coupons/group-list")
        assert excinfo.value.errors == ["/data/0/date_created: 'not-a-date' is not a 'date-time'"]
