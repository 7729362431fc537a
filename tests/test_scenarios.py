"""Scenario tests against the Flask mock platform.

The mock reproduces the backend quirks the scenarios assert on (200 + ERROR
for a missing coupon, silent code regeneration, ignored duplicate-code
updates), so every scenario here runs its real request sequence offline.
"""
import dataclasses
import time

import pytest

from api_tests import mock_platform_api
from api_tests.mock_platform_api import CATEGORIES, COUPONS, GROUPS
from endpoint_sentinel import payloads, scenarios
from endpoint_sentinel.errors import ContractViolation, IllegalTransition, ScenarioBudgetExceeded
from endpoint_sentinel.scenarios import COUPON, EntityLifecycle, LifecycleState

FULL_LIFECYCLE = [
    LifecycleState.ABSENT,
    LifecycleState.CREATED,
    LifecycleState.VERIFIED,
    LifecycleState.UPDATED,
    LifecycleState.DELETED,
    LifecycleState.VERIFIED_ABSENT,
]


class TestRunContext:
    def test_missing_data_skips(self, empty_ctx):
        with pytest.raises(pytest.skip.Exception):
            scenarios.coupon_create_single_use(empty_ctx)

    @pytest.mark.parametrize("value", [None, [], ""])
    def test_require_skips_on_empty_values(self, empty_ctx, value):
        with pytest.raises(pytest.skip.Exception):
            empty_ctx.require(value, "nothing to work with")

    def test_require_returns_present_value(self, empty_ctx):
        assert empty_ctx.require(0, "zero is a value") == 0

    def test_coupon_index_is_primed_once(self, ctx):
        first = ctx.coupon_index()
        assert len(first.all_group_ids()) == 1
        assert ctx.coupon_index() is first
        assert "coupons" in ctx.cache

    def test_copies_share_the_index_cache(self, ctx):
        copy = dataclasses.replace(ctx, report=ctx.report)
        ctx.media_index()
        assert copy.cache is ctx.cache
        assert "media" in copy.cache

    def test_every_exchange_is_attached(self, ctx, report):
        scenarios.coupon_list(ctx)
        name, payload = report.attachments[0]
        assert name == "coupon-list-01-list"
        assert payload["request"] == "GET /api/coupon"
        assert payload["status"] == 200
        assert payload["body"]["status"] == "OK"

    def test_budget_exceeded_fails_the_scenario(self, ctx):
        hurried = dataclasses.replace(ctx, scenario_timeout=-1)
        with pytest.raises(ScenarioBudgetExceeded):
            scenarios.coupon_list(hurried)

    def test_budget_overrun_on_create_still_removes_the_coupon(self, ctx, monkeypatch):
        group_id = ctx.coupon_index().first_group_id()
        hurried = dataclasses.replace(ctx, scenario_timeout=0.2)
        post = hurried.client.post

        def slow_post(*args, **kwargs):
            response = post(*args, **kwargs)
            time.sleep(0.3)
            return response

        monkeypatch.setattr(hurried.client, "post", slow_post)
        with pytest.raises(ScenarioBudgetExceeded):
            with hurried.scenario("slow-create") as scenario:
                EntityLifecycle(scenario, COUPON).create(payloads.coupon_payload(group_id, reusable=False))
        assert len(COUPONS) == 4

    def test_fixtures_removed_when_scenario_fails(self, ctx):
        group_id = ctx.coupon_index().first_group_id()
        with pytest.raises(ContractViolation):
            with ctx.scenario("failing") as scenario:
                created = EntityLifecycle(scenario, COUPON).create(payloads.coupon_payload(group_id, reusable=False))
                assert created["_id"] in COUPONS
                raise ContractViolation("assertion failed mid-scenario")
        assert created["_id"] not in COUPONS


class TestLifecycle:
    def test_coupon_full_lifecycle(self, ctx):
        result = scenarios.coupon_lifecycle(ctx)
        assert result.states == FULL_LIFECYCLE
        assert result.identifier not in COUPONS
        assert result.updated["detail"].startswith("QA Test - Lifecycle")
        assert result.updated["amount"] == 25

    def test_coupon_lifecycle_detects_a_dropped_update(self, ctx, monkeypatch):
        apply_fields = mock_platform_api._apply_coupon_fields

        def ignore_detail(coupon, form):
            apply_fields(coupon, {key: value for key, value in form.items() if key != "detail"})

        monkeypatch.setattr(mock_platform_api, "_apply_coupon_fields", ignore_detail)
        with pytest.raises(ContractViolation) as excinfo:
            scenarios.coupon_lifecycle(ctx)
        assert excinfo.value.expected.startswith("QA Test - Lifecycle")
        assert len(COUPONS) == 4

    def test_category_full_lifecycle(self, ctx):
        result = scenarios.category_lifecycle(ctx)
        assert result.states == FULL_LIFECYCLE
        assert result.identifier not in CATEGORIES
        assert result.updated["description"].startswith("Updated by QA")

    def test_out_of_order_step_is_illegal(self, ctx):
        with ctx.scenario("illegal") as scenario:
            lifecycle = EntityLifecycle(scenario, COUPON)
            with pytest.raises(IllegalTransition):
                lifecycle.verify()
            with pytest.raises(IllegalTransition):
                lifecycle.delete()

    def test_create_twice_is_illegal(self, ctx):
        group_id = ctx.coupon_index().first_group_id()
        with ctx.scenario("create-twice") as scenario:
            lifecycle = EntityLifecycle(scenario, COUPON)
            lifecycle.create(payloads.coupon_payload(group_id, reusable=False))
            with pytest.raises(IllegalTransition):
                lifecycle.create(payloads.coupon_payload(group_id, reusable=False))
        assert len(COUPONS) == 4


class TestCoupons:
    def test_list(self, ctx):
        assert len(scenarios.coupon_list(ctx)) == 4

    def test_list_with_params(self, ctx):
        results = scenarios.coupon_list_with_params(ctx)
        assert len(results["limit"]) == 2
        assert len(results["page1"]) == 4
        assert results["page2"] == []
        assert len(results["search"]) == 1

    def test_response_time(self, ctx):
        assert scenarios.coupon_response_time(ctx) < scenarios.RESPONSE_TIME_BUDGET

    def test_response_time_over_budget_fails(self, ctx):
        with pytest.raises(ContractViolation):
            scenarios.coupon_response_time(ctx, budget=0)

    def test_single_use_gets_system_code(self, ctx):
        created = scenarios.coupon_create_single_use(ctx)
        assert created["code"]
        assert created["_id"] not in COUPONS

    def test_reusable_keeps_custom_code(self, ctx):
        created = scenarios.coupon_create_reusable_custom_code(ctx)
        assert created["code"].startswith("QA-REUSE-")
        assert created["is_reusable"] is True
        assert len(COUPONS) == 4

    def test_metadata_is_accepted(self, ctx):
        created = scenarios.coupon_create_with_metadata(ctx)
        assert created["percent"] == 20
        assert created["max_use"] == 3

    def test_get_by_id_has_detail_fields(self, ctx):
        record = scenarios.coupon_get_by_id(ctx)
        assert record["is_valid"] is True

    def test_search_by_code(self, ctx):
        found = scenarios.coupon_search_by_code(ctx)
        assert found["_id"] not in COUPONS

    def test_update_applies_new_values(self, ctx):
        updated = scenarios.coupon_update(ctx)
        assert updated["discount_type"] == "amount"
        assert updated["payment_required"] is True


class TestCouponCodeRules:
    def test_duplicate_reusable_code_is_rejected(self, ctx):
        response = scenarios.coupon_duplicate_code_reusable(ctx)
        assert response.status == 400
        assert response.data == scenarios.DUPLICATE_CODE_ERROR
        assert len(COUPONS) == 4

    def test_duplicate_single_use_code_is_regenerated(self, ctx):
        created = scenarios.coupon_duplicate_code_single_use(ctx)
        assert not created["code"].startswith("QA-DUP-")
        assert len(COUPONS) == 4

    def test_update_to_taken_code_is_silently_ignored(self, ctx):
        updated = scenarios.coupon_update_duplicate_code_ignored(ctx)
        assert updated["code"].startswith("QA-ORIG-")
        assert updated["amount"] == 20
        assert len(COUPONS) == 4

    def test_silent_rejection_detected_when_backend_renames(self, ctx, monkeypatch):
        """A backend that renamed the coupon would break the ignored-update rule."""
        monkeypatch.setattr(mock_platform_api, "_coupon_by_code", lambda code: None)
        with pytest.raises(ContractViolation):
            scenarios.coupon_update_duplicate_code_ignored(ctx)
        assert len(COUPONS) == 4


class TestCouponErrors:
    def test_invalid_payload(self, ctx):
        response = scenarios.coupon_invalid_payload(ctx)
        assert response.status == 400
        assert response.domain_status == "ERROR"

    def test_nonexistent_group(self, ctx):
        response = scenarios.coupon_nonexistent_group(ctx)
        assert response.data == "GROUP_NOT_FOUND"
        assert len(COUPONS) == 4

    def test_not_found_is_200_error_null(self, ctx):
        response = scenarios.coupon_not_found(ctx)
        assert (response.status, response.domain_status, response.data) == (200, "ERROR", None)

    def test_search_not_found(self, ctx):
        assert scenarios.coupon_search_not_found(ctx).data is None

    def test_delete_nonexistent(self, ctx):
        response = scenarios.coupon_delete_nonexistent(ctx)
        assert response.data == "COUPON_NOT_FOUND"


class TestCouponGroups:
    def test_group_list_matches_schema(self, ctx):
        groups = scenarios.coupon_group_list_contract(ctx)
        assert {g["name"] for g in groups} == {g["name"] for g in GROUPS.values()}

    def test_coupons_by_subgroup(self, ctx):
        coupons = scenarios.coupons_by_subgroup(ctx)
        assert len(coupons) == 1
        assert coupons[0]["group"]["name"] == "QA Promotions"

    def test_group_list_schema_violation_is_reported(self, ctx, monkeypatch):
        monkeypatch.setitem(mock_platform_api.GROUPS, "broken", {"_id": "broken", "name": 42, "date_created": None})
        with pytest.raises(ContractViolation) as excinfo:
            scenarios.coupon_group_list_contract(ctx)
        assert any("/name" in error for error in excinfo.value.errors)

    def test_subgroup_scenario_skips_without_coupons(self, empty_ctx):
        mock_platform_api.seed_group("Empty")
        with pytest.raises(pytest.skip.Exception):
            scenarios.coupons_by_subgroup(empty_ctx)


class TestCategories:
    def test_list(self, ctx):
        names = {c["name"] for c in scenarios.category_list(ctx)}
        assert names == {"Sports Highlights", "Evening News"}

    def test_structure(self, ctx):
        assert len(scenarios.category_list_structure(ctx)) == 2

    def test_create_is_cleaned_up(self, ctx):
        created = scenarios.category_create(ctx)
        assert created["slug"].startswith("qa-test-category-")
        assert len(CATEGORIES) == 2

    def test_create_with_metadata(self, ctx):
        created = scenarios.category_create_with_metadata(ctx)
        assert created["color"] == "#FF5733"
        assert created["order"] == 10

    def test_media_association(self, ctx):
        listed = scenarios.category_media(ctx)
        assert listed[0]["title"] == "Championship Final Replay"
        assert len(CATEGORIES) == 2

    def test_media_association_sends_the_database_id(self, ctx, report):
        media = next(m for m in mock_platform_api.MEDIA.values() if m["title"] == "Championship Final Replay")
        assert media["id"] != media["_id"]

        scenarios.category_media(ctx)
        associate = [payload for name, payload in report.attachments if name.endswith("-associate")]
        assert associate[0]["status"] == 200
        assert media["_id"] in ctx.media_index().object_ids

    def test_delete_missing_image(self, ctx):
        response = scenarios.category_delete_image(ctx)
        assert response.status == 404

    def test_not_found(self, ctx):
        assert scenarios.category_not_found(ctx).status == 404

    def test_invalid_payload(self, ctx):
        assert scenarios.category_invalid_payload(ctx).status == 400

    def test_duplicate_name(self, ctx):
        response = scenarios.category_duplicate_name(ctx)
        assert response.status == 409
        assert len(CATEGORIES) == 2

    def test_filters(self, ctx):
        results = scenarios.category_filters(ctx)
        assert len(results["limit"]) == 2
        assert len(results["search"]) == 1

    def test_sort_by_name(self, ctx):
        assert scenarios.category_sort(ctx) is True


class TestMedia:
    def test_structure(self, ctx):
        assert len(scenarios.media_list_structure(ctx)) == 4

    def test_extended_structure(self, ctx):
        media = scenarios.media_extended_structure(ctx)
        assert media["is_initialized"] is True

    def test_extended_structure_without_media(self, empty_ctx):
        assert scenarios.media_extended_structure(empty_ctx) is None

    def test_filter_by_id(self, ctx):
        outcome = scenarios.media_filter_by_id(ctx)
        assert outcome.total == outcome.matched == 1

    def test_filter_by_query(self, ctx):
        outcome = scenarios.media_filter_by_query(ctx)
        assert outcome.params["query"] == "Championship"
        assert outcome.matched == 1

    def test_filter_by_type(self, ctx):
        outcome = scenarios.media_filter_by_type(ctx)
        assert outcome.total == outcome.matched == 3

    def test_filter_by_duration(self, ctx):
        outcome = scenarios.media_filter_by_duration(ctx)
        assert (outcome.params["min_duration"], outcome.params["max_duration"]) == (1800, 5400)
        assert outcome.matched == outcome.total == 3

    def test_filter_by_views(self, ctx):
        outcome = scenarios.media_filter_by_views(ctx)
        assert outcome.matched == outcome.total == 4

    def test_pagination(self, ctx):
        first, second = scenarios.media_pagination(ctx)
        assert first.total == 4
        assert second.total == 0

    def test_filter_by_category(self, ctx):
        assert scenarios.media_filter_by_category(ctx).total == 2

    def test_filter_without_category(self, ctx):
        outcome = scenarios.media_filter_without_category(ctx)
        assert [m["title"] for m in outcome.records] == ["Studio Podcast Episode"]

    def test_filter_by_tag(self, ctx):
        assert scenarios.media_filter_by_tag(ctx).total == 2

    def test_filter_published(self, ctx):
        outcome = scenarios.media_filter_published(ctx)
        assert outcome.matched == outcome.total == 3

    def test_filter_count(self, ctx):
        assert scenarios.media_filter_count(ctx).total == 4

    def test_sorted_by_date(self, ctx):
        outcome, descending = scenarios.media_sorted_by_date(ctx)
        assert descending is True
        assert outcome.records[0]["title"] == "Studio Podcast Episode"

    def test_combined_filters(self, ctx):
        outcome = scenarios.media_combined_filters(ctx)
        assert outcome.params["type"] == "video"
        assert outcome.total == 2

    def test_filters_skip_without_media(self, empty_ctx):
        with pytest.raises(pytest.skip.Exception):
            scenarios.media_filter_by_id(empty_ctx)
