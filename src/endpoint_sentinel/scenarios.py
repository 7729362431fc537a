"""Scenario orchestration for the platform contract suites.

A scenario is one self-contained conversation with the backend: it picks its
parameters from the Extracted Index, creates whatever fixtures it needs,
asserts the responses and always cleans up after itself.

    ctx = RunContext.from_config(load_config())
    coupon_create_single_use(ctx)

`RunContext` is built once per run by the suite driver and handed to every
scenario; nothing here keeps module-level state. Scenario functions raise
ContractViolation on a broken contract, call ``pytest.skip`` when the backend
lacks the data they need, and return what they observed so callers can make
further assertions.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import pytest

from endpoint_sentinel import payloads
from endpoint_sentinel.api_client import DOMAIN_ERROR, ApiClient, ResponseEnvelope
from endpoint_sentinel.cleanup import CATEGORY_ENDPOINT, COUPON_ENDPOINT, CleanupCoordinator, Fixture
from endpoint_sentinel.config import DEFAULT_SCENARIO_TIMEOUT, HarnessConfig
from endpoint_sentinel.data_manager import MediaIndex, TestDataManager, resolve_relation
from endpoint_sentinel.errors import ContractViolation, IllegalTransition, ScenarioBudgetExceeded
from endpoint_sentinel.reporting import NullReportSink, ReportSink
from endpoint_sentinel.validator import (
    MEDIA_EXTENDED_FIELDS,
    ContractValidator,
    EntityKind,
    SchemaRegistry,
    first_matching,
)

logger = logging.getLogger(__name__)

COUPONS = "/api/coupon"
COUPON_SEARCH = "/api/coupon/{code}/search"
COUPON_GROUPS = "/api/coupon-group"
COUPON_GROUP = "/api/coupon-group/{id}"
CATEGORIES = "/api/category"
CATEGORY_MEDIA = "/api/category/{id}/media"
CATEGORY_IMAGE = "/api/category/{id}/image"
MEDIA = "/api/media"

GROUP_LIST_SCHEMA = "coupons/group-list"
COUPONS_BY_SUBGROUP_SCHEMA = "coupons/coupons-by-subgroup"

DUPLICATE_CODE_ERROR = "COUPON_CODE_ALREADY_EXISTS"
RESPONSE_TIME_BUDGET = 5.0
PRIME_LIMIT = 50


# ---- run context / scenario ---------------------------------------------------
@dataclass
class RunContext:
    """Everything a scenario needs, owned by the suite driver."""

    client: ApiClient
    validator: ContractValidator
    data: TestDataManager
    report: ReportSink = field(default_factory=NullReportSink)
    scenario_timeout: float = DEFAULT_SCENARIO_TIMEOUT
    # Shared between copies made with dataclasses.replace(); holds lazily built indexes.
    cache: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_config(
        cls,
        config: HarnessConfig,
        client: ApiClient | None = None,
        report: ReportSink | None = None,
    ) -> "RunContext":
        if config.seed is not None:
            logger.info("Random fixture selection seeded with SENTINEL_SEED=%s", config.seed)
        return cls(
            client=client or ApiClient.from_config(config),
            validator=ContractValidator(SchemaRegistry(config.schema_dir)),
            data=TestDataManager(seed=config.seed),
            report=report or NullReportSink(),
            scenario_timeout=config.scenario_timeout,
        )

    @contextmanager
    def scenario(self, name: str) -> Iterator["Scenario"]:
        """Run a scenario body; its fixtures are flushed on every exit path."""
        scenario = Scenario(name, self)
        logger.info("Scenario started: %s", name)
        with scenario.cleanup.scope():
            yield scenario
        logger.info("Scenario finished: %s (%d calls)", name, scenario.calls)

    def require(self, value: Any, reason: str) -> Any:
        """Return `value`, or skip the current test when it is missing."""
        if value is None or value == [] or value == "":
            logger.warning("Skipping: %s", reason)
            pytest.skip(reason)
        return value

    def coupon_index(self, refresh: bool = False) -> TestDataManager:
        """Extracted Index over the first page of coupons, primed on first use."""
        if refresh or "coupons" not in self.cache:
            response = self.client.get(COUPONS, {"limit": PRIME_LIMIT})
            self.validator.expect_list(response)
            self.data.ingest(response)
            self.cache["coupons"] = True
        return self.data

    def media_index(self, refresh: bool = False) -> MediaIndex:
        if refresh or "media" not in self.cache:
            response = self.client.get(MEDIA, {"limit": PRIME_LIMIT, "offset": 0})
            self.validator.expect_list(response)
            self.cache["media"] = MediaIndex.from_response(response)
        return self.cache["media"]


class Scenario:
    """One scenario run: budgeted calls, attachment of every exchange, fixture ledger."""

    def __init__(self, name: str, ctx: RunContext) -> None:
        self.name = name
        self.ctx = ctx
        self.validator = ctx.validator
        self.cleanup = CleanupCoordinator(ctx.client)
        self.budget = ctx.scenario_timeout
        self.started = time.monotonic()
        self.calls = 0

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def _check_budget(self) -> None:
        if self.elapsed > self.budget:
            raise ScenarioBudgetExceeded(
                f"Scenario '{self.name}' exceeded its wall-clock budget",
                expected=f"<= {self.budget:.0f}s",
                actual=f"{self.elapsed:.1f}s",
            )

    def _exchange(self, label: str, call, *args, on_response=None) -> ResponseEnvelope:
        self._check_budget()
        response = call(*args)
        self.calls += 1
        if on_response is not None:
            # Runs before the budget check so a created entity is always in the ledger.
            on_response(response)
        self.ctx.report.attach(
            f"{self.name}-{self.calls:02d}-{label}",
            {
                "request": f"{response.method} {response.url}",
                "status": response.status,
                "elapsed_ms": round(response.elapsed * 1000),
                "body": response.body,
            },
        )
        self._check_budget()
        return response

    def get(self, endpoint: str, params: Mapping[str, Any] | None = None, label: str = "get") -> ResponseEnvelope:
        return self._exchange(label, self.ctx.client.get, endpoint, params)

    def post(self, endpoint: str, form: Mapping[str, Any] | None = None, label: str = "post") -> ResponseEnvelope:
        return self._exchange(label, self.ctx.client.post, endpoint, form)

    def create(
        self,
        collection: str,
        form: Mapping[str, Any] | None,
        item: str = COUPON_ENDPOINT,
        label: str = "create",
        fixture_label: str = "unexpected",
    ) -> ResponseEnvelope:
        """POST to a collection and track whatever it created, even when that was not meant to happen."""
        return self._exchange(
            label,
            self.ctx.client.post,
            collection,
            form,
            on_response=lambda response: self.track_created(response, item, fixture_label),
        )

    def delete(self, endpoint: str, label: str = "delete") -> ResponseEnvelope:
        return self._exchange(label, self.ctx.client.delete, endpoint)

    def track(self, identifier: str, endpoint: str = COUPON_ENDPOINT, label: str = "") -> Fixture:
        return self.cleanup.track(identifier, endpoint, label)

    def release(self, identifier: str) -> bool:
        return self.cleanup.release(identifier)

    def track_created(
        self, response: ResponseEnvelope, endpoint: str = COUPON_ENDPOINT, label: str = "unexpected"
    ) -> Optional[str]:
        """Track whatever a create call returned, even when the call was meant to fail."""
        record = response.first() if response.is_ok else None
        identifier = resolve_relation(record.get("_id")) if record else None
        if identifier:
            self.track(identifier, endpoint, label=label)
        return identifier


# ---- entity lifecycle ---------------------------------------------------------
class LifecycleState(str, Enum):
    ABSENT = "absent"
    CREATED = "created"
    VERIFIED = "verified"
    UPDATED = "updated"
    DELETED = "deleted"
    VERIFIED_ABSENT = "verified-absent"


@dataclass(frozen=True)
class EntitySpec:
    """Endpoints and tolerances of one entity type."""

    name: str
    collection: str
    item: str
    kind: EntityKind
    update_statuses: Tuple[int, ...] = (200,)
    delete_statuses: Tuple[int, ...] = (200, 204)
    not_found_allows_404: bool = False
    # Tag a 200 "not found" must carry; None means only the null payload is checked.
    not_found_domain: Optional[str] = DOMAIN_ERROR

    def item_path(self, identifier: str) -> str:
        return self.item.format(id=identifier)


COUPON = EntitySpec("coupon", COUPONS, COUPON_ENDPOINT, EntityKind.COUPON)
CATEGORY = EntitySpec(
    "category",
    CATEGORIES,
    CATEGORY_ENDPOINT,
    EntityKind.CATEGORY,
    update_statuses=(200, 204),
    not_found_allows_404=True,
    not_found_domain=None,
)


@dataclass
class LifecycleResult:
    identifier: str
    created: Dict[str, Any]
    updated: Dict[str, Any]
    states: List[LifecycleState]


class EntityLifecycle:
    """Drives absent -> created -> verified -> updated -> deleted -> verified-absent."""

    _TRANSITIONS: Dict[str, Tuple[Tuple[LifecycleState, ...], LifecycleState]] = {
        "create": ((LifecycleState.ABSENT,), LifecycleState.CREATED),
        "verify": ((LifecycleState.CREATED,), LifecycleState.VERIFIED),
        "update": ((LifecycleState.VERIFIED,), LifecycleState.UPDATED),
        "delete": ((LifecycleState.VERIFIED, LifecycleState.UPDATED), LifecycleState.DELETED),
        "verify_absent": ((LifecycleState.DELETED,), LifecycleState.VERIFIED_ABSENT),
    }

    def __init__(self, scenario: Scenario, spec: EntitySpec) -> None:
        self.scenario = scenario
        self.spec = spec
        self.validator = scenario.validator
        self.state = LifecycleState.ABSENT
        self.history: List[LifecycleState] = [self.state]
        self.identifier: Optional[str] = None
        self.record: Dict[str, Any] = {}

    def _enter(self, step: str) -> None:
        allowed, _ = self._TRANSITIONS[step]
        if self.state not in allowed:
            raise IllegalTransition(
                f"{self.spec.name}: cannot {step} from state '{self.state.value}'"
            )

    def _advance(self, step: str) -> None:
        _, target = self._TRANSITIONS[step]
        logger.debug("%s %s: %s -> %s", self.spec.name, self.identifier, self.state.value, target.value)
        self.state = target
        self.history.append(target)

    @property
    def path(self) -> str:
        return self.spec.item_path(self.identifier or "")

    def create(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        self._enter("create")
        response = self.scenario.create(
            self.spec.collection,
            payload,
            self.spec.item,
            label=f"create-{self.spec.name}",
            fixture_label=self.spec.name,
        )
        record = self.validator.expect_record(response, self.spec.kind)
        self.identifier = resolve_relation(record.get("_id"))
        if not self.identifier:
            raise ContractViolation(
                f"{self.spec.name} create returned no identifier",
                expected="_id",
                actual=record,
                payload=response.body,
            )
        self.record = dict(record)
        logger.info("Created %s %s", self.spec.name, self.identifier)
        self._advance("create")
        return self.record

    def verify(self) -> Dict[str, Any]:
        """Identity round-trip: GET by the captured id returns that same id."""
        self._enter("verify")
        response = self.scenario.get(self.path, label=f"verify-{self.spec.name}")
        record = self.validator.expect_record(response, self.spec.kind)
        self.validator.expect_equal(
            f"{self.spec.name} identity round-trip",
            self.identifier,
            resolve_relation(record.get("_id")),
            payload=response.body,
        )
        self.record = dict(record)
        self._advance("verify")
        return self.record

    def update(
        self,
        payload: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
        reread: bool = False,
    ) -> Dict[str, Any]:
        """POST the update; every key in `expect` must read back with that value.

        The record is re-fetched when `reread` is set or when the update
        response carries no record (a 204, or an empty OK).
        """
        self._enter("update")
        response = self.scenario.post(self.path, payload, label=f"update-{self.spec.name}")
        self.validator.expect_status(response, self.spec.update_statuses)
        record = response.first()
        if reread or record is None:
            record = self.validator.expect_record(
                self.scenario.get(self.path, label=f"reread-{self.spec.name}"), self.spec.kind
            )
        for key, value in (expect or {}).items():
            self.validator.expect_equal(f"{self.spec.name}.{key} after update", value, record.get(key), payload=record)
        self.record = dict(record)
        self._advance("update")
        return self.record

    def delete(self) -> ResponseEnvelope:
        self._enter("delete")
        response = self.scenario.delete(self.path, label=f"delete-{self.spec.name}")
        self.validator.expect_status(response, self.spec.delete_statuses)
        self.scenario.release(self.identifier)
        self._advance("delete")
        return response

    def verify_absent(self, confirmations: int = 2) -> None:
        """Re-GET until the not-found contract holds `confirmations` times in a row."""
        self._enter("verify_absent")
        for attempt in range(confirmations):
            response = self.scenario.get(self.path, label=f"verify-absent-{self.spec.name}-{attempt + 1}")
            self.validator.expect_not_found(
                response,
                allow_http_404=self.spec.not_found_allows_404,
                domain_status=self.spec.not_found_domain,
            )
        self._advance("verify_absent")

    def run(
        self,
        create_payload: Mapping[str, Any],
        update_payload: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
        reread: bool = False,
    ) -> LifecycleResult:
        created = self.create(create_payload)
        self.verify()
        updated = self.update(update_payload, expect=expect, reread=reread)
        self.delete()
        self.verify_absent()
        return LifecycleResult(self.identifier, created, updated, list(self.history))


# ---- coupons ------------------------------------------------------------------
def _group_id(ctx: RunContext) -> str:
    return ctx.require(ctx.coupon_index().random_group_id(), "no coupon group ids available in the coupon listing")


def _create_coupon(scenario: Scenario, payload: Mapping[str, Any]) -> Dict[str, Any]:
    lifecycle = EntityLifecycle(scenario, COUPON)
    return lifecycle.create(payload)


def coupon_list(ctx: RunContext) -> List[Dict[str, Any]]:
    """GET /api/coupon: OK + array, required fields on every record."""
    with ctx.scenario("coupon-list") as scenario:
        return ctx.validator.expect_list(scenario.get(COUPONS, label="list"), EntityKind.COUPON)


def coupon_list_with_params(ctx: RunContext) -> Dict[str, List[Dict[str, Any]]]:
    """Pagination, limit, date, search and sort parameters all answer OK + array."""
    results: Dict[str, List[Dict[str, Any]]] = {}
    with ctx.scenario("coupon-list-params") as scenario:
        validator = ctx.validator
        results["page1"] = validator.expect_list(scenario.get(COUPONS, {"page": 1, "limit": 5}), max_length=5)
        results["page2"] = validator.expect_list(scenario.get(COUPONS, {"page": 2, "limit": 5}), max_length=5)
        results["limit"] = validator.expect_list(scenario.get(COUPONS, {"limit": 2}), max_length=2)
        results["date"] = _ok_list(validator, scenario.get(COUPONS, {"date": date.today().isoformat()}))
        results["sort"] = validator.expect_list(scenario.get(COUPONS, {"sort": "date_created", "order": "desc"}))

        sample = validator.expect_list(scenario.get(COUPONS, {"limit": 1}))
        if sample and sample[0].get("code"):
            results["search"] = _ok_list(validator, scenario.get(COUPONS, {"search": sample[0]["code"]}))
    return results


def coupon_response_time(ctx: RunContext, budget: float = RESPONSE_TIME_BUDGET) -> float:
    with ctx.scenario("coupon-response-time") as scenario:
        response = scenario.get(COUPONS, label="list")
        ctx.validator.expect_status(response, 200, None)
        logger.info("GET %s answered in %.0f ms", COUPONS, response.elapsed * 1000)
        if response.elapsed >= budget:
            raise ContractViolation(
                f"{COUPONS} is too slow",
                expected=f"< {budget}s",
                actual=f"{response.elapsed:.2f}s",
                payload=response.body,
            )
        return response.elapsed


def coupon_create_single_use(ctx: RunContext) -> Dict[str, Any]:
    """Non-reusable coupon: created, a system code assigned, detail fields present."""
    group_id = _group_id(ctx)
    with ctx.scenario("coupon-create-single-use") as scenario:
        created = _create_coupon(scenario, payloads.coupon_payload(group_id, reusable=False))
        ctx.validator.expect_types(created, {"_id": str, "code": str})
        return created


def coupon_create_reusable_custom_code(ctx: RunContext, **extra: Any) -> Dict[str, Any]:
    """Reusable coupon with a caller-chosen code: the code is kept verbatim."""
    group_id = _group_id(ctx)
    code = f"QA-REUSE-{payloads.unique_suffix()}"
    with ctx.scenario("coupon-create-reusable") as scenario:
        created = _create_coupon(scenario, payloads.coupon_payload(group_id, reusable=True, custom_code=code, **extra))
        ctx.validator.expect_equal("custom code kept on a reusable coupon", code, created.get("code"), payload=created)
        return created


def coupon_create_with_metadata(ctx: RunContext) -> Dict[str, Any]:
    return coupon_create_reusable_custom_code(
        ctx,
        percent=20,
        max_use=3,
        metadata='{"test_type": "comprehensive", "created_by": "endpoint-sentinel"}',
    )


def coupon_get_by_id(ctx: RunContext) -> Dict[str, Any]:
    """Detail GET of a freshly created coupon carries the detail field set."""
    group_id = _group_id(ctx)
    with ctx.scenario("coupon-get-by-id") as scenario:
        lifecycle = EntityLifecycle(scenario, COUPON)
        lifecycle.create(payloads.coupon_payload(group_id, reusable=False))
        record = lifecycle.verify()
        ctx.validator.expect_fields(record, EntityKind.COUPON_DETAIL)
        return record


def coupon_search_by_code(ctx: RunContext) -> Dict[str, Any]:
    group_id = _group_id(ctx)
    with ctx.scenario("coupon-search-by-code") as scenario:
        created = _create_coupon(scenario, payloads.coupon_payload(group_id, reusable=False))
        code = created.get("code")
        response = scenario.get(COUPON_SEARCH.format(code=code), label="search")
        found = ctx.validator.expect_record(response, EntityKind.COUPON)
        ctx.validator.expect_equal("searched coupon code", code, found.get("code"), payload=response.body)
        return found


def coupon_duplicate_code_reusable(ctx: RunContext) -> ResponseEnvelope:
    """A second reusable coupon with an existing custom code is a hard error."""
    group_id = _group_id(ctx)
    code = f"QA-DUP-{payloads.unique_suffix()}"
    with ctx.scenario("coupon-duplicate-code-reusable") as scenario:
        _create_coupon(scenario, payloads.coupon_payload(group_id, reusable=True, custom_code=code))
        response = scenario.create(
            COUPONS,
            payloads.coupon_payload(group_id, reusable=True, custom_code=code),
            label="create-duplicate",
        )
        return ctx.validator.expect_error(response, 400, DUPLICATE_CODE_ERROR)


def coupon_duplicate_code_single_use(ctx: RunContext) -> Dict[str, Any]:
    """A non-reusable coupon asking for an existing code gets a fresh system code."""
    group_id = _group_id(ctx)
    code = f"QA-DUP-{payloads.unique_suffix()}"
    with ctx.scenario("coupon-duplicate-code-single-use") as scenario:
        _create_coupon(scenario, payloads.coupon_payload(group_id, reusable=True, custom_code=code))
        created = _create_coupon(scenario, payloads.coupon_payload(group_id, reusable=False, custom_code=code))
        ctx.validator.expect_types(created, {"code": str})
        ctx.validator.expect_not_equal("regenerated coupon code", code, created.get("code"), payload=created)
        return created


def coupon_update_duplicate_code_ignored(ctx: RunContext) -> Dict[str, Any]:
    """Updating A to B's code reports success, keeps A's code and applies the rest."""
    group_id = _group_id(ctx)
    with ctx.scenario("coupon-update-duplicate-code") as scenario:
        original = _create_coupon(
            scenario,
            payloads.coupon_payload(group_id, reusable=True, custom_code=f"QA-ORIG-{payloads.unique_suffix()}"),
        )
        taken = _create_coupon(
            scenario,
            payloads.coupon_payload(group_id, reusable=True, custom_code=f"QA-TAKEN-{payloads.unique_suffix()}"),
        )
        detail = f"QA Test - Duplicate Code Update {payloads.unique_suffix()}"
        response = scenario.post(
            COUPON_ENDPOINT.format(id=original["_id"]),
            payloads.coupon_update_payload(group_id, custom_code=taken["code"], detail=detail, amount=20),
            label="update-duplicate-code",
        )
        updated = ctx.validator.expect_record(response)
        validator = ctx.validator
        validator.expect_equal("coupon id after update", original["_id"], updated.get("_id"), payload=updated)
        validator.expect_equal("coupon code after duplicate-code update", original["code"], updated.get("code"), payload=updated)
        validator.expect_not_equal("coupon code after duplicate-code update", taken["code"], updated.get("code"), payload=updated)
        validator.expect_equal("coupon detail after update", detail, updated.get("detail"), payload=updated)
        validator.expect_equal("coupon amount after update", 20, updated.get("amount"), payload=updated)
        return updated


def coupon_update(ctx: RunContext) -> Dict[str, Any]:
    group_id = _group_id(ctx)
    with ctx.scenario("coupon-update") as scenario:
        lifecycle = EntityLifecycle(scenario, COUPON)
        lifecycle.create(payloads.coupon_payload(group_id, reusable=False))
        lifecycle.verify()
        updated = lifecycle.update(
            payloads.coupon_update_payload(group_id),
            expect={"detail": "QA Test - Coupon Updated", "amount": 25},
        )
        ctx.validator.expect_types(updated, {"amount": (int, float)})
        return updated


def coupon_lifecycle(ctx: RunContext) -> LifecycleResult:
    """Full create / verify / update / delete / verify-absent round for a coupon."""
    group_id = _group_id(ctx)
    detail = f"QA Test - Lifecycle {payloads.unique_suffix()}"
    with ctx.scenario("coupon-lifecycle") as scenario:
        return EntityLifecycle(scenario, COUPON).run(
            payloads.coupon_payload(group_id, reusable=False),
            payloads.coupon_update_payload(group_id, detail=detail, amount=25),
            expect={"detail": detail, "amount": 25},
        )


def coupon_invalid_payload(ctx: RunContext) -> ResponseEnvelope:
    with ctx.scenario("coupon-invalid-payload") as scenario:
        response = scenario.create(COUPONS, payloads.invalid_coupon_payload(), label="create-invalid")
        return ctx.validator.expect_error(response, (400, 500))


def coupon_nonexistent_group(ctx: RunContext) -> ResponseEnvelope:
    with ctx.scenario("coupon-nonexistent-group") as scenario:
        response = scenario.create(
            COUPONS,
            payloads.coupon_payload(payloads.NONEXISTENT_ID, reusable=False),
            label="create-unknown-group",
        )
        return ctx.validator.expect_status(response, (200, 400, 404), DOMAIN_ERROR)


def coupon_not_found(ctx: RunContext) -> ResponseEnvelope:
    with ctx.scenario("coupon-not-found") as scenario:
        response = scenario.get(COUPON_ENDPOINT.format(id=payloads.NONEXISTENT_ID), label="get-missing")
        return ctx.validator.expect_not_found(response)


def coupon_search_not_found(ctx: RunContext) -> ResponseEnvelope:
    with ctx.scenario("coupon-search-not-found") as scenario:
        response = scenario.get(COUPON_SEARCH.format(code=payloads.NONEXISTENT_CODE), label="search-missing")
        return ctx.validator.expect_not_found(response)


def coupon_delete_nonexistent(ctx: RunContext) -> ResponseEnvelope:
    with ctx.scenario("coupon-delete-nonexistent") as scenario:
        response = scenario.delete(COUPON_ENDPOINT.format(id=payloads.NONEXISTENT_ID), label="delete-missing")
        if response.status == 404:
            return response
        return ctx.validator.expect_error(response, 200)


# ---- coupon groups ------------------------------------------------------------
def coupon_group_list_contract(ctx: RunContext) -> List[Dict[str, Any]]:
    with ctx.scenario("coupon-group-list") as scenario:
        response = scenario.get(COUPON_GROUPS, label="list")
        groups = ctx.validator.expect_list(response, EntityKind.COUPON_GROUP)
        ctx.validator.expect_schema(response, GROUP_LIST_SCHEMA)
        return groups


def coupons_by_subgroup(ctx: RunContext) -> List[Dict[str, Any]]:
    """Group with coupons -> subgroup with coupons -> coupons filtered by that subgroup."""
    validator = ctx.validator
    with ctx.scenario("coupons-by-subgroup") as scenario:
        groups = validator.expect_list(scenario.get(COUPON_GROUPS, label="groups"))
        group = ctx.require(
            first_matching(groups, lambda g: _count(g.get("coupon_total")) > 0),
            "no coupon group with coupons",
        )
        subgroups = validator.expect_list(scenario.get(COUPON_GROUP.format(id=group["_id"]), label="subgroups"))
        subgroup = ctx.require(
            first_matching(subgroups, lambda s: _count(s.get("total")) > 0),
            f"group {group['_id']} has no subgroup with coupons",
        )
        subgroup_id = resolve_relation(subgroup.get("_id"))

        response = scenario.get(COUPONS, {"subgroup": subgroup_id}, label="coupons")
        coupons = validator.expect_list(response, ("_id", "code", "group", "subgroup"))
        validator.expect_schema(response, COUPONS_BY_SUBGROUP_SCHEMA)
        for coupon in coupons:
            validator.expect_equal(
                f"subgroup of coupon {coupon.get('_id')}",
                subgroup_id,
                resolve_relation(coupon.get("subgroup")),
                payload=coupon,
            )
        return coupons


# ---- categories ---------------------------------------------------------------
def category_list(ctx: RunContext) -> List[Dict[str, Any]]:
    """GET /api/category: an array; the first element has string _id, name and slug."""
    with ctx.scenario("category-list") as scenario:
        categories = ctx.validator.expect_list(scenario.get(CATEGORIES, label="list"))
        if categories:
            ctx.validator.expect_types(categories[0], {"_id": str, "name": str, "slug": str})
        return categories


def category_list_structure(ctx: RunContext) -> List[Dict[str, Any]]:
    with ctx.scenario("category-structure") as scenario:
        return ctx.validator.expect_list(
            scenario.get(CATEGORIES, {"limit": 5}, label="list"), EntityKind.CATEGORY, max_length=5
        )


def category_create(ctx: RunContext, **extra: Any) -> Dict[str, Any]:
    payload = payloads.category_payload(**extra)
    with ctx.scenario("category-create") as scenario:
        created = EntityLifecycle(scenario, CATEGORY).create(payload)
        ctx.validator.expect_equal("category name", payload["name"], created.get("name"), payload=created)
        if "description" in payload:
            ctx.validator.expect_equal(
                "category description", payload["description"], created.get("description"), payload=created
            )
        return created


def category_create_with_metadata(ctx: RunContext) -> Dict[str, Any]:
    return category_create(ctx, color="#FF5733", order=10, icon="test-icon")


def category_lifecycle(ctx: RunContext) -> LifecycleResult:
    description = f"Updated by QA {payloads.unique_suffix()}"
    with ctx.scenario("category-lifecycle") as scenario:
        return EntityLifecycle(scenario, CATEGORY).run(
            payloads.category_payload(),
            {"name": f"QA Test Category Updated {payloads.unique_suffix()}", "description": description},
            expect={"description": description},
            reread=True,
        )


def category_media(ctx: RunContext) -> List[Dict[str, Any]]:
    """Associate a media with a fresh category, then list the category's media."""
    media_id = ctx.require(
        (ctx.media_index().object_ids or [None])[0],
        "no media available to associate with a category",
    )
    with ctx.scenario("category-media") as scenario:
        lifecycle = EntityLifecycle(scenario, CATEGORY)
        lifecycle.create(payloads.category_payload())
        media_path = CATEGORY_MEDIA.format(id=lifecycle.identifier)
        ctx.validator.expect_status(scenario.post(media_path, {"media_id": media_id}, label="associate"), (200, 201))
        listed = ctx.validator.expect_list(scenario.get(media_path, label="list-media"))
        for media in listed[:1]:
            ctx.validator.expect_fields(media, ("_id", "title"))
        return listed


def category_delete_image(ctx: RunContext) -> ResponseEnvelope:
    with ctx.scenario("category-delete-image") as scenario:
        lifecycle = EntityLifecycle(scenario, CATEGORY)
        lifecycle.create(payloads.category_payload())
        response = scenario.delete(CATEGORY_IMAGE.format(id=lifecycle.identifier), label="delete-image")
        return ctx.validator.expect_status(response, (200, 204, 404), None)


def category_not_found(ctx: RunContext) -> ResponseEnvelope:
    with ctx.scenario("category-not-found") as scenario:
        response = scenario.get(CATEGORY_ENDPOINT.format(id=payloads.NONEXISTENT_ID), label="get-missing")
        return ctx.validator.expect_not_found(response, allow_http_404=True, domain_status=None)


def category_invalid_payload(ctx: RunContext) -> ResponseEnvelope:
    with ctx.scenario("category-invalid-payload") as scenario:
        response = scenario.create(
            CATEGORIES, payloads.invalid_category_payload(), CATEGORY_ENDPOINT, label="create-invalid"
        )
        return ctx.validator.expect_status(response, (400, 422, 500), None)


def category_duplicate_name(ctx: RunContext) -> ResponseEnvelope:
    """A second category with the same name is either accepted or rejected cleanly."""
    with ctx.scenario("category-duplicate-name") as scenario:
        first = EntityLifecycle(scenario, CATEGORY).create(payloads.category_payload())
        response = scenario.create(
            CATEGORIES, payloads.category_payload(name=first["name"]), CATEGORY_ENDPOINT, label="create-duplicate"
        )
        if response.is_ok:
            logger.info("Backend accepts duplicate category names")
            return ctx.validator.expect_status(response, 200)
        return ctx.validator.expect_status(response, (400, 409, 422), None)


def category_filters(ctx: RunContext) -> Dict[str, List[Dict[str, Any]]]:
    results: Dict[str, List[Dict[str, Any]]] = {}
    with ctx.scenario("category-filters") as scenario:
        limited = ctx.validator.expect_list(scenario.get(CATEGORIES, {"limit": 3}, label="limit"), max_length=3)
        results["limit"] = limited
        words = (limited[0].get("name") or "").split() if limited else []
        if words:
            results["search"] = _ok_list(ctx.validator, scenario.get(CATEGORIES, {"search": words[0]}, label="search"))
    return results


def category_sort(ctx: RunContext) -> bool:
    """Sort by name ascending; whether the order held is reported, not asserted."""
    with ctx.scenario("category-sort") as scenario:
        categories = ctx.validator.expect_list(
            scenario.get(CATEGORIES, {"sort": "name", "order": "asc", "limit": 10}, label="sort")
        )
        names = [str(c.get("name", "")).lower() for c in categories]
        ordered = names == sorted(names)
        logger.info("Category name order ascending: %s", ordered)
        return ordered


# ---- media --------------------------------------------------------------------
@dataclass
class FilterOutcome:
    params: Dict[str, Any]
    records: List[Dict[str, Any]]
    matched: int = 0

    @property
    def total(self) -> int:
        return len(self.records)


def _media_filter(ctx: RunContext, name: str, params: Dict[str, Any], predicate=None) -> FilterOutcome:
    with ctx.scenario(f"media-filter-{name}") as scenario:
        records = _ok_list(ctx.validator, scenario.get(MEDIA, params, label=name))
    matched = sum(1 for record in records if predicate(record)) if predicate else len(records)
    logger.info("Media filter %s %s: %d records, %d matching", name, params, len(records), matched)
    return FilterOutcome(params, records, matched)


def media_list_structure(ctx: RunContext) -> List[Dict[str, Any]]:
    with ctx.scenario("media-structure") as scenario:
        return ctx.validator.expect_list(
            scenario.get(MEDIA, {"limit": 10}, label="list"), EntityKind.MEDIA, sample=5
        )


def media_extended_structure(ctx: RunContext) -> Optional[Dict[str, Any]]:
    with ctx.scenario("media-extended-structure") as scenario:
        records = ctx.validator.expect_list(scenario.get(MEDIA, {"limit": 1}, label="list"))
    if not records:
        return None
    media = records[0]
    ctx.validator.expect_fields(media, MEDIA_EXTENDED_FIELDS)
    ctx.validator.expect_types(
        media,
        {"is_published": bool, "is_initialized": bool, "meta": list, "thumbnails": list, "categories": list},
    )
    return media


def media_filter_by_id(ctx: RunContext) -> FilterOutcome:
    media_id = ctx.require((ctx.media_index().ids or [None])[0], "no media ids available")
    outcome = _media_filter(ctx, "id", {"id": media_id}, lambda m: media_id in (m.get("id"), m.get("_id")))
    if outcome.matched == 0:
        raise ContractViolation(
            "media id filter did not return the requested media",
            expected=media_id,
            actual=[m.get("_id") for m in outcome.records],
            payload=outcome.records,
        )
    return outcome


def media_filter_by_query(ctx: RunContext) -> FilterOutcome:
    title = ctx.require((ctx.media_index().titles or [None])[0], "no media titles available")
    word = (str(title).split() or [str(title)])[0]
    return _media_filter(ctx, "query", {"query": word, "limit": 10}, lambda m: word.lower() in str(m.get("title", "")).lower())


def media_filter_by_type(ctx: RunContext) -> FilterOutcome:
    media_type = ctx.require((ctx.media_index().types or [None])[0], "no media types available")
    return _media_filter(ctx, "type", {"type": media_type, "limit": 10}, lambda m: m.get("type") == media_type)


def media_filter_by_duration(ctx: RunContext) -> FilterOutcome:
    index = ctx.media_index()
    ctx.require(index.durations, "no media durations available")
    low = index.percentile(index.durations, 0.25)
    high = index.percentile(index.durations, 0.75)
    return _media_filter(
        ctx,
        "duration",
        {"min_duration": low, "max_duration": high, "limit": 10},
        lambda m: low <= (m.get("duration") or 0) <= high,
    )


def media_filter_by_views(ctx: RunContext) -> FilterOutcome:
    index = ctx.media_index()
    ctx.require(index.views, "no media view counts available")
    floor = index.percentile(index.views, 0.1)
    return _media_filter(ctx, "views", {"min_views": floor, "limit": 15}, lambda m: (m.get("views") or 0) >= floor)


def media_pagination(ctx: RunContext) -> Tuple[FilterOutcome, FilterOutcome]:
    first = _media_filter(ctx, "page-1", {"limit": 10, "offset": 0})
    second = _media_filter(ctx, "page-2", {"limit": 5, "offset": 5})
    for outcome in (first, second):
        limit = outcome.params["limit"]
        if outcome.total > limit:
            raise ContractViolation(
                "media page longer than requested limit",
                expected=f"<= {limit}",
                actual=outcome.total,
                payload=outcome.records,
            )
    return first, second


def media_filter_by_category(ctx: RunContext) -> FilterOutcome:
    category = ctx.require((ctx.media_index().categories or [None])[0], "no media categories available")
    return _media_filter(ctx, "category", {"category": category, "limit": 20})


def media_filter_without_category(ctx: RunContext) -> FilterOutcome:
    return _media_filter(ctx, "without-category", {"without_category": True, "limit": 10}, lambda m: not m.get("categories"))


def media_filter_by_tag(ctx: RunContext) -> FilterOutcome:
    tag = ctx.require((ctx.media_index().tags or [None])[0], "no media tags available")
    return _media_filter(ctx, "tag", {"tag": tag, "tags-rule": "in_any", "limit": 10})


def media_filter_published(ctx: RunContext) -> FilterOutcome:
    return _media_filter(ctx, "published", {"is_published": True, "limit": 15}, lambda m: m.get("is_published") is True)


def media_filter_count(ctx: RunContext) -> FilterOutcome:
    return _media_filter(ctx, "count", {"count": True, "limit": 5})


def media_sorted_by_date(ctx: RunContext) -> Tuple[FilterOutcome, bool]:
    """Newest first; whether the order held is reported, not asserted."""
    outcome = _media_filter(ctx, "sort-date", {"sort": "date_created", "order": "desc", "limit": 10})
    stamps = [_timestamp(m.get("date_created") or m.get("created_at")) for m in outcome.records]
    descending = all(a >= b for a, b in zip(stamps, stamps[1:]))
    logger.info("Media date order descending: %s", descending)
    return outcome, descending


def media_combined_filters(ctx: RunContext) -> FilterOutcome:
    index = ctx.media_index()
    params: Dict[str, Any] = {"limit": 10}
    if index.types:
        params["type"] = index.types[0]
    if index.categories:
        params["category"] = index.categories[0]
    return _media_filter(ctx, "combined", params)


# ---- helpers ------------------------------------------------------------------
def _ok_list(validator: ContractValidator, response: ResponseEnvelope) -> List[Dict[str, Any]]:
    """OK list payload that may legitimately be null when nothing matches."""
    if response.data is None:
        validator.expect_empty_match(response)
        return []
    return validator.expect_list(response)


def _count(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _timestamp(value: Any) -> float:
    if not value:
        return 0.0
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0
