"""Response contract assertions.

Checks, in order of use by the scenarios:
1. transport status within the expected set,
2. domain tag equal to the expected one (when the body carries a status),
3. required field set per entity kind, for a record or a list sample,
4. JSON Schema conformance, with every error collected and reported.

Every violation logs the full payload before raising ContractViolation.
"""
from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Collection, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from jsonschema import FormatChecker
from jsonschema.validators import Draft7Validator, validator_for

from endpoint_sentinel.api_client import DOMAIN_ERROR, DOMAIN_OK, ResponseEnvelope
from endpoint_sentinel.errors import ConfigurationError, ContractViolation

logger = logging.getLogger(__name__)


class EntityKind(str, Enum):
    CATEGORY = "category"
    MEDIA = "media"
    COUPON = "coupon"
    COUPON_DETAIL = "coupon_detail"
    COUPON_GROUP = "coupon_group"


REQUIRED_FIELDS: Dict[EntityKind, Tuple[str, ...]] = {
    EntityKind.CATEGORY: ("_id", "name", "slug", "date_created", "visible"),
    EntityKind.MEDIA: (
        "id", "_id", "title", "type", "status", "duration",
        "views", "categories", "date_created", "slug",
    ),
    EntityKind.COUPON: ("_id", "group", "code", "date_created"),
    EntityKind.COUPON_DETAIL: (
        "_id", "group", "code", "date_created", "is_reusable", "is_used", "is_valid",
    ),
    EntityKind.COUPON_GROUP: ("_id", "name"),
}

# Extended media shape checked by the full-structure scenario.
MEDIA_EXTENDED_FIELDS: Tuple[str, ...] = (
    "access_restrictions", "access_rules", "preview", "meta", "thumbnails",
    "protocols", "show_info", "is_published", "is_initialized",
)

# Formats the shipped schemas rely on; the checkers come from optional jsonschema extras.
REQUIRED_FORMATS: Tuple[str, ...] = ("date-time",)

_TYPE_NAMES: Dict[type, str] = {
    str: "string", bool: "boolean", int: "number", float: "number", list: "array", dict: "object",
}


def _type_name(expected: type | Tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " | ".join(dict.fromkeys(_type_name(t) for t in expected))
    return _TYPE_NAMES.get(expected, expected.__name__)


def _dump(payload: Any) -> str:
    try:
        return json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(payload)


def _fail(message: str, *, payload: Any, **kwargs: Any) -> ContractViolation:
    logger.error("%s\nFull payload:\n%s", message, _dump(payload))
    return ContractViolation(message, payload=payload, **kwargs)


class SchemaRegistry:
    """Loads JSON Schema documents by logical name and compiles each once.

    A logical name such as ``"coupons/group-list"`` maps to
    ``<schema_dir>/coupons/group-list.schema.json``.
    """

    def __init__(self, schema_dir: Path | str) -> None:
        missing = [name for name in REQUIRED_FORMATS if name not in FormatChecker().checkers]
        if missing:
            raise ConfigurationError(
                f"jsonschema cannot check format(s) {missing}; install jsonschema[format-nongpl]"
            )
        self.schema_dir = Path(schema_dir)
        self._compiled: Dict[str, Any] = {}

    def path_for(self, name: str) -> Path:
        return self.schema_dir / f"{name}.schema.json"

    def get(self, name: str):
        if name not in self._compiled:
            path = self.path_for(name)
            if not path.exists():
                raise FileNotFoundError(f"Schema '{name}' not found at {path}")
            schema = json.loads(path.read_text(encoding="utf-8"))
            validator_cls = validator_for(schema, default=Draft7Validator)
            validator_cls.check_schema(schema)
            self._compiled[name] = validator_cls(schema, format_checker=FormatChecker())
            logger.debug("Compiled schema %s with %s", name, validator_cls.__name__)
        return self._compiled[name]

    def errors(self, name: str, instance: Any) -> List[str]:
        """All validation errors for `instance`, formatted `path: message`."""
        validator = self.get(name)
        messages = []
        for error in sorted(validator.iter_errors(instance), key=lambda e: [str(part) for part in e.absolute_path]):
            location = "/" + "/".join(str(part) for part in error.absolute_path)
            messages.append(f"{location}: {error.message}")
        return messages


class ContractValidator:
    """Assertions over ResponseEnvelope objects."""

    def __init__(self, schemas: SchemaRegistry | None = None) -> None:
        self.schemas = schemas

    # ---- status -------------------------------------------------------------
    def expect_status(
        self,
        response: ResponseEnvelope,
        expected: int | Collection[int] = 200,
        domain_status: Optional[str] = DOMAIN_OK,
    ) -> ResponseEnvelope:
        """Assert transport status and (if the body has one) the domain tag."""
        allowed = {expected} if isinstance(expected, int) else set(expected)
        if response.status not in allowed:
            raise _fail(
                f"Unexpected transport status for {response.method} {response.url}",
                expected=sorted(allowed),
                actual=response.status,
                payload=response.body,
            )
        if domain_status is not None and isinstance(response.body, dict) and "status" in response.body:
            if response.domain_status != domain_status:
                raise _fail(
                    f"Unexpected domain status for {response.method} {response.url}",
                    expected=domain_status,
                    actual=response.domain_status,
                    payload=response.body,
                )
        return response

    def expect_ok(self, response: ResponseEnvelope, expected: int | Collection[int] = 200) -> ResponseEnvelope:
        return self.expect_status(response, expected, DOMAIN_OK)

    def expect_list(
        self,
        response: ResponseEnvelope,
        kind: EntityKind | None = None,
        sample: int | None = None,
        max_length: int | None = None,
    ) -> List[Dict[str, Any]]:
        """Assert an OK list payload; optionally check fields on up to `sample` elements."""
        self.expect_ok(response)
        data = response.data
        if not isinstance(data, list):
            raise _fail(
                f"{response.url}: domain OK but payload is not an array",
                expected="array",
                actual=type(data).__name__,
                payload=response.body,
            )
        if max_length is not None and len(data) > max_length:
            raise _fail(
                f"{response.url}: list longer than requested limit",
                expected=f"<= {max_length}",
                actual=len(data),
                payload=response.body,
            )
        if kind is not None:
            subset = data if sample is None else data[:sample]
            for record in subset:
                self.expect_fields(record, kind)
        return data

    def expect_record(self, response: ResponseEnvelope, kind: EntityKind | None = None) -> Dict[str, Any]:
        """Assert an OK single-object payload (a one-element list is unwrapped)."""
        self.expect_ok(response)
        data = response.data
        if isinstance(data, list) and data:
            data = data[0]
        if not isinstance(data, dict):
            raise _fail(
                f"{response.url}: expected a record payload",
                expected="object",
                actual=type(data).__name__,
                payload=response.body,
            )
        if kind is not None:
            self.expect_fields(data, kind)
        return data

    # ---- not found ----------------------------------------------------------
    def expect_not_found(
        self,
        response: ResponseEnvelope,
        allow_http_404: bool = False,
        domain_status: Optional[str] = DOMAIN_ERROR,
    ) -> ResponseEnvelope:
        """Single-entity "not found": 200 + ERROR + null (or a plain 404 if allowed).

        Pass ``domain_status=None`` for endpoints that answer 200 + null without
        committing to a domain tag.
        """
        if allow_http_404 and response.status == 404:
            return response
        self.expect_status(response, 200, domain_status)
        if response.data is not None:
            raise _fail(
                f"{response.url}: expected null payload for a missing entity",
                expected=None,
                actual=response.data,
                payload=response.body,
            )
        return response

    def expect_empty_match(self, response: ResponseEnvelope) -> ResponseEnvelope:
        """List filter matching nothing: 200 + OK + null/empty."""
        self.expect_ok(response)
        if response.data not in (None, []):
            raise _fail(
                f"{response.url}: expected an empty result",
                expected="null or []",
                actual=response.data,
                payload=response.body,
            )
        return response

    def expect_error(
        self,
        response: ResponseEnvelope,
        expected: int | Collection[int],
        payload: Any = None,
    ) -> ResponseEnvelope:
        """Domain ERROR with a non-null explanation (optionally equal to `payload`)."""
        self.expect_status(response, expected, DOMAIN_ERROR)
        if response.data is None:
            raise _fail(
                f"{response.url}: error response carries no explanation",
                expected="non-null payload",
                actual=None,
                payload=response.body,
            )
        if payload is not None and response.data != payload:
            raise _fail(
                f"{response.url}: unexpected error payload",
                expected=payload,
                actual=response.data,
                payload=response.body,
            )
        return response

    # ---- structure ----------------------------------------------------------
    def expect_fields(
        self,
        record: Mapping[str, Any],
        kind: EntityKind | Sequence[str],
    ) -> Mapping[str, Any]:
        fields = REQUIRED_FIELDS[kind] if isinstance(kind, EntityKind) else tuple(kind)
        if not isinstance(record, Mapping):
            raise _fail(
                f"Expected a {kind} record",
                expected="object",
                actual=type(record).__name__,
                payload=record,
            )
        missing = [name for name in fields if name not in record]
        if missing:
            label = kind.value if isinstance(kind, EntityKind) else "record"
            raise _fail(
                f"{label} record is missing required fields",
                expected=list(fields),
                actual=sorted(record.keys()),
                payload=record,
                errors=[f"missing: {name}" for name in missing],
            )
        return record

    def expect_types(self, record: Mapping[str, Any], types: Mapping[str, Any]) -> Mapping[str, Any]:
        wrong = []
        for name, expected_type in types.items():
            value = record.get(name)
            # bool is an int subclass; keep "boolean" and "number" apart.
            if expected_type is not bool and isinstance(value, bool):
                wrong.append(f"{name}: boolean")
            elif not isinstance(value, expected_type):
                wrong.append(f"{name}: {type(value).__name__}")
        if wrong:
            raise _fail(
                "Field types do not match",
                expected={name: _type_name(t) for name, t in types.items()},
                actual=wrong,
                payload=record,
                errors=wrong,
            )
        return record

    def expect_equal(self, label: str, expected: Any, actual: Any, payload: Any = None) -> None:
        if expected != actual:
            raise _fail(label, expected=expected, actual=actual, payload=payload)

    def expect_not_equal(self, label: str, unexpected: Any, actual: Any, payload: Any = None) -> None:
        if unexpected == actual:
            raise _fail(label, expected=f"!= {unexpected!r}", actual=actual, payload=payload)

    # ---- schema -------------------------------------------------------------
    def expect_schema(self, response: ResponseEnvelope | Any, schema_name: str) -> None:
        """Validate the full body against a named schema; report every error."""
        if self.schemas is None:
            raise RuntimeError("ContractValidator has no SchemaRegistry configured")
        body = response.body if isinstance(response, ResponseEnvelope) else response
        errors = self.schemas.errors(schema_name, body)
        if errors:
            raise _fail(
                f"Response does not conform to schema '{schema_name}'",
                payload=body,
                errors=errors,
            )


def first_matching(records: Iterable[Mapping[str, Any]], predicate) -> Optional[Mapping[str, Any]]:
    for record in records:
        if predicate(record):
            return record
    return None
