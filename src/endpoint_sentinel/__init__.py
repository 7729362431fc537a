"""Contract test harness for the media platform HTTP API."""
from endpoint_sentinel.api_client import ApiClient, ResponseEnvelope
from endpoint_sentinel.cleanup import CleanupCoordinator
from endpoint_sentinel.config import HarnessConfig, load_config
from endpoint_sentinel.data_manager import MediaIndex, TestDataManager
from endpoint_sentinel.errors import (
    ConfigurationError,
    ContractViolation,
    IllegalTransition,
    ScenarioBudgetExceeded,
    TransportError,
)
from endpoint_sentinel.validator import ContractValidator, EntityKind, SchemaRegistry

__all__ = [
    "ApiClient",
    "CleanupCoordinator",
    "ConfigurationError",
    "ContractValidator",
    "ContractViolation",
    "EntityKind",
    "HarnessConfig",
    "IllegalTransition",
    "MediaIndex",
    "ResponseEnvelope",
    "ScenarioBudgetExceeded",
    "SchemaRegistry",
    "TestDataManager",
    "TransportError",
    "load_config",
]
