"""
Provider Adapters Package

Contains adapters for supported financial data providers.
Each adapter implements the BaseAdapter interface so the orchestrator can
call any of them through the same capability contract.
"""
from finsync.data_providers.adapters.base import (
    BaseAdapter,
    ProviderConfig,
    ProviderOperation,
    ErrorKind,
    HealthCheckResult,
    ProviderAccount,
    ProviderTransaction,
    SyncResult,
    LinkResult,
    TokenExchangeResult,
    WebhookResult,
    ProviderError,
    AuthenticationError,
    ProviderValidationError,
    RateLimitError,
    ProviderNetworkError,
    ProviderUnavailableError,
)
from finsync.data_providers.adapters.http import HttpAdapter, verify_signature
# US / Canada
from finsync.data_providers.adapters.plaid import PlaidAdapter, create_plaid_config
# Latin America
from finsync.data_providers.adapters.belvo import BelvoAdapter, create_belvo_config

__all__ = [
    # Base
    "BaseAdapter",
    "ProviderConfig",
    "ProviderOperation",
    "ErrorKind",
    "HealthCheckResult",
    "ProviderAccount",
    "ProviderTransaction",
    "SyncResult",
    "LinkResult",
    "TokenExchangeResult",
    "WebhookResult",
    # Errors
    "ProviderError",
    "AuthenticationError",
    "ProviderValidationError",
    "RateLimitError",
    "ProviderNetworkError",
    "ProviderUnavailableError",
    # HTTP
    "HttpAdapter",
    "verify_signature",
    # Providers
    "PlaidAdapter",
    "create_plaid_config",
    "BelvoAdapter",
    "create_belvo_config",
]
