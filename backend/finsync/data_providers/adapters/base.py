"""
Base Provider Adapter Interface

Defines the abstract capability interface that every financial data provider
adapter (bank aggregation, crypto exchange, on-chain data) must implement,
plus the normalized result types and the provider error hierarchy.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Any
from loguru import logger


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class ProviderOperation(str, Enum):
    """Logical operations the orchestrator can route to a provider."""
    HEALTH_CHECK = "health_check"
    CREATE_LINK = "create_link"
    EXCHANGE_TOKEN = "exchange_token"
    GET_ACCOUNTS = "get_accounts"
    SYNC_TRANSACTIONS = "sync_transactions"
    HANDLE_WEBHOOK = "handle_webhook"


class ErrorKind(str, Enum):
    """Classification of a provider failure."""
    AUTH = "auth"
    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        """Whether a different candidate may succeed where this one failed."""
        return self not in NON_RETRYABLE_KINDS


NON_RETRYABLE_KINDS = frozenset({ErrorKind.AUTH, ErrorKind.VALIDATION})


@dataclass
class ProviderConfig:
    """Configuration for a provider adapter."""
    name: str
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    base_url: str = ""

    # Regions this adapter can serve (empty = any)
    regions: list[str] = field(default_factory=list)

    # Timeouts
    timeout_seconds: float = 10.0
    health_check_timeout_seconds: float = 1.0

    # Webhook verification
    webhook_secret: Optional[str] = None


@dataclass
class HealthCheckResult:
    """Outcome of a lightweight reachability probe."""
    provider: str
    region: str
    healthy: bool
    latency_ms: float = 0.0
    message: str = "OK"
    checked_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "region": self.region,
            "healthy": self.healthy,
            "latency_ms": round(self.latency_ms, 2),
            "message": self.message,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass
class ProviderAccount:
    """Normalized account as reported by a provider."""
    provider_account_id: str
    name: str
    account_type: str
    provider: str = ""
    subtype: Optional[str] = None
    currency: str = "USD"
    balance: Optional[Decimal] = None
    available_balance: Optional[Decimal] = None
    mask: Optional[str] = None
    institution_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "provider_account_id": self.provider_account_id,
            "name": self.name,
            "account_type": self.account_type,
            "provider": self.provider,
            "subtype": self.subtype,
            "currency": self.currency,
            "balance": float(self.balance) if self.balance is not None else None,
            "available_balance": float(self.available_balance) if self.available_balance is not None else None,
            "mask": self.mask,
            "institution_id": self.institution_id,
        }


@dataclass
class ProviderTransaction:
    """Normalized transaction as reported by a provider."""
    provider_transaction_id: str
    provider_account_id: str
    amount: Decimal
    posted_at: datetime
    description: str = ""
    currency: str = "USD"
    pending: bool = False
    merchant_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_transaction_id": self.provider_transaction_id,
            "provider_account_id": self.provider_account_id,
            "amount": float(self.amount),
            "posted_at": self.posted_at.isoformat(),
            "description": self.description,
            "currency": self.currency,
            "pending": self.pending,
            "merchant_name": self.merchant_name,
        }


@dataclass
class SyncResult:
    """Incremental transaction sync page."""
    added: list[ProviderTransaction] = field(default_factory=list)
    modified: list[ProviderTransaction] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False

    @property
    def total_changes(self) -> int:
        return len(self.added) + len(self.modified) + len(self.removed)


@dataclass
class LinkResult:
    """Link/connect session created with a provider."""
    link_token: str
    expires_at: Optional[datetime] = None
    link_url: Optional[str] = None


@dataclass
class TokenExchangeResult:
    """Long-lived access credentials obtained from a public/link token."""
    access_token: str
    item_id: Optional[str] = None
    institution_id: Optional[str] = None


@dataclass
class WebhookResult:
    """Outcome of processing an inbound provider webhook."""
    accepted: bool
    event_type: Optional[str] = None
    item_id: Optional[str] = None
    message: str = ""


# =========================
# Provider Errors
# =========================

class ProviderError(Exception):
    """Base exception for provider errors."""
    def __init__(
        self,
        provider: str,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        code: Optional[str] = None,
    ):
        self.provider = provider
        self.message = message
        self.kind = ErrorKind(kind)
        self.code = code
        super().__init__(f"[{provider}] {message}")

    @property
    def recoverable(self) -> bool:
        return self.kind.retryable


class AuthenticationError(ProviderError):
    """Credentials invalid, expired or revoked."""
    def __init__(self, provider: str, message: str = "Authentication failed", code: Optional[str] = None):
        super().__init__(provider, message, kind=ErrorKind.AUTH, code=code)


class ProviderValidationError(ProviderError):
    """Caller-supplied input rejected by the provider."""
    def __init__(self, provider: str, message: str = "Invalid request", code: Optional[str] = None):
        super().__init__(provider, message, kind=ErrorKind.VALIDATION, code=code)


class RateLimitError(ProviderError):
    """Rate limit exceeded error."""
    def __init__(self, provider: str, retry_after: Optional[float] = None, code: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(
            provider,
            f"Rate limit exceeded. Retry after: {retry_after}s",
            kind=ErrorKind.RATE_LIMIT,
            code=code,
        )


class ProviderNetworkError(ProviderError):
    """Connectivity failure or timeout talking to the provider."""
    def __init__(self, provider: str, message: str = "Network error", code: Optional[str] = None):
        super().__init__(provider, message, kind=ErrorKind.NETWORK, code=code)


class ProviderUnavailableError(ProviderError):
    """Upstream outage or maintenance signaled by the provider."""
    def __init__(self, provider: str, message: str = "Provider unavailable", code: Optional[str] = None):
        super().__init__(provider, message, kind=ErrorKind.PROVIDER_UNAVAILABLE, code=code)


def _require(provider: str, args: dict[str, Any], *keys: str) -> None:
    missing = [key for key in keys if args.get(key) is None]
    if missing:
        raise ProviderValidationError(
            provider,
            f"Missing required argument(s): {', '.join(missing)}",
            code="MISSING_ARGUMENT",
        )


class BaseAdapter(ABC):
    """
    Abstract base class for all financial data provider adapters.

    Each provider adapter must implement:
    - health_check(): Lightweight reachability probe (sub-second)
    - create_link(): Start a connect/link session
    - exchange_token(): Trade a link token for access credentials
    - get_accounts(): List accounts behind a set of credentials
    - sync_transactions(): Incremental transaction sync from a cursor
    - handle_webhook(): Verify and process an inbound webhook

    Adapters signal failures by raising ProviderError subclasses; anything
    else is classified by the orchestrator.
    """

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.name = config.name.strip().lower()

    async def initialize(self) -> None:
        """Initialize the adapter (create sessions, validate credentials)."""
        pass

    async def close(self) -> None:
        """Clean up resources."""
        pass

    @abstractmethod
    async def health_check(self, region: str) -> HealthCheckResult:
        """Check if the provider is reachable. Must not block on rate limits."""
        pass

    @abstractmethod
    async def create_link(self, params: dict[str, Any]) -> LinkResult:
        """Create a link/connect session."""
        pass

    @abstractmethod
    async def exchange_token(self, params: dict[str, Any]) -> TokenExchangeResult:
        """Exchange a public/link token for access credentials."""
        pass

    @abstractmethod
    async def get_accounts(
        self,
        credentials: dict[str, Any],
        account_scope: Optional[dict[str, Any]] = None,
    ) -> list[ProviderAccount]:
        """
        Get the accounts reachable with the given credentials.

        Args:
            credentials: Decrypted provider credentials (access token etc.)
            account_scope: Optional filter (account ids, institution)

        Returns:
            List of ProviderAccount objects

        Raises:
            ProviderError: If the request fails
        """
        pass

    @abstractmethod
    async def sync_transactions(
        self,
        credentials: dict[str, Any],
        account_scope: Optional[dict[str, Any]] = None,
        since_cursor: Optional[str] = None,
    ) -> SyncResult:
        """
        Fetch transaction changes since a cursor.

        Args:
            credentials: Decrypted provider credentials
            account_scope: Optional filter (account ids)
            since_cursor: Opaque cursor from the previous sync, None for a full sync

        Returns:
            SyncResult page with the cursor to resume from
        """
        pass

    @abstractmethod
    async def handle_webhook(self, payload: dict[str, Any], signature: Optional[str]) -> WebhookResult:
        """Verify and process an inbound provider webhook."""
        pass

    async def invoke(self, operation: ProviderOperation, args: dict[str, Any], region: str) -> Any:
        """
        Dispatch a logical operation to the matching capability.

        Raises:
            ProviderValidationError: If required arguments are missing
        """
        operation = ProviderOperation(operation)

        if operation == ProviderOperation.HEALTH_CHECK:
            return await self.health_check(region)
        if operation == ProviderOperation.CREATE_LINK:
            return await self.create_link(args)
        if operation == ProviderOperation.EXCHANGE_TOKEN:
            return await self.exchange_token(args)
        if operation == ProviderOperation.GET_ACCOUNTS:
            _require(self.name, args, "credentials")
            return await self.get_accounts(args["credentials"], args.get("account_scope"))
        if operation == ProviderOperation.SYNC_TRANSACTIONS:
            _require(self.name, args, "credentials")
            return await self.sync_transactions(
                args["credentials"],
                args.get("account_scope"),
                args.get("since_cursor"),
            )
        if operation == ProviderOperation.HANDLE_WEBHOOK:
            _require(self.name, args, "payload")
            return await self.handle_webhook(args["payload"], args.get("signature"))

        # Enum coercion above makes this unreachable for valid input
        logger.error(f"Unsupported operation {operation} for {self.name}")
        raise ProviderValidationError(self.name, f"Unsupported operation: {operation}")

    def supports_region(self, region: str) -> bool:
        """Check if this provider serves a region."""
        if not self.config.regions:
            return True
        return region.upper() in {r.upper() for r in self.config.regions}

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name})>"
