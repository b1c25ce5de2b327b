"""
Connection Health Service

Per-space view of how each linked account's provider connection is doing,
derived from the last 24 hours of connection attempts and the current
provider health. Used to tell users which accounts need attention.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Callable, Any
from loguru import logger

from finsync.data_providers.adapters.base import ErrorKind, utcnow
from finsync.data_providers.attempt_log import AttemptLog, AttemptOutcome, ConnectionAttempt
from finsync.data_providers.circuit_breaker import CircuitBreaker
from finsync.data_providers.health_monitor import ProviderHealthMonitor


DEFAULT_LOOKBACK = timedelta(hours=24)

FAILED_OUTCOMES = frozenset({AttemptOutcome.FAILURE, AttemptOutcome.TIMEOUT})


class ConnectionStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    ERROR = "error"
    REQUIRES_REAUTH = "requires_reauth"


ATTENTION_STATUSES = frozenset({ConnectionStatus.ERROR, ConnectionStatus.REQUIRES_REAUTH})


@dataclass
class AccountConnectionHealth:
    """Connection health of one account."""
    account_id: str
    provider: str
    region: str
    status: ConnectionStatus = ConnectionStatus.HEALTHY
    health_score: int = 100
    failed_attempts: int = 0
    last_success_at: Optional[datetime] = None
    last_error_at: Optional[datetime] = None
    last_error: Optional[str] = None
    action_required: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "provider": self.provider,
            "region": self.region,
            "status": self.status.value,
            "health_score": self.health_score,
            "failed_attempts": self.failed_attempts,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
            "last_error": self.last_error,
            "action_required": self.action_required,
        }


@dataclass
class ConnectionHealthSummary:
    """Aggregate connection health for a space."""
    space_id: str
    total_connections: int = 0
    healthy_count: int = 0
    degraded_count: int = 0
    error_count: int = 0
    requires_reauth_count: int = 0
    overall_health_score: int = 100
    accounts: list[AccountConnectionHealth] = field(default_factory=list)
    provider_health: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "space_id": self.space_id,
            "total_connections": self.total_connections,
            "healthy_count": self.healthy_count,
            "degraded_count": self.degraded_count,
            "error_count": self.error_count,
            "requires_reauth_count": self.requires_reauth_count,
            "overall_health_score": self.overall_health_score,
            "accounts": [a.to_dict() for a in self.accounts],
            "provider_health": self.provider_health,
        }


class ConnectionHealthService:
    """
    Scores account connections.

    Scoring (starting from 100):
    - last attempt failed with an auth error: requires_reauth, 10
    - 5+ failures in the lookback: error, at most 30
    - 3+ failures: degraded, at most 60
    - 1+ failure: at most 80
    - provider circuit open: degraded, at most 40
    """

    def __init__(
        self,
        attempt_log: AttemptLog,
        health_monitor: ProviderHealthMonitor,
        breaker: Optional[CircuitBreaker] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.attempt_log = attempt_log
        self.health_monitor = health_monitor
        self.breaker = breaker
        self._clock = clock

    async def summarize_space(self, space_id: str, since: Optional[datetime] = None) -> ConnectionHealthSummary:
        """Build the connection health summary for a space."""
        since = since or self._clock() - DEFAULT_LOOKBACK
        attempts = await self.attempt_log.for_space(space_id, since=since)

        by_account: dict[str, list[ConnectionAttempt]] = defaultdict(list)
        for attempt in attempts:
            if attempt.account_id:
                by_account[attempt.account_id].append(attempt)

        accounts = [
            self._score_account(account_id, account_attempts)
            for account_id, account_attempts in sorted(by_account.items())
        ]

        summary = ConnectionHealthSummary(
            space_id=space_id,
            total_connections=len(accounts),
            healthy_count=sum(1 for a in accounts if a.status == ConnectionStatus.HEALTHY),
            degraded_count=sum(1 for a in accounts if a.status == ConnectionStatus.DEGRADED),
            error_count=sum(1 for a in accounts if a.status == ConnectionStatus.ERROR),
            requires_reauth_count=sum(1 for a in accounts if a.status == ConnectionStatus.REQUIRES_REAUTH),
            overall_health_score=(
                round(sum(a.health_score for a in accounts) / len(accounts)) if accounts else 100
            ),
            accounts=accounts,
            provider_health=self._provider_health({a.identity for a in attempts}),
        )

        if summary.error_count or summary.requires_reauth_count:
            logger.info(
                f"Space {space_id}: {summary.error_count} connections in error, "
                f"{summary.requires_reauth_count} requiring re-authorization"
            )
        return summary

    async def accounts_needing_attention(self, space_id: str) -> list[AccountConnectionHealth]:
        """Accounts in error or requiring re-authorization."""
        summary = await self.summarize_space(space_id)
        return [a for a in summary.accounts if a.status in ATTENTION_STATUSES]

    async def accounts_requiring_reauth(self, space_id: str) -> list[str]:
        summary = await self.summarize_space(space_id)
        return [a.account_id for a in summary.accounts if a.status == ConnectionStatus.REQUIRES_REAUTH]

    def _score_account(self, account_id: str, attempts: list[ConnectionAttempt]) -> AccountConnectionHealth:
        # newest first
        attempts = sorted(attempts, key=lambda a: a.attempted_at, reverse=True)
        latest = attempts[0]
        failures = [a for a in attempts if a.outcome in FAILED_OUTCOMES]
        successes = [a for a in attempts if a.outcome == AttemptOutcome.SUCCESS]

        health = AccountConnectionHealth(
            account_id=account_id,
            provider=latest.identity.provider,
            region=latest.identity.region,
            failed_attempts=len(failures),
            last_success_at=successes[0].attempted_at if successes else None,
        )
        if failures:
            health.last_error_at = failures[0].attempted_at
            health.last_error = failures[0].error_message or "Unknown error"

        if latest.outcome in FAILED_OUTCOMES and latest.error_kind == ErrorKind.AUTH:
            health.status = ConnectionStatus.REQUIRES_REAUTH
            health.health_score = 10
            health.action_required = "Authorization expired. Please reconnect your account."

        fails = len(failures)
        if fails >= 5:
            if health.status != ConnectionStatus.REQUIRES_REAUTH:
                health.status = ConnectionStatus.ERROR
            health.health_score = min(health.health_score, 30)
            health.action_required = (
                health.action_required or f"{fails} failed sync attempts in the last 24 hours."
            )
        elif fails >= 3:
            if health.status == ConnectionStatus.HEALTHY:
                health.status = ConnectionStatus.DEGRADED
            health.health_score = min(health.health_score, 60)
        elif fails >= 1:
            health.health_score = min(health.health_score, 80)

        if self.health_monitor.get_status(latest.identity).circuit_breaker_open:
            if health.status == ConnectionStatus.HEALTHY:
                health.status = ConnectionStatus.DEGRADED
            health.health_score = min(health.health_score, 40)
            health.action_required = (
                health.action_required or f"{latest.identity.provider} provider is experiencing issues."
            )

        return health

    def _provider_health(self, identities) -> list[dict[str, Any]]:
        rows = []
        for identity in sorted(identities):
            status = self.health_monitor.get_status(identity)
            row = {
                "provider": identity.provider,
                "region": identity.region,
                "status": status.status.value,
                "error_rate": round(status.error_rate, 2),
                "avg_response_time_ms": round(status.avg_response_time_ms, 2),
            }
            if self.breaker is not None:
                row["circuit_state"] = self.breaker.get_state(identity).state.value
            rows.append(row)
        return rows
