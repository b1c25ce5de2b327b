"""
Belvo Adapter

Open-finance aggregation for Latin American institutions (Mexico first)
via the Belvo REST API. Belvo links are long-lived; the link id is the
credential. Transactions are fetched by date range, so the sync cursor is
the ISO date of the last successful sync.

API Documentation: https://developers.belvo.com/reference
"""
from datetime import datetime, date, timedelta, timezone
from decimal import Decimal
from typing import Optional, Any
import aiohttp
from loguru import logger

from finsync.data_providers.adapters.base import (
    ProviderConfig,
    ProviderAccount,
    ProviderTransaction,
    SyncResult,
    LinkResult,
    TokenExchangeResult,
    WebhookResult,
    ProviderValidationError,
    utcnow,
    _require,
)
from finsync.data_providers.adapters.http import HttpAdapter, verify_signature


BELVO_ENVIRONMENTS = {
    "sandbox": "https://sandbox.belvo.com",
    "development": "https://development.belvo.com",
    "production": "https://api.belvo.com",
}

# First sync reaches back this far
INITIAL_SYNC_DAYS = 90


def create_belvo_config(
    secret_key_id: str,
    secret_key_password: str,
    environment: str = "sandbox",
    webhook_secret: Optional[str] = None,
    timeout_seconds: float = 15.0,
) -> ProviderConfig:
    """Create configuration for Belvo adapter."""
    return ProviderConfig(
        name="belvo",
        api_key=secret_key_id,
        api_secret=secret_key_password,
        base_url=BELVO_ENVIRONMENTS.get(environment, BELVO_ENVIRONMENTS["sandbox"]),
        regions=["MX", "CO", "BR"],
        timeout_seconds=timeout_seconds,
        webhook_secret=webhook_secret,
    )


class BelvoAdapter(HttpAdapter):
    """
    Belvo data provider adapter.

    Credentials: {"link_id": "..."} as returned by exchange_token.
    """

    health_path = "/api/institutions/"

    def _default_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.config.api_key and self.config.api_secret:
            headers["Authorization"] = aiohttp.BasicAuth(self.config.api_key, self.config.api_secret).encode()
        return headers

    async def _probe(self, region: str) -> None:
        await self._request(
            "GET",
            self.health_path,
            params={"page_size": 1, "country_code": region},
            timeout=self.config.health_check_timeout_seconds,
        )

    async def create_link(self, params: dict[str, Any]) -> LinkResult:
        """Create a Connect widget access token."""
        body: dict[str, Any] = {
            "id": self.config.api_key,
            "password": self.config.api_secret,
            "scopes": "read_institutions,write_links",
        }
        if params.get("external_id"):
            body["widget"] = {"external_id": params["external_id"]}

        data = await self._request("POST", "/api/token/", json=body)
        return LinkResult(link_token=data["access"])

    async def exchange_token(self, params: dict[str, Any]) -> TokenExchangeResult:
        """Confirm the link created by the widget and use its id as the credential."""
        _require(self.name, params, "link_id")
        data = await self._request("GET", f"/api/links/{params['link_id']}/")
        return TokenExchangeResult(
            access_token=data["id"],
            item_id=data["id"],
            institution_id=data.get("institution"),
        )

    async def get_accounts(
        self,
        credentials: dict[str, Any],
        account_scope: Optional[dict[str, Any]] = None,
    ) -> list[ProviderAccount]:
        _require(self.name, credentials, "link_id")
        data = await self._request(
            "POST",
            "/api/accounts/",
            json={"link": credentials["link_id"], "save_data": True},
        )
        accounts = [self._parse_account(a) for a in data or []]

        wanted = set((account_scope or {}).get("account_ids") or [])
        if wanted:
            accounts = [a for a in accounts if a.provider_account_id in wanted]
        return accounts

    async def sync_transactions(
        self,
        credentials: dict[str, Any],
        account_scope: Optional[dict[str, Any]] = None,
        since_cursor: Optional[str] = None,
    ) -> SyncResult:
        """Fetch transactions from the cursor date up to today."""
        _require(self.name, credentials, "link_id")
        today = utcnow().date()
        try:
            date_from = date.fromisoformat(since_cursor) if since_cursor else today - timedelta(days=INITIAL_SYNC_DAYS)
        except ValueError:
            raise ProviderValidationError(self.name, f"Invalid sync cursor: {since_cursor}", code="INVALID_CURSOR")

        body: dict[str, Any] = {
            "link": credentials["link_id"],
            "date_from": date_from.isoformat(),
            "date_to": today.isoformat(),
            "save_data": True,
        }
        account_ids = (account_scope or {}).get("account_ids")
        if account_ids and len(account_ids) == 1:
            body["account"] = account_ids[0]

        data = await self._request("POST", "/api/transactions/", json=body)
        transactions = [self._parse_transaction(t) for t in data or []]
        if account_ids:
            transactions = [t for t in transactions if t.provider_account_id in set(account_ids)]

        logger.debug(f"Belvo sync {date_from} -> {today}: {len(transactions)} transactions")
        # Date-range fetches cannot tell added from modified
        return SyncResult(added=transactions, next_cursor=today.isoformat(), has_more=False)

    async def handle_webhook(self, payload: dict[str, Any], signature: Optional[str]) -> WebhookResult:
        if self.config.webhook_secret and not verify_signature(self.config.webhook_secret, payload, signature):
            raise ProviderValidationError(self.name, "Invalid webhook signature", code="INVALID_SIGNATURE")

        event = payload.get("webhook_code") or payload.get("event")
        logger.info(f"Received Belvo webhook: {event}")
        return WebhookResult(
            accepted=True,
            event_type=event,
            item_id=payload.get("link_id"),
        )

    def _parse_account(self, raw: dict[str, Any]) -> ProviderAccount:
        balance = raw.get("balance") or {}
        institution = raw.get("institution") or {}
        return ProviderAccount(
            provider_account_id=raw["id"],
            name=raw.get("name", ""),
            account_type=(raw.get("category") or "other").lower(),
            provider=self.name,
            subtype=raw.get("type"),
            currency=(raw.get("currency") or "MXN").upper(),
            balance=Decimal(str(balance["current"])) if balance.get("current") is not None else None,
            available_balance=Decimal(str(balance["available"])) if balance.get("available") is not None else None,
            mask=(raw.get("number") or "")[-4:] or None,
            institution_id=institution.get("name"),
        )

    def _parse_transaction(self, raw: dict[str, Any]) -> ProviderTransaction:
        amount = Decimal(str(raw.get("amount", 0)))
        if raw.get("type") == "OUTFLOW":
            amount = -amount
        value_date = date.fromisoformat(raw["value_date"])
        merchant = raw.get("merchant") or {}
        return ProviderTransaction(
            provider_transaction_id=raw["id"],
            provider_account_id=(raw.get("account") or {}).get("id", ""),
            amount=amount,
            posted_at=datetime(value_date.year, value_date.month, value_date.day, tzinfo=timezone.utc),
            description=raw.get("description") or "",
            currency=(raw.get("currency") or "MXN").upper(),
            pending=raw.get("status") == "PENDING",
            merchant_name=merchant.get("name"),
        )
