"""
Plaid Adapter

Bank aggregation for US/CA institutions via the Plaid REST API.
Uses Link for account connection and /transactions/sync for
cursor-based incremental transaction updates.

API Documentation: https://plaid.com/docs/api/
"""
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional, Any
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
    _require,
)
from finsync.data_providers.adapters.http import HttpAdapter, verify_signature


PLAID_ENVIRONMENTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}


def create_plaid_config(
    client_id: str,
    secret: str,
    environment: str = "sandbox",
    webhook_secret: Optional[str] = None,
    timeout_seconds: float = 10.0,
) -> ProviderConfig:
    """Create configuration for Plaid adapter."""
    return ProviderConfig(
        name="plaid",
        api_key=client_id,
        api_secret=secret,
        base_url=PLAID_ENVIRONMENTS.get(environment, PLAID_ENVIRONMENTS["sandbox"]),
        regions=["US", "CA"],
        timeout_seconds=timeout_seconds,
        webhook_secret=webhook_secret,
    )


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _decimal(value: Any) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


class PlaidAdapter(HttpAdapter):
    """
    Plaid data provider adapter.

    Credentials: {"access_token": "..."} obtained from exchange_token.

    Usage:
        config = create_plaid_config(client_id, secret)
        adapter = PlaidAdapter(config)
        await adapter.initialize()

        accounts = await adapter.get_accounts({"access_token": token})
    """

    client_name = "Finsync"
    products = ["transactions", "auth"]
    sync_page_size = 500

    def _default_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.config.api_key:
            headers["PLAID-CLIENT-ID"] = self.config.api_key
        if self.config.api_secret:
            headers["PLAID-SECRET"] = self.config.api_secret
        return headers

    async def _probe(self, region: str) -> None:
        await self._request(
            "POST",
            "/institutions/get",
            json={"count": 1, "offset": 0, "country_codes": [region]},
            timeout=self.config.health_check_timeout_seconds,
        )

    async def create_link(self, params: dict[str, Any]) -> LinkResult:
        """Create a Link token for the client-side Link flow."""
        _require(self.name, params, "user_id")
        body: dict[str, Any] = {
            "client_name": self.client_name,
            "user": {"client_user_id": str(params["user_id"])},
            "products": params.get("products", self.products),
            "country_codes": [params.get("country_code", "US")],
            "language": params.get("language", "en"),
        }
        if params.get("webhook_url"):
            body["webhook"] = params["webhook_url"]

        data = await self._request("POST", "/link/token/create", json=body)
        return LinkResult(link_token=data["link_token"], expires_at=_parse_datetime(data.get("expiration")))

    async def exchange_token(self, params: dict[str, Any]) -> TokenExchangeResult:
        """Exchange a Link public token for an access token."""
        _require(self.name, params, "public_token")
        data = await self._request(
            "POST", "/item/public_token/exchange", json={"public_token": params["public_token"]}
        )
        return TokenExchangeResult(
            access_token=data["access_token"],
            item_id=data.get("item_id"),
            institution_id=params.get("institution_id"),
        )

    async def get_accounts(
        self,
        credentials: dict[str, Any],
        account_scope: Optional[dict[str, Any]] = None,
    ) -> list[ProviderAccount]:
        _require(self.name, credentials, "access_token")
        body: dict[str, Any] = {"access_token": credentials["access_token"]}
        account_ids = (account_scope or {}).get("account_ids")
        if account_ids:
            body["options"] = {"account_ids": list(account_ids)}

        data = await self._request("POST", "/accounts/get", json=body)
        institution_id = (data.get("item") or {}).get("institution_id")
        return [self._parse_account(a, institution_id) for a in data.get("accounts", [])]

    async def sync_transactions(
        self,
        credentials: dict[str, Any],
        account_scope: Optional[dict[str, Any]] = None,
        since_cursor: Optional[str] = None,
    ) -> SyncResult:
        """Fetch one page of /transactions/sync changes."""
        _require(self.name, credentials, "access_token")
        body: dict[str, Any] = {"access_token": credentials["access_token"], "count": self.sync_page_size}
        if since_cursor:
            body["cursor"] = since_cursor

        data = await self._request("POST", "/transactions/sync", json=body)

        wanted = set((account_scope or {}).get("account_ids") or [])
        added = [self._parse_transaction(t) for t in data.get("added", [])]
        modified = [self._parse_transaction(t) for t in data.get("modified", [])]
        if wanted:
            added = [t for t in added if t.provider_account_id in wanted]
            modified = [t for t in modified if t.provider_account_id in wanted]

        result = SyncResult(
            added=added,
            modified=modified,
            removed=[r["transaction_id"] for r in data.get("removed", [])],
            next_cursor=data.get("next_cursor"),
            has_more=bool(data.get("has_more")),
        )
        logger.debug(
            f"Plaid sync: {len(result.added)} added, {len(result.modified)} modified, "
            f"{len(result.removed)} removed"
        )
        return result

    async def handle_webhook(self, payload: dict[str, Any], signature: Optional[str]) -> WebhookResult:
        if self.config.webhook_secret and not verify_signature(self.config.webhook_secret, payload, signature):
            raise ProviderValidationError(self.name, "Invalid webhook signature", code="INVALID_SIGNATURE")

        webhook_type = payload.get("webhook_type", "")
        webhook_code = payload.get("webhook_code", "")
        logger.info(f"Received Plaid webhook: {webhook_type}.{webhook_code}")
        return WebhookResult(
            accepted=True,
            event_type=f"{webhook_type}.{webhook_code}".strip("."),
            item_id=payload.get("item_id"),
        )

    def _parse_account(self, raw: dict[str, Any], institution_id: Optional[str]) -> ProviderAccount:
        balances = raw.get("balances") or {}
        return ProviderAccount(
            provider_account_id=raw["account_id"],
            name=raw.get("official_name") or raw.get("name", ""),
            account_type=raw.get("type", "other"),
            provider=self.name,
            subtype=raw.get("subtype"),
            currency=(balances.get("iso_currency_code") or "USD").upper(),
            balance=_decimal(balances.get("current")),
            available_balance=_decimal(balances.get("available")),
            mask=raw.get("mask"),
            institution_id=institution_id,
        )

    def _parse_transaction(self, raw: dict[str, Any]) -> ProviderTransaction:
        posted = date.fromisoformat(raw["date"])
        return ProviderTransaction(
            provider_transaction_id=raw["transaction_id"],
            provider_account_id=raw["account_id"],
            # Plaid reports outflows as positive amounts
            amount=-Decimal(str(raw["amount"])),
            posted_at=datetime(posted.year, posted.month, posted.day, tzinfo=timezone.utc),
            description=raw.get("name", ""),
            currency=(raw.get("iso_currency_code") or "USD").upper(),
            pending=bool(raw.get("pending")),
            merchant_name=raw.get("merchant_name"),
        )
