"""
Provider Identity

The (provider, region) key under which all per-provider state is tracked.
"""
from dataclasses import dataclass


DEFAULT_REGION = "US"


def normalize_provider(name: str) -> str:
    """Canonical provider name: stripped, lowercase."""
    return (name or "").strip().lower()


def normalize_region(region: str) -> str:
    """Canonical region code: stripped, uppercase."""
    return (region or "").strip().upper()


@dataclass(frozen=True, order=True)
class ProviderIdentity:
    """
    Identity of one external data source instance.

    Always constructed in canonical form; use `ProviderIdentity.of()` for
    untrusted input.
    """
    provider: str
    region: str = DEFAULT_REGION

    def __post_init__(self):
        provider = normalize_provider(self.provider)
        region = normalize_region(self.region)
        if not provider:
            raise ValueError("Provider name must not be empty")
        if not region:
            raise ValueError("Region must not be empty")
        # frozen dataclass: bypass __setattr__ to store normalized values
        object.__setattr__(self, "provider", provider)
        object.__setattr__(self, "region", region)

    @classmethod
    def of(cls, provider: str, region: str = DEFAULT_REGION) -> "ProviderIdentity":
        return cls(provider=provider, region=region)

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.region}"

    def __str__(self) -> str:
        return self.key
