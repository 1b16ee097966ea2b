from __future__ import annotations

import hashlib
from typing import Any

from pydantic import BaseModel, Field, SecretStr, field_validator


class BrokerCredentials(BaseModel):
    """Plaintext API credentials bound to one connector."""

    api_key: SecretStr
    api_secret: SecretStr
    passphrase: SecretStr | None = None
    sandbox: bool = False

    model_config = {"extra": "forbid", "frozen": True}

    @property
    def fingerprint(self) -> str:
        """Stable, non-reversible identifier for the API key."""
        digest = hashlib.sha256(self.api_key.get_secret_value().encode()).hexdigest()
        return digest[:12]


class BrokerSettings(BaseModel):
    exchange: str
    enabled: bool = True
    sandbox: bool = False
    credentials: BrokerCredentials | None = None
    symbols: list[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    @field_validator("exchange")
    @classmethod
    def _upper_exchange(cls, value: str) -> str:
        return value.strip().upper()

    def bound_credentials(self) -> BrokerCredentials | None:
        """Credentials with this broker's sandbox flag applied."""
        if self.credentials is None:
            return None
        if self.sandbox and not self.credentials.sandbox:
            return self.credentials.model_copy(update={"sandbox": True})
        return self.credentials


class Settings(BaseModel):
    env: str = "dev"
    request_timeout: float = Field(default=10.0, gt=0)
    brokers: dict[str, BrokerSettings] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}

    def redacted(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        for broker in data.get("brokers", {}).values():
            creds = broker.get("credentials")
            if isinstance(creds, dict):
                if "api_key" in creds:
                    creds["api_key"] = "***"
                if "api_secret" in creds:
                    creds["api_secret"] = "***"
                if "passphrase" in creds and creds["passphrase"] is not None:
                    creds["passphrase"] = "***"
        return data
