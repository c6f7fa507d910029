"""Registry selecting a gateway adapter by gateway identifier."""

from __future__ import annotations

from functools import lru_cache

from app.config import Settings, settings
from app.models.billing import PaymentGateway
from app.services.common import validate_enum
from app.services.errors import ValidationError
from app.services.gateways.base import PaymentGatewayAdapter
from app.services.gateways.card import CardAdapter
from app.services.gateways.easypaisa import EasypaisaAdapter
from app.services.gateways.jazzcash import JazzCashAdapter

CALLBACK_PATHS = {
    PaymentGateway.jazzcash: "/api/v1/payments/callbacks/jazzcash",
    PaymentGateway.easypaisa: "/api/v1/payments/callbacks/easypaisa",
    PaymentGateway.card: "/api/v1/payments/callbacks/card",
}


class GatewayRegistry:
    def __init__(self, adapters: list[PaymentGatewayAdapter]) -> None:
        self._adapters = {adapter.gateway: adapter for adapter in adapters}

    def get(self, gateway) -> PaymentGatewayAdapter:
        key = validate_enum(gateway, PaymentGateway, "gateway")
        adapter = self._adapters.get(key)
        if adapter is None:
            raise ValidationError(f"Gateway {key.value} is not available")
        return adapter

    def gateways(self) -> list[PaymentGateway]:
        return list(self._adapters)

    @classmethod
    def from_settings(cls, config: Settings) -> GatewayRegistry:
        site = config.site_url.rstrip("/")
        return cls(
            [
                JazzCashAdapter(
                    merchant_id=config.jazzcash_merchant_id or "",
                    password=config.jazzcash_password or "",
                    integrity_salt=config.jazzcash_integrity_salt or "",
                    api_url=config.jazzcash_api_url,
                    notify_url=site + CALLBACK_PATHS[PaymentGateway.jazzcash],
                ),
                EasypaisaAdapter(
                    store_id=config.easypaisa_store_id or "",
                    hash_key=config.easypaisa_hash_key or "",
                    api_url=config.easypaisa_api_url,
                    notify_url=site + CALLBACK_PATHS[PaymentGateway.easypaisa],
                ),
                CardAdapter(
                    secret_key=config.card_secret_key or "",
                    webhook_secret=config.card_webhook_secret or "",
                    api_base=config.card_api_base,
                    timeout=config.gateway_timeout_seconds,
                    tolerance_seconds=config.card_signature_tolerance_seconds,
                ),
            ]
        )


@lru_cache(maxsize=1)
def get_gateway_registry() -> GatewayRegistry:
    return GatewayRegistry.from_settings(settings)
