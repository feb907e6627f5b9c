"""
============================================================================
Arbitrage Ledger - Exchange Rate Service
============================================================================

Input Constraints: base currency is GBP or EUR
Side Effects: Outbound HTTP calls (CoinGecko, Frankfurter)

Best-effort live rates for the calculator. A failed fetch never raises to
the caller and never blocks the metrics engine:

    crypto rate (EUR -> USDT)
        1. CoinGecko tether/eur price, inverted
        2. Frankfurter EUR -> USD (USDT tracks USD)
        3. 0

    composite rate
        EUR: forex = 1, composite = crypto
        GBP: forex = Frankfurter GBP -> EUR, composite = forex * crypto

When the composite comes back as 0 the last good quote for that base is
returned instead (source=last_known). Each base currency owns its own slot,
so a slow superseded request can only overwrite its own currency.

ERROR CODES:
    - RATE-001: Primary rate source failed
    - RATE-002: Fallback rate source failed

============================================================================
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from app.observability.metrics import (
    observe_rate_fetch,
    record_rate_fetch_failure,
    update_last_rate,
)
from services.decimal_gateway import ZERO, coerce_decimal, to_rate
from services.ledger_config import LedgerConfig, get_ledger_config
from services.ledger_errors import LedgerErrorCode, RateFetchError
from services.transaction_models import FiatCurrency

logger = logging.getLogger(__name__)

SOURCE_COINGECKO = "coingecko"
SOURCE_FRANKFURTER = "frankfurter"


@dataclass(frozen=True)
class RateQuote:
    """
    One composite quote. Rates are fiat units per unit, e.g. USDT per EUR.

    source: "live", "last_known" or "unavailable"
    """
    base: str
    forex_rate: Decimal
    crypto_rate: Decimal
    composite_rate: Decimal
    source: str = "live"
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base": self.base,
            "forex_rate": str(self.forex_rate),
            "crypto_rate": str(self.crypto_rate),
            "composite_rate": str(self.composite_rate),
            "source": self.source,
            "fetched_at": self.fetched_at.isoformat(),
        }


class RateService:
    """
    Async rate fetcher with last-known fallback.

    USAGE:
        service = RateService()
        quote = await service.get_composite_rate("GBP")
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        self._config = config or get_ledger_config()
        self._transport = transport
        self._last_known: Dict[str, RateQuote] = {}

    def last_known(self, base: str) -> Optional[RateQuote]:
        return self._last_known.get(base)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._config.rate_timeout,
            transport=self._transport,
        )

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        source: str,
        url: str,
        params: Dict[str, str],
        error_code: str
    ) -> Dict[str, Any]:
        """
        Raises:
            RateFetchError: On timeout, connection failure, non-200 or bad JSON
        """
        start_time = time.monotonic()
        try:
            response = await client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise RateFetchError(f"{source} request timed out", error_code) from e
        except httpx.HTTPError as e:
            raise RateFetchError(f"{source} request failed: {str(e)[:100]}", error_code) from e
        finally:
            observe_rate_fetch(source, time.monotonic() - start_time)

        if response.status_code != 200:
            raise RateFetchError(
                f"{source} returned status {response.status_code}", error_code
            )
        try:
            data = response.json()
        except ValueError as e:
            raise RateFetchError(f"{source} returned invalid JSON", error_code) from e
        if not isinstance(data, dict):
            raise RateFetchError(f"{source} returned unexpected payload", error_code)
        return data

    def _log_failure(self, source: str, error: RateFetchError) -> None:
        record_rate_fetch_failure(source, error.error_code)
        logger.warning(
            f"[{error.error_code}] Rate source failed | source={source} | error={error.message}"
        )

    async def fetch_forex_rate(
        self,
        client: httpx.AsyncClient,
        from_currency: str,
        to_currency: str,
        error_code: str = LedgerErrorCode.RATE_PRIMARY_FAIL
    ) -> Decimal:
        """
        Frankfurter latest rate from -> to.

        Raises:
            RateFetchError: If the source fails or returns no usable rate
        """
        data = await self._get_json(
            client,
            SOURCE_FRANKFURTER,
            self._config.frankfurter_url,
            {"from": from_currency, "to": to_currency},
            error_code,
        )
        rate = coerce_decimal((data.get("rates") or {}).get(to_currency))
        if rate <= ZERO:
            raise RateFetchError(
                f"{SOURCE_FRANKFURTER} returned no {from_currency}->{to_currency} rate",
                error_code,
            )
        return rate

    async def fetch_crypto_rate(self, client: httpx.AsyncClient) -> Decimal:
        """USDT per EUR. Falls back to EUR -> USD, then 0; never raises."""
        try:
            data = await self._get_json(
                client,
                SOURCE_COINGECKO,
                self._config.coingecko_url,
                {"ids": "tether", "vs_currencies": "eur"},
                LedgerErrorCode.RATE_PRIMARY_FAIL,
            )
            tether_eur = coerce_decimal((data.get("tether") or {}).get("eur"))
            if tether_eur <= ZERO:
                raise RateFetchError(
                    f"{SOURCE_COINGECKO} returned no tether/eur price",
                    LedgerErrorCode.RATE_PRIMARY_FAIL,
                )
            return Decimal("1") / tether_eur
        except RateFetchError as e:
            self._log_failure(SOURCE_COINGECKO, e)

        try:
            return await self.fetch_forex_rate(
                client, "EUR", "USD", LedgerErrorCode.RATE_FALLBACK_FAIL
            )
        except RateFetchError as e:
            self._log_failure(SOURCE_FRANKFURTER, e)
            return ZERO

    async def _fetch_gbp_eur(self, client: httpx.AsyncClient) -> Decimal:
        try:
            return await self.fetch_forex_rate(client, "GBP", "EUR")
        except RateFetchError as e:
            self._log_failure(SOURCE_FRANKFURTER, e)
            return ZERO

    async def get_composite_rate(self, base: Any) -> RateQuote:
        """
        Composite fiat -> USDT quote for base (GBP or EUR).

        Raises:
            ValueError: If base is not a supported fiat currency
        """
        currency = FiatCurrency(base).value

        async with self._client() as client:
            if currency == FiatCurrency.EUR.value:
                forex_rate = Decimal("1")
                crypto_rate = await self.fetch_crypto_rate(client)
            else:
                forex_rate, crypto_rate = await asyncio.gather(
                    self._fetch_gbp_eur(client),
                    self.fetch_crypto_rate(client),
                )

        composite = forex_rate * crypto_rate
        if composite > ZERO:
            quote = RateQuote(
                base=currency,
                forex_rate=to_rate(forex_rate),
                crypto_rate=to_rate(crypto_rate),
                composite_rate=to_rate(composite),
            )
            self._last_known[currency] = quote
            update_last_rate(currency, quote.composite_rate)
            logger.info(
                f"[LEDGER-RATES] Composite rate fetched | base={currency} | "
                f"forex={quote.forex_rate} | crypto={quote.crypto_rate} | "
                f"composite={quote.composite_rate}"
            )
            return quote

        previous = self._last_known.get(currency)
        if previous is not None:
            logger.warning(
                f"[LEDGER-RATES] Live rates unavailable, using last known | base={currency} | "
                f"composite={previous.composite_rate}"
            )
            return RateQuote(
                base=currency,
                forex_rate=previous.forex_rate,
                crypto_rate=previous.crypto_rate,
                composite_rate=previous.composite_rate,
                source="last_known",
                fetched_at=previous.fetched_at,
            )

        logger.warning(f"[LEDGER-RATES] Live rates unavailable | base={currency}")
        return RateQuote(
            base=currency,
            forex_rate=to_rate(forex_rate),
            crypto_rate=to_rate(crypto_rate),
            composite_rate=ZERO,
            source="unavailable",
        )


__all__ = [
    "RateQuote",
    "RateService",
]
