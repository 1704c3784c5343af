"""Exchange rate lookup with an injected cache and stale fallback.

Rates are only needed to compare transfer legs recorded in different
currencies. A lookup never fails a matching pass: the converter falls back
from a fresh cache entry, to a live fetch, to a stale cache entry, and
finally reports the rate as unavailable.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Protocol

import httpx

from transfer_recon.config import settings
from transfer_recon.logger import get_logger, log_external_api
from transfer_recon.schemas.transaction import Transaction

logger = get_logger(__name__)

Clock = Callable[[], datetime]


class FxRateError(Exception):
    """Raised when an exchange rate cannot be fetched."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


def normalize_currency(code: str) -> str:
    return code.strip().upper()


@dataclass(frozen=True)
class RateQuote:
    """A resolved rate and how much it can be trusted."""

    rate: Decimal
    fetched_at: datetime
    source: str
    is_stale: bool = False


@dataclass(frozen=True)
class Conversion:
    converted_amount: Decimal
    rate: Decimal
    is_stale: bool
    source: str


@dataclass
class _CacheEntry:
    rate: Decimal
    stored_at: datetime


class RateCache:
    """Exchange rate cache keyed by currency pair.

    Entries younger than ttl_seconds are fresh. Entries younger than
    stale_ttl_seconds may still be served through get_stale when the rate
    service is down. The clock is injectable so tests control time.
    """

    def __init__(
        self,
        ttl_seconds: int | None = None,
        stale_ttl_seconds: int | None = None,
        clock: Clock | None = None,
        max_size: int = 10_000,
    ) -> None:
        self._ttl = timedelta(
            seconds=settings.fx_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        )
        self._stale_ttl = timedelta(
            seconds=settings.fx_stale_ttl_seconds if stale_ttl_seconds is None else stale_ttl_seconds
        )
        self._clock = clock or _utcnow
        self._max_size = max_size
        self._store: dict[tuple[str, str], _CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._store)

    def _key(self, from_currency: str, to_currency: str) -> tuple[str, str]:
        return normalize_currency(from_currency), normalize_currency(to_currency)

    def get_fresh(self, from_currency: str, to_currency: str) -> RateQuote | None:
        entry = self._store.get(self._key(from_currency, to_currency))
        if entry is None or self._clock() - entry.stored_at > self._ttl:
            return None
        return RateQuote(rate=entry.rate, fetched_at=entry.stored_at, source="cache")

    def get_stale(self, from_currency: str, to_currency: str) -> RateQuote | None:
        """Return an expired-but-usable entry, or None once past the stale window."""
        key = self._key(from_currency, to_currency)
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at > self._stale_ttl:
            self._store.pop(key, None)
            return None
        return RateQuote(
            rate=entry.rate,
            fetched_at=entry.stored_at,
            source="stale_cache",
            is_stale=self._clock() - entry.stored_at > self._ttl,
        )

    def set(self, from_currency: str, to_currency: str, rate: Decimal) -> None:
        if len(self._store) >= self._max_size:
            now = self._clock()
            self._store = {
                k: v for k, v in self._store.items() if now - v.stored_at <= self._stale_ttl
            }

            if len(self._store) >= self._max_size:
                num_to_remove = max(1, int(self._max_size * 0.2))
                for k in list(self._store.keys())[:num_to_remove]:
                    self._store.pop(k, None)

        self._store[self._key(from_currency, to_currency)] = _CacheEntry(
            rate=rate, stored_at=self._clock()
        )

    def clear(self) -> None:
        self._store.clear()


class RateProvider(Protocol):
    async def fetch_rate(self, from_currency: str, to_currency: str) -> Decimal: ...


class ExchangeRateClient:
    """Client for the public latest-rates API (one base currency per request)."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.fx_api_base_url).rstrip("/")
        self._timeout = settings.fx_request_timeout_seconds if timeout is None else timeout
        self._transport = transport

    @log_external_api("exchange_rate_api")
    async def fetch_rate(self, from_currency: str, to_currency: str) -> Decimal:
        base = normalize_currency(from_currency)
        quote = normalize_currency(to_currency)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(f"{self._base_url}/{base}")
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            raise FxRateError(f"Rate request for {base}/{quote} failed: {exc}") from exc

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict) or quote not in rates:
            raise FxRateError(f"No rate for {base}/{quote} in response")

        try:
            rate = Decimal(str(rates[quote]))
        except InvalidOperation as exc:
            raise FxRateError(f"Malformed rate for {base}/{quote}: {rates[quote]!r}") from exc
        if not rate.is_finite() or rate <= 0:
            raise FxRateError(f"Invalid rate for {base}/{quote}: {rate}")
        return rate


class CurrencyConverter:
    """Resolve rates through cache, live service and stale cache, in that order."""

    def __init__(self, provider: RateProvider | None = None, cache: RateCache | None = None) -> None:
        self._provider = provider
        self._cache = cache if cache is not None else RateCache()

    async def get_rate(self, from_currency: str, to_currency: str) -> RateQuote | None:
        base = normalize_currency(from_currency)
        quote = normalize_currency(to_currency)
        if base == quote:
            return RateQuote(rate=Decimal("1"), fetched_at=_utcnow(), source="identity")

        cached = self._cache.get_fresh(base, quote)
        if cached is not None:
            return cached

        if self._provider is not None:
            try:
                rate = await self._provider.fetch_rate(base, quote)
            except Exception as exc:
                logger.warning(
                    "Exchange rate unavailable, trying stale cache",
                    from_currency=base,
                    to_currency=quote,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            else:
                self._cache.set(base, quote, rate)
                return RateQuote(rate=rate, fetched_at=_utcnow(), source="live")

        stale = self._cache.get_stale(base, quote)
        if stale is None:
            logger.info("No exchange rate available", from_currency=base, to_currency=quote)
        return stale

    async def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Conversion | None:
        quote = await self.get_rate(from_currency, to_currency)
        if quote is None:
            return None
        return Conversion(
            converted_amount=amount * quote.rate,
            rate=quote.rate,
            is_stale=quote.is_stale,
            source=quote.source,
        )


class RateTable:
    """Immutable snapshot of rates resolved before a matching pass."""

    def __init__(self, quotes: Mapping[tuple[str, str], RateQuote] | None = None) -> None:
        self._quotes = {
            (normalize_currency(a), normalize_currency(b)): q for (a, b), q in (quotes or {}).items()
        }

    def __len__(self) -> int:
        return len(self._quotes)

    def get(self, from_currency: str, to_currency: str) -> RateQuote | None:
        base = normalize_currency(from_currency)
        quote = normalize_currency(to_currency)
        if base == quote:
            return RateQuote(rate=Decimal("1"), fetched_at=_utcnow(), source="identity")
        return self._quotes.get((base, quote))


async def prefetch_rates(
    converter: CurrencyConverter,
    transactions: Iterable[Transaction],
    base_currency: str | None = None,
) -> RateTable:
    """Resolve every foreign-currency -> base rate needed by a batch, concurrently."""
    base = normalize_currency(base_currency or settings.base_currency)
    currencies = sorted(
        {
            normalize_currency(tx.original_currency)
            for tx in transactions
            if tx.original_currency and normalize_currency(tx.original_currency) != base
        }
    )
    if not currencies:
        return RateTable()

    quotes = await asyncio.gather(*(converter.get_rate(code, base) for code in currencies))
    return RateTable(
        {(code, base): quote for code, quote in zip(currencies, quotes, strict=True) if quote is not None}
    )
