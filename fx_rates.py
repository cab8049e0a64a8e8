from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from functools import lru_cache
from typing import Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from config import get_settings


logger = logging.getLogger(__name__)

MICROS = Decimal("1000000")


@dataclass(frozen=True)
class FxQuote:
    provider: str
    base: str
    quote: str
    rate: Decimal  # quote per 1 base
    rate_date: date
    fetched_at: datetime


class FxRateService:
    def __init__(self) -> None:
        self.settings = get_settings()

    def quote(
        self, base: str, quote: str, on_date: Optional[date] = None
    ) -> FxQuote:
        provider = (self.settings.fx_provider or "frankfurter").lower()
        if provider != "frankfurter":
            raise ValueError(f"Unsupported FX provider: {provider}")

        result = _fetch_frankfurter_quote(
            base.upper(),
            quote.upper(),
            on_date or date.today(),
            timeout=self.settings.fx_timeout_secs,
        )
        markup_bps = self.settings.fx_markup_bps
        if markup_bps:
            factor = Decimal("1") - (Decimal(markup_bps) / Decimal("10000"))
            result = FxQuote(
                provider=result.provider,
                base=result.base,
                quote=result.quote,
                rate=(result.rate * factor),
                rate_date=result.rate_date,
                fetched_at=result.fetched_at,
            )
        return result

    def get_rate(
        self, from_currency: str, to_currency: str, on_date: Optional[date] = None
    ) -> Optional[Decimal]:
        """Rate to multiply a ``from_currency`` amount by, or None if unknown."""
        if from_currency.upper() == to_currency.upper():
            return Decimal("1")
        try:
            return self.quote(from_currency, to_currency, on_date).rate
        except (RuntimeError, ValueError) as exc:
            logger.warning(
                f"fx_rate_unavailable: from={from_currency} to={to_currency} "
                f"error={exc}"
            )
            return None

    @staticmethod
    def convert_cents(amount_cents: int, rate: Decimal) -> int:
        converted = (Decimal(amount_cents) * rate).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        return int(converted)

    @staticmethod
    def rate_to_micros(rate: Decimal) -> int:
        return int((rate * MICROS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @staticmethod
    def micros_to_rate(micros: int) -> Decimal:
        return Decimal(micros) / MICROS


@lru_cache(maxsize=2048)
def _fetch_frankfurter_quote(
    base: str, quote: str, on_date: date, *, timeout: float
) -> FxQuote:
    url = f"https://api.frankfurter.app/{on_date.isoformat()}?from={base}&to={quote}"
    req = Request(url, headers={"Accept": "application/json"})
    fetched_at = datetime.now(timezone.utc)
    try:
        with urlopen(req, timeout=timeout) as resp:
            payload = json.loads(resp.read().decode("utf-8"))
    except (URLError, TimeoutError, json.JSONDecodeError) as exc:
        raise RuntimeError(
            f"Failed to fetch FX rate from Frankfurter for {base}/{quote} {on_date}"
        ) from exc

    try:
        rate_value = payload["rates"][quote]
        effective_date = date.fromisoformat(payload["date"])
    except (KeyError, TypeError, ValueError) as exc:
        raise RuntimeError("Unexpected FX provider response") from exc

    return FxQuote(
        provider="frankfurter",
        base=base,
        quote=quote,
        rate=Decimal(str(rate_value)),
        rate_date=effective_date,
        fetched_at=fetched_at,
    )
