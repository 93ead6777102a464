"""Model pricing and per-request cost calculation."""

from __future__ import annotations

from dataclasses import dataclass

from cctrack.models import RateEntry

_DIGITS = frozenset("0123456789")


@dataclass(frozen=True)
class Pricing:
    """Prices in dollars per million tokens."""

    input: float
    output: float
    cache_write: float
    cache_read: float


_OPUS = Pricing(input=15.00, output=75.00, cache_write=18.75, cache_read=1.50)
_SONNET = Pricing(input=3.00, output=15.00, cache_write=3.75, cache_read=0.30)
_HAIKU = Pricing(input=0.80, output=4.00, cache_write=1.00, cache_read=0.08)


def get_pricing(model: str) -> Pricing:
    """Return the price list for a model; unknown models are priced as sonnet."""
    name = normalize_model(model)
    if "opus" in name:
        return _OPUS
    if "haiku" in name:
        return _HAIKU
    return _SONNET


def normalize_model(model: str) -> str:
    """Strip an 8-digit date suffix: claude-opus-4-6-20250514 -> claude-opus-4-6."""
    parts = model.split("-")
    last = parts[-1]
    if len(last) == 8 and set(last) <= _DIGITS:
        parts = parts[:-1]
    return "-".join(parts)


def calculate_cost(
    input_tokens: int,
    output_tokens: int,
    cache_write_tokens: int,
    cache_read_tokens: int,
    model: str,
) -> tuple[float, float, float, float]:
    """Return (input, output, cache write, cache read) cost in dollars."""
    p = get_pricing(model)
    return (
        (input_tokens / 1_000_000.0) * p.input,
        (output_tokens / 1_000_000.0) * p.output,
        (cache_write_tokens / 1_000_000.0) * p.cache_write,
        (cache_read_tokens / 1_000_000.0) * p.cache_read,
    )


def rate_card() -> list[RateEntry]:
    """The published price list, one entry per model family."""
    return [
        RateEntry(
            model=f"claude-{family}-4",
            input_per_mtok=p.input,
            output_per_mtok=p.output,
            cache_write_per_mtok=p.cache_write,
            cache_read_per_mtok=p.cache_read,
        )
        for family, p in (("opus", _OPUS), ("sonnet", _SONNET), ("haiku", _HAIKU))
    ]