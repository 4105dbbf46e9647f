"""
Normalization of fetched listing records into store-ready frames.
"""

import math
from typing import Iterable, Optional

import pandas as pd

DEFAULT_AMOUNT = 0.0

COIN_COLUMNS = ["uuid", "symbol", "name"]
OBSERVATION_COLUMNS = ["uuid", "price", "market_cap"]


def parse_amount(value: Optional[str], default: float = DEFAULT_AMOUNT) -> float:
    """
    Parse a textual amount, falling back to ``default`` when unparsable.

    Only a bare decimal literal is accepted: surrounding whitespace and digit
    separators (``" 12 "``, ``"1_000"``) are rejected even though ``float``
    would take them. NaN and infinities also fall back.
    """
    if value is None:
        return default
    if isinstance(value, str) and (value != value.strip() or "_" in value):
        return default
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(amount) or math.isinf(amount):
        return default
    return amount


def records_to_frame(records: Iterable) -> pd.DataFrame:
    """
    Build a frame with one row per fetched record, in fetch order.

    Columns: uuid, symbol, name, price, market_cap. Numeric columns are floats;
    values that cannot be parsed become DEFAULT_AMOUNT.
    """
    rows = [
        {
            "uuid": r.uuid,
            "symbol": r.symbol,
            "name": r.name,
            "price": r.price,
            "market_cap": r.market_cap,
        }
        for r in records
    ]
    df = pd.DataFrame(rows, columns=COIN_COLUMNS + ["price", "market_cap"])

    for col in ("price", "market_cap"):
        df[col] = df[col].map(parse_amount).astype("float64")

    return df


def latest_coin_rows(df: pd.DataFrame) -> pd.DataFrame:
    """Deduplicate by uuid keeping the last observed symbol/name."""
    return (
        df[COIN_COLUMNS]
        .drop_duplicates(subset="uuid", keep="last")
        .reset_index(drop=True)
    )
