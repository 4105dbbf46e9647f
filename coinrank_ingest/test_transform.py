import pytest

from coinrank_ingest.coinranking_api import FetchedRecord
from coinrank_ingest.transform import (
    DEFAULT_AMOUNT,
    latest_coin_rows,
    parse_amount,
    records_to_frame,
)


@pytest.mark.parametrize("value, expected", [
    ("3500.5", 3500.5),
    ("0", 0.0),
    ("1e5", 100000.0),
    ("+1", 1.0),
    ("-2.25", -2.25),
    (".5", 0.5),
    ("7.", 7.0),
])
def test_parse_amount_accepts_decimal_literals(value, expected):
    assert parse_amount(value) == expected


@pytest.mark.parametrize("value", [
    None,
    "",
    "abc",
    " 12 ",
    "12 ",
    "\t12",
    "1_000",
    "1,000",
    "nan",
    "inf",
    "-Infinity",
])
def test_parse_amount_falls_back(value):
    assert parse_amount(value) == DEFAULT_AMOUNT


def test_parse_amount_custom_default():
    assert parse_amount("bad", default=-1.0) == -1.0


class TestFrames:

    def test_records_to_frame_keeps_order_and_coerces(self):
        records = [
            FetchedRecord("u1", "BTC", "Bitcoin", "100.5", "2000"),
            FetchedRecord("u2", "ETH", "Ethereum", " 7 ", None),
        ]

        df = records_to_frame(records)

        assert list(df["uuid"]) == ["u1", "u2"]
        assert list(df["price"]) == [100.5, 0.0]
        assert list(df["market_cap"]) == [2000.0, 0.0]
        assert str(df["price"].dtype) == "float64"

    def test_empty_records(self):
        df = records_to_frame([])

        assert len(df) == 0
        assert list(df.columns) == ["uuid", "symbol", "name", "price", "market_cap"]

    def test_latest_coin_rows_keeps_last_occurrence(self):
        records = [
            FetchedRecord("u1", "OLD", "Old Name", "1", "1"),
            FetchedRecord("u2", "ETH", "Ethereum", "2", "2"),
            FetchedRecord("u1", "NEW", "New Name", "3", "3"),
        ]

        coins = latest_coin_rows(records_to_frame(records))

        assert len(coins) == 2
        row = coins[coins["uuid"] == "u1"].iloc[0]
        assert row["symbol"] == "NEW"
        assert row["name"] == "New Name"
