"""Fill normalization and the adapter fallback chain."""

import asyncio
import time

import aiohttp
import pytest

from copymirror.api.fill_source import (
    ADAPTERS,
    DEFAULT_CHAIN,
    FetchError,
    FillSource,
    NotFoundError,
    UnauthorizedError,
    candidate_adapters,
    normalize_fill,
)
from copymirror.config import CopySettings
from tests.fakes import FakeResponse, FakeSession, WALLET_A


def _source(session, adapters=None, **overrides):
    settings = CopySettings(data_api_url="https://data.example/", **overrides)
    return FillSource(settings, adapters=adapters, session=session)


# ─── Normalization ──────────────────────────────────────────────────────────────
def test_normalizes_data_api_trade():
    raw = {
        "proxyWallet": WALLET_A,
        "side": "SELL",
        "asset": "123456",
        "conditionId": "0xcond",
        "size": "12.5",
        "price": 0.42,
        "timestamp": 1700000000,
        "transactionHash": "0xtx",
        "outcomeIndex": 1,
    }
    fill = normalize_fill(raw, WALLET_A)
    assert fill.side == "sell"
    assert fill.outcome_id == "123456"
    assert fill.market_id == "0xcond"
    assert fill.size == 12.5
    assert fill.price == 0.42
    assert fill.timestamp_ms == 1700000000 * 1000
    assert fill.transaction_hash == "0xtx"
    assert fill.outcome_index == 1
    assert fill.source_address == WALLET_A
    assert fill.id == "0xtx-123456"


@pytest.mark.parametrize("raw_side,expected", [
    ("SELL", "sell"),
    ("sell", "sell"),
    ("BUY", "buy"),
    ("", "buy"),
    (None, "buy"),
    ("short", "buy"),
])
def test_side_mapping(raw_side, expected):
    assert normalize_fill({"side": raw_side, "id": "x"}, WALLET_A).side == expected


def test_action_used_when_side_missing():
    assert normalize_fill({"action": "sell", "id": "x"}, WALLET_A).side == "sell"


def test_explicit_id_wins_over_composite():
    fill = normalize_fill({"fillId": 77, "transactionHash": "0xtx", "asset": "a"}, WALLET_A)
    assert fill.id == "77"


def test_composite_id_with_partial_payload():
    assert normalize_fill({"txHash": "0xabc", "marketId": "m"}, WALLET_A).id == "0xabc-m"
    assert normalize_fill({}, WALLET_A).id == "-"


def test_missing_numbers_default_to_zero():
    fill = normalize_fill({"id": "x", "price": "n/a"}, WALLET_A)
    assert fill.price == 0.0
    assert fill.size == 0.0


def test_alternate_field_names():
    fill = normalize_fill(
        {"tradeId": "t1", "outcome_id": "o", "fill_price": 0.3, "fill_amount": 4, "time": 10},
        WALLET_A,
    )
    assert (fill.id, fill.outcome_id, fill.price, fill.size, fill.timestamp_ms) == ("t1", "o", 0.3, 4.0, 10000)


def test_outcome_index_zero_is_kept_as_outcome_id():
    assert normalize_fill({"id": "x", "outcomeIndex": 0}, WALLET_A).outcome_id == "0"


def test_unparsable_timestamp_defaults_to_now():
    before = int(time.time() * 1000)
    fill = normalize_fill({"id": "x", "timestamp": "garbage"}, WALLET_A)
    after = int(time.time() * 1000)
    assert before <= fill.timestamp_ms <= after


def test_iso_timestamp_accepted():
    fill = normalize_fill({"id": "x", "timestamp": "2024-01-01T00:00:00Z"}, WALLET_A)
    assert fill.timestamp_ms == 1704067200000


# ─── Adapter selection ──────────────────────────────────────────────────────────
def test_configured_adapter_goes_first_without_repeats():
    names = [a.name for a in candidate_adapters("v1-fills")]
    assert names[0] == "v1-fills"
    assert names.count("v1-fills") == 1
    assert names[1:] == [n for n in DEFAULT_CHAIN if n != "v1-fills"]


def test_unknown_adapter_rejected():
    with pytest.raises(ValueError):
        candidate_adapters("v9")


def test_default_settings_use_data_api_first():
    session = FakeSession([FakeResponse(200, [{"id": "f1", "timestamp": 5}])])
    fills = asyncio.run(_source(session).fetch_fills(WALLET_A, 0, 25))

    assert [f.id for f in fills] == ["f1"]
    assert session.calls[0]["url"] == "https://data.example/trades"
    assert session.calls[0]["params"] == {"limit": 25, "user": WALLET_A}


def test_since_sent_in_whole_seconds():
    session = FakeSession([FakeResponse(200, {"fills": []})])
    asyncio.run(_source(session, adapters=[ADAPTERS["fills"]]).fetch_fills(WALLET_A, 150_999))
    assert session.calls[0]["params"]["since"] == 150


def test_requests_carry_user_agent():
    session = FakeSession([FakeResponse(200, {"fills": []})])
    asyncio.run(_source(session, adapters=[ADAPTERS["fills"]]).fetch_fills(WALLET_A))
    headers = session.calls[0]["headers"]
    assert headers["User-Agent"].startswith("copymirror/")
    assert "application/json" in headers["Accept"]


def test_path_adapter_puts_address_in_url():
    session = FakeSession([FakeResponse(200, {"fills": []})])
    asyncio.run(_source(session, adapters=[ADAPTERS["fills-by-address"]]).fetch_fills(WALLET_A))
    assert session.calls[0]["url"] == f"https://data.example/fills/address/{WALLET_A}"
    assert "address" not in session.calls[0]["params"]


# ─── Endpoint fallback ──────────────────────────────────────────────────────────
def test_stops_at_first_accepted_candidate():
    adapters = [ADAPTERS[n] for n in ("fills", "v1-fills", "trades", "v1-trades", "fills-wallet")]
    session = FakeSession([
        FakeResponse(404, {}),
        FakeResponse(401, {}),
        FakeResponse(200, {"trades": [
            {"id": "t1", "side": "BUY", "size": 3, "price": 0.6, "timestamp": 100},
            {"id": "t2", "side": "SELL", "size": 1, "price": 0.4, "timestamp": 101},
        ]}),
        FakeResponse(200, {"trades": [{"id": "never"}]}),
    ])

    fills = asyncio.run(_source(session, adapters=adapters).fetch_fills(WALLET_A, 0))

    assert len(session.calls) == 3
    assert [c["url"] for c in session.calls] == [
        "https://data.example/fills",
        "https://data.example/v1/fills",
        "https://data.example/trades",
    ]
    assert [(f.id, f.side) for f in fills] == [("t1", "buy"), ("t2", "sell")]


def test_transport_error_and_bad_shape_move_to_next_candidate():
    adapters = [ADAPTERS[n] for n in ("fills", "trades", "v1-trades")]
    session = FakeSession([
        aiohttp.ClientConnectionError("connection reset"),
        FakeResponse(500, {"error": "boom"}),
        FakeResponse(200, [{"id": "ok"}]),
    ])
    fills = asyncio.run(_source(session, adapters=adapters).fetch_fills(WALLET_A))
    assert [f.id for f in fills] == ["ok"]


def test_non_json_body_is_a_fetch_error():
    session = FakeSession([FakeResponse(200, body="<html>nope</html>")])
    with pytest.raises(FetchError):
        asyncio.run(_source(session, adapters=[ADAPTERS["fills"]]).fetch_fills(WALLET_A))


def test_exhaustion_raises_last_error_unauthorized():
    adapters = [ADAPTERS[n] for n in ("fills", "trades")]
    session = FakeSession([FakeResponse(404, {}), FakeResponse(401, {})])
    with pytest.raises(UnauthorizedError):
        asyncio.run(_source(session, adapters=adapters).fetch_fills(WALLET_A))


def test_exhaustion_raises_last_error_not_found():
    adapters = [ADAPTERS[n] for n in ("fills", "trades")]
    session = FakeSession([FakeResponse(401, {}), FakeResponse(404, {})])
    with pytest.raises(NotFoundError) as exc:
        asyncio.run(_source(session, adapters=adapters).fetch_fills(WALLET_A))
    assert not isinstance(exc.value, UnauthorizedError)


def test_exhaustion_after_transport_errors():
    session = FakeSession([asyncio.TimeoutError()])
    with pytest.raises(FetchError) as exc:
        asyncio.run(_source(session, adapters=[ADAPTERS["fills"]]).fetch_fills(WALLET_A))
    assert not isinstance(exc.value, (UnauthorizedError, NotFoundError))


def test_injected_session_is_not_closed():
    session = FakeSession()
    source = _source(session)
    asyncio.run(source.close())
    assert session.closed is False
