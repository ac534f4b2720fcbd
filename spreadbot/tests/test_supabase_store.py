import asyncio

import pytest

from spreadbot.data.supabase_store import SupabaseStore


class FakeHttp:
    def __init__(self, rows=None):
        self.rows = rows if rows is not None else []
        self.gets = []
        self.sends = []

    async def get_json(self, url, *, params=None, headers=None, timeout=None, cache_ttl=None, stale_ttl=None):
        self.gets.append((url, params, headers))
        return self.rows

    async def send_json(self, method, url, *, params=None, payload=None, headers=None, timeout=None):
        self.sends.append((method, url, params, payload, headers))
        return None


def test_requires_credentials() -> None:
    with pytest.raises(RuntimeError):
        SupabaseStore(FakeHttp(), url="", key="k", bot="b5-5m")


def test_reads_filter_by_bot() -> None:
    http = FakeHttp(rows=[{"config": {"eth_t1_spread": 0.12}}])
    store = SupabaseStore(http, url="https://x.supabase.co/", key="secret", bot="b5-5m")
    cfg = asyncio.run(store.load_tier_config())
    assert cfg == {"eth_t1_spread": 0.12}
    url, params, headers = http.gets[0]
    assert url == "https://x.supabase.co/rest/v1/tier_config"
    assert params["bot"] == "eq.b5-5m"
    assert headers["apikey"] == "secret"
    assert headers["Authorization"] == "Bearer secret"


def test_missing_rows_mean_defaults() -> None:
    store = SupabaseStore(FakeHttp(rows=[]), url="https://x", key="k", bot="b4-5m")
    assert asyncio.run(store.is_emergency_paused()) is False
    assert asyncio.run(store.load_blocks()) == {}


def test_pause_and_blocks_upsert_on_bot() -> None:
    http = FakeHttp()
    store = SupabaseStore(http, url="https://x", key="k", bot="b4-5m")
    asyncio.run(store.set_emergency_paused(True))
    asyncio.run(store.save_blocks({"blocks": {}}))
    for method, url, params, payload, headers in http.sends:
        assert method == "POST"
        assert params == {"on_conflict": "bot"}
        assert payload["bot"] == "b4-5m"
        assert "merge-duplicates" in headers["Prefer"]
    assert http.sends[0][1].endswith("/bot_control")
    assert http.sends[0][3]["emergency_off"] is True


def test_position_rows_are_plain_inserts() -> None:
    http = FakeHttp()
    store = SupabaseStore(http, url="https://x", key="k", bot="b5-5m")
    asyncio.run(store.log_position({"bot": "b5-5m", "asset": "ETH"}))
    method, url, params, payload, _ = http.sends[0]
    assert url.endswith("/positions")
    assert params is None
    assert payload["asset"] == "ETH"


def test_bankroll_state_upserts_and_reads_ledger_columns() -> None:
    http = FakeHttp(rows=[{"bankroll": 90.0, "max_bankroll": 110.0}])
    store = SupabaseStore(http, url="https://x", key="k", bot="b5-5m")
    asyncio.run(store.save_bankroll_state({"wallet_usdc": 12.5}))
    method, url, params, payload, headers = http.sends[0]
    assert url.endswith("/bot_state")
    assert params == {"on_conflict": "bot"}
    assert payload["wallet_usdc"] == 12.5
    assert "bankroll" not in payload
    assert "merge-duplicates" in headers["Prefer"]
    assert asyncio.run(store.load_bankroll_state()) == {"bankroll": 90.0, "max_bankroll": 110.0}
    assert "cooldown_until_ms" in http.gets[0][1]["select"]
