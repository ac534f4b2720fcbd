from __future__ import annotations

import asyncio
import json
import logging
import random
import time
import urllib.parse
from typing import Any

import aiohttp


class HttpService:
    """Shared aiohttp session with host pacing, 429/5xx retry and a stale-cache fallback for reads."""

    def __init__(
        self,
        *,
        timeout_sec: float = 8.0,
        conn_limit: int = 20,
        min_gap_ms: float = 50.0,
        retries_429: int = 2,
        retries_5xx: int = 2,
        default_cache_ttl: float = 0.0,
        default_stale_ttl: float = 30.0,
        user_agent: str = "spreadbot/1.0",
        log: logging.Logger | None = None,
    ):
        self.timeout_sec = max(0.5, float(timeout_sec))
        self._conn_limit = max(1, int(conn_limit))
        self._min_gap_s = max(0.0, float(min_gap_ms) / 1000.0)
        self._retries_429 = max(0, int(retries_429))
        self._retries_5xx = max(0, int(retries_5xx))
        self._cache_ttl = max(0.0, float(default_cache_ttl))
        self._stale_ttl = max(1.0, float(default_stale_ttl))
        self._user_agent = user_agent
        self.log = log or logging.getLogger("spreadbot.http")

        self._session: aiohttp.ClientSession | None = None
        self._host_backoff: dict[str, float] = {}
        self._cache: dict[str, dict] = {}
        self._host_last_ts: dict[str, float] = {}
        self._host_locks: dict[str, asyncio.Lock] = {}

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=self._conn_limit, enable_cleanup_closed=True)
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={"User-Agent": self._user_agent},
            )
        return self._session

    def _fresh_cached(self, key: str, ttl: float):
        cached = self._cache.get(key)
        if cached is not None and (time.time() - float(cached["ts"])) <= ttl:
            return cached
        return None

    async def _pace(self, host: str) -> None:
        last_ts = float(self._host_last_ts.get(host, 0.0))
        gap = time.time() - last_ts
        if last_ts > 0 and gap < self._min_gap_s:
            await asyncio.sleep(self._min_gap_s - gap)
        self._host_last_ts[host] = time.time()

    async def get_json(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
        timeout: float | None = None,
        cache_ttl: float | None = None,
        stale_ttl: float | None = None,
    ):
        cache_ttl = self._cache_ttl if cache_ttl is None else max(0.0, float(cache_ttl))
        stale_ttl = self._stale_ttl if stale_ttl is None else max(1.0, float(stale_ttl))
        host = urllib.parse.urlparse(url).netloc
        ck = f"{url}?{json.dumps(params or {}, sort_keys=True, separators=(',', ':'))}"
        hit = self._fresh_cached(ck, cache_ttl) if cache_ttl > 0 else None
        if hit is not None:
            return hit["data"]

        session = await self._ensure_session()
        lock = self._host_locks.setdefault(host, asyncio.Lock())
        async with lock:
            await self._pace(host)
            bt = float(self._host_backoff.get(host, 0.0))
            if bt > time.time():
                stale = self._fresh_cached(ck, stale_ttl)
                if stale is not None:
                    return stale["data"]
                raise RuntimeError(f"http 429 backoff active for {host} ({bt - time.time():.0f}s left)")

            last_err: Exception | None = None
            attempts = max(1, self._retries_429 + 1, self._retries_5xx + 1)
            for i in range(attempts):
                try:
                    async with session.get(
                        url,
                        params=params,
                        headers=headers,
                        timeout=aiohttp.ClientTimeout(total=timeout or self.timeout_sec),
                    ) as r:
                        if r.status == 429:
                            retry_after = max(1.0, float(r.headers.get("Retry-After", "2") or 2.0))
                            backoff_s = min(90.0, retry_after + (0.35 * i) + random.uniform(0.05, 0.35))
                            self._host_backoff[host] = max(
                                float(self._host_backoff.get(host, 0.0)), time.time() + backoff_s
                            )
                            last_err = RuntimeError(f"http 429 {url}")
                            if i < self._retries_429:
                                await asyncio.sleep(backoff_s)
                                continue
                            break
                        if r.status >= 500 and i < self._retries_5xx:
                            last_err = RuntimeError(f"http {r.status} {url}")
                            await asyncio.sleep(0.25 + (0.25 * i))
                            continue
                        if r.status == 404:
                            return None
                        if r.status >= 400:
                            last_err = RuntimeError(f"http {r.status} {url}")
                            break
                        payload = await r.json(content_type=None)
                        self._cache[ck] = {"ts": time.time(), "data": payload}
                        return payload
                except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                    last_err = e
                    if i < (attempts - 1):
                        await asyncio.sleep(0.20 + (0.15 * i))
                        continue

            stale = self._fresh_cached(ck, stale_ttl)
            if stale is not None:
                self.log.warning("http get %s failed (%s); using stale cache", host, last_err)
                return stale["data"]
            raise RuntimeError(f"http get failed: {url} err={last_err}")

    async def send_json(
        self,
        method: str,
        url: str,
        *,
        params: dict | None = None,
        payload: Any = None,
        headers: dict | None = None,
        timeout: float | None = None,
    ):
        """Single-attempt write. Returns decoded JSON body or None; raises RuntimeError on HTTP errors."""
        session = await self._ensure_session()
        try:
            async with session.request(
                method.upper(),
                url,
                params=params,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout or self.timeout_sec),
            ) as r:
                body = await r.text()
                if r.status >= 400:
                    raise RuntimeError(f"http {r.status} {method.upper()} {url}: {body[:200]}")
                if not body:
                    return None
                return json.loads(body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RuntimeError(f"http {method.upper()} failed: {url} err={e}") from e
