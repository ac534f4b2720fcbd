#!/usr/bin/env python3
"""
Operator controls for a running spreadbot instance, via its state store.

  pause        set the emergency pause (engine stops new entries within ~10 ticks)
  resume       clear the emergency pause
  show-blocks  print persisted tier blocks / early guard with time remaining
  clear-blocks drop persisted blocks (takes effect on the next engine start)
"""

import argparse
import asyncio
import json
import time

from spreadbot.config import get_profile, load_settings
from spreadbot.data import HttpService, LocalStateStore, SupabaseStore


def build_store(settings, http):
    bot = get_profile(settings.profile).name
    if settings.store_backend == "supabase":
        return SupabaseStore(http, url=settings.supabase_url, key=settings.supabase_key, bot=bot)
    return LocalStateStore(settings.data_dir, bot)


def describe_blocks(snap: dict, now_ms: int) -> list[str]:
    lines = []
    for asset, tiers in sorted((snap.get("blocks") or {}).items()):
        for tier, until in sorted(tiers.items()):
            left = (int(until) - now_ms) / 1000.0
            lines.append(f"{asset} {tier}: {'%.0fs left' % left if left > 0 else 'expired'}")
    for key, until in sorted((snap.get("guard") or {}).items()):
        left = (int(until) - now_ms) / 1000.0
        scope = "global" if key == "*" else key
        lines.append(f"early guard ({scope}): {'%.0fs left' % left if left > 0 else 'expired'}")
    return lines or ["no blocks"]


async def run(cmd: str, as_json: bool) -> int:
    settings = load_settings()
    http = HttpService(timeout_sec=settings.request_timeout_sec)
    store = build_store(settings, http)
    try:
        if cmd == "pause":
            await store.set_emergency_paused(True)
            print("emergency pause ON")
        elif cmd == "resume":
            await store.set_emergency_paused(False)
            print("emergency pause OFF")
        elif cmd == "show-blocks":
            snap = await store.load_blocks()
            if as_json:
                print(json.dumps(snap, indent=2))
            else:
                for line in describe_blocks(snap, int(time.time() * 1000)):
                    print(line)
        elif cmd == "clear-blocks":
            await store.save_blocks({"blocks": {}, "guard": {}, "backoff_until_ms": 0})
            print("persisted blocks cleared")
        return 0
    finally:
        await http.close()


def main() -> int:
    ap = argparse.ArgumentParser(description="spreadbot operator controls")
    ap.add_argument("command", choices=["pause", "resume", "show-blocks", "clear-blocks"])
    ap.add_argument("--json", action="store_true", help="raw JSON output for show-blocks")
    args = ap.parse_args()
    return asyncio.run(run(args.command, args.json))


if __name__ == "__main__":
    raise SystemExit(main())
