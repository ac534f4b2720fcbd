from __future__ import annotations

import argparse
from dataclasses import replace

from spreadbot.config import load_settings
from spreadbot.runtime.app import run_main


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Tiered spread engine for Up/Down window markets")
    ap.add_argument("--profile", default="", help="engine profile (overrides BOT_PROFILE)")
    ap.add_argument("--live", action="store_true", help="place real orders (overrides DRY_RUN)")
    return ap.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    settings = load_settings()
    if args.profile:
        settings = replace(settings, profile=args.profile.strip().lower())
    if args.live:
        settings = replace(settings, dry_run=False)
    run_main(settings)


if __name__ == "__main__":
    main()
