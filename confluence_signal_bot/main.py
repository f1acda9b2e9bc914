from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .config import load_config
from .runner import DecisionRunner, load_items


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Confluence Signal Bot - multi-timeframe decision engine")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--input", required=True, help="JSON file with a list of {bundle, pivots} items")
    p.add_argument("--output", help="Write decisions as JSON here instead of stdout")
    args = p.parse_args(argv)

    cfg = load_config(args.config)
    _setup_logging(cfg.app.log_level)

    try:
        items = load_items(args.input)
        runner = DecisionRunner(cfg)
        decisions = asyncio.run(runner.run_once(items))
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1

    payload = json.dumps([d.to_dict() for d in decisions], indent=2)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(payload + "\n")
    else:
        sys.stdout.write(payload + "\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
