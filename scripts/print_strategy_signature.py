from __future__ import annotations

import argparse
import dataclasses
import pprint

from signal_scanner.config import load_config


def main():
    p = argparse.ArgumentParser(description="Print the effective strategy and its signature for a config")
    p.add_argument("--config", default=None, help="Path to YAML config (defaults built in)")
    p.add_argument("--timeframe", default=None)
    p.add_argument("--relaxed", action="store_true")
    args = p.parse_args()

    cfg = load_config(args.config)
    tf = args.timeframe or cfg.scan.default_timeframe
    strat = cfg.strategy_for(tf, relaxed=args.relaxed)

    print(f"EFFECTIVE STRATEGY ({tf}, {strat.name}):")
    pprint.pprint(dataclasses.asdict(strat))
    print("\nSIGNATURE:", strat.signature())
    print("LOOKBACK:", strat.required_lookback())


if __name__ == "__main__":
    main()
