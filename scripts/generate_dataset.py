"""
Synthetic Nested Order Dataset Generator
Writes raw nested orders as NDJSON, noise included, for local runs.
"""

import argparse
from pathlib import Path

from orderflat.config.logging import configure_logging
from orderflat.data.generators import CLEAN, generate_dataset

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "raw"


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--orders", type=int, default=100_000)
    parser.add_argument("--out", default=str(OUTPUT_DIR / "orders.jsonl"))
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--clean", action="store_true", help="No invalid or messy records")
    args = parser.parse_args()

    configure_logging(log_format="text")

    print(f"📊 Generating {args.orders:,} nested orders...")
    path = generate_dataset(args.orders, args.out, seed=args.seed, noise=CLEAN if args.clean else None)
    print(f"   ✅ {path}")


if __name__ == "__main__":
    main()
