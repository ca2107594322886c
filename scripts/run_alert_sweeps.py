import argparse
import json
import os
import sys

# Add repository root to path so we can import models/db
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from database import Base, engine, session_scope  # noqa: E402
from utils.cart_alerts import check_abandoned_carts  # noqa: E402
from utils.wishlist_alerts import check_wishlist_price_drops  # noqa: E402

SWEEPS = {
    "carts": check_abandoned_carts,
    "price-drops": check_wishlist_price_drops,
}


def run_sweeps(names) -> dict:
    """
    Run alert sweeps once, for deployments that trigger them from an external
    cron instead of the in-process scheduler (SCHEDULER_ENABLED=0).
    """
    Base.metadata.create_all(bind=engine)
    results = {}
    with session_scope() as db:
        for name in names:
            results[name] = SWEEPS[name](db)
    return results


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run wishlist/cart alert sweeps once.")
    parser.add_argument("sweeps", nargs="*", help="any of: " + ", ".join(sorted(SWEEPS)) + " (default: all)")
    args = parser.parse_args()
    unknown = [s for s in args.sweeps if s not in SWEEPS]
    if unknown:
        parser.error("unknown sweep(s): " + ", ".join(unknown))
    print(json.dumps(run_sweeps(args.sweeps or sorted(SWEEPS)), indent=2, default=str))
