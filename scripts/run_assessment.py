"""Manual harness for the value assessment engine.

Runs every demo profile through the engine, prints the headline figures per
profile, and dumps the formatted breakdown of the selected demo as JSON.

Usage:
    python scripts/run_assessment.py [demo_name] [funnel_config]
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from value_assessment.breakdown import build_breakdown, format_line_items
from value_assessment.demo_data import build_demo_profiles
from value_assessment.engine import DRIVER_KEYS, compute_assessment
from value_assessment.funnel import get_funnel_config


def main(argv: list[str]) -> None:
    """Print per-demo totals, then the full breakdown of one demo."""
    selected = argv[0] if argv else "single_region_amer"
    config = get_funnel_config(argv[1] if len(argv) > 1 else "current")

    profiles = build_demo_profiles()
    for name, profile in profiles.items():
        aggregate = compute_assessment(profile, config)["aggregate"]
        print(
            f"demo={name} | "
            f"gmv_uplift=${aggregate['total_gmv_uplift']:,.0f} | "
            f"chargeback_savings=${aggregate['chargeback_savings']:,.0f} | "
            f"total_value=${aggregate['total_value']:,.0f} | "
            f"monthly_run_rate=${aggregate['monthly_run_rate']:,.0f}"
        )

    result = compute_assessment(profiles[selected], config)
    print(f"\nBreakdown: {selected} ({config.name})")
    breakdowns = {driver: format_line_items(build_breakdown(result, driver)) for driver in DRIVER_KEYS}
    print(json.dumps(breakdowns, indent=2))


if __name__ == "__main__":
    main(sys.argv[1:])
