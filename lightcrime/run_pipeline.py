#!/usr/bin/env python3
"""
LIGHTCRIME Pipeline Runner
==========================
Command-line entry point that runs the streetlight/crime stages in order.

Usage:
    lightcrime                                   # every stage, default config
    lightcrime --config config/pipeline.yaml     # custom config
    lightcrime --stages distance regression      # selected stages only
    lightcrime --show-config                     # print effective settings

Stages (always executed in this order):
    preprocessing    streetlight coordinate cleaning, crime preparation
    spatial_join     crime and streetlight counts per area
    distance         nearest streetlight distances, crimes vs random points
    autocorrelation  global Moran's I and LISA
    regression       lit buffer logistic regression
    visualization    interactive maps
"""

import argparse
import importlib
import sys
import time
import traceback
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from .config import PipelineConfig, load_config


# stage -> (banner, [(step label, module, function)])
STAGES: Dict[str, Tuple[str, List[Tuple[str, str, str]]]] = {
    'preprocessing': ("Preprocessing", [
        ("Streetlight coordinate cleaning", ".preprocessing", "run_coordinate_cleaning"),
        ("Crime data preparation", ".preprocessing", "run_crime_preprocessing"),
    ]),
    'spatial_join': ("Spatial join", [
        ("Counting points per area", ".analysis", "run_spatial_join"),
    ]),
    'distance': ("Distance analysis", [
        ("Nearest streetlight distances and tests", ".analysis", "run_distance_analysis"),
    ]),
    'autocorrelation': ("Spatial autocorrelation", [
        ("Moran's I and LISA", ".analysis", "run_spatial_autocorrelation"),
    ]),
    'regression': ("Lit buffer regression", [
        ("Estimating logistic regression", ".analysis", "run_lit_regression"),
    ]),
    'visualization': ("Visualization", [
        ("Generating interactive maps", ".visualization", "generate_all_maps"),
    ]),
}

STAGE_ORDER = list(STAGES)


def _resolve(module: str, func: str) -> Callable[[PipelineConfig], object]:
    # Stage modules pull in the heavy geo stack; import on demand
    return getattr(importlib.import_module(module, __package__), func)


def run_stage(name: str, config: PipelineConfig) -> float:
    """Run every step of one stage; returns elapsed seconds."""
    banner, steps = STAGES[name]
    number = STAGE_ORDER.index(name) + 1

    print("\n" + "=" * 60)
    print(f"STAGE {number}: {banner.upper()}")
    print("=" * 60)

    start = time.perf_counter()
    for i, (label, module, func) in enumerate(steps, 1):
        print(f"\n[{number}.{i}] {label}...")
        _resolve(module, func)(config)
    return time.perf_counter() - start


def select_stages(stages: Optional[List[str]]) -> List[str]:
    """Requested stages in pipeline order; unknown names raise ValueError."""
    if stages is None:
        return list(STAGE_ORDER)
    unknown = [s for s in stages if s not in STAGES]
    if unknown:
        raise ValueError(f"Unknown stage(s) {unknown}. Available: {', '.join(STAGE_ORDER)}")
    return [s for s in STAGE_ORDER if s in stages]


def run_pipeline(config_path: Optional[str] = None, stages: Optional[List[str]] = None):
    """
    Run the LIGHTCRIME pipeline.

    Args:
        config_path: Path to config file. If None, uses default.
        stages: Stages to run. If None, runs all.
    """
    config = load_config(config_path)

    try:
        selected = select_stages(stages)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("=" * 70)
    print("LIGHTCRIME - STREET LIGHTING AND CRIME ANALYSIS PIPELINE")
    print("=" * 70)
    print(f"Started: {datetime.now():%Y-%m-%d %H:%M:%S}")
    print(f"Cities: {', '.join(c.name for c in config.cities) or 'none'}")
    print(f"Stages: {', '.join(selected)}")
    print("-" * 70)

    timings = {}
    for name in selected:
        try:
            timings[name] = run_stage(name, config)
        except Exception as e:
            print(f"\n✗ Stage '{name}' failed: {e}")
            traceback.print_exc()
            sys.exit(1)

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETED SUCCESSFULLY")
    print("=" * 70)
    for name, seconds in timings.items():
        print(f"  {name:16s} {seconds:8.1f} s")
    print(f"\nFinished: {datetime.now():%Y-%m-%d %H:%M:%S}")
    print(f"Data:    {config.paths.data}")
    print(f"Results: {config.paths.results}")
    print(f"Assets:  {config.paths.assets}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lightcrime",
        description="Street lighting and crime analysis pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Stages: " + ", ".join(STAGE_ORDER),
    )
    parser.add_argument('--config', '-c', help='Path to configuration YAML file')
    parser.add_argument('--stages', '-s', nargs='+', choices=STAGE_ORDER, metavar='STAGE',
                        help='Stages to run (default: all)')
    parser.add_argument('--show-config', action='store_true',
                        help='Print the effective configuration and exit')
    parser.add_argument('--list-stages', action='store_true',
                        help='List available stages and exit')
    return parser


def main(argv: Optional[List[str]] = None):
    """CLI entry point"""
    args = build_parser().parse_args(argv)

    if args.list_stages:
        print("Available pipeline stages:")
        for i, name in enumerate(STAGE_ORDER, 1):
            print(f"  {i}. {name:16s} {STAGES[name][0]}")
        sys.exit(0)

    if args.show_config:
        print(load_config(args.config).summary())
        sys.exit(0)

    run_pipeline(config_path=args.config, stages=args.stages)


if __name__ == "__main__":
    main()
