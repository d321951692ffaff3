#!/usr/bin/env python3
"""
Generate All Maps
=================
Builds every interactive map whose upstream results exist.
"""

from functools import partial
from typing import List, Optional

from ..config import PipelineConfig, load_config
from .choropleth_map import generate_choropleth_map
from .lisa_clusters_map import generate_lisa_map


CHOROPLETH_COLUMNS = ['crime_count', 'crime_density', 'crimes_per_1000_lights']


def generate_all_maps(config: Optional[PipelineConfig] = None) -> List[str]:
    """
    Generate all interactive maps.

    A map whose input is missing is skipped with a hint naming the stage to run.

    Returns:
        List of paths to generated HTML files
    """
    if config is None:
        config = load_config()

    print("=" * 60)
    print("INTERACTIVE MAPS")
    print("=" * 60)

    jobs = [(f"choropleth {col}", partial(generate_choropleth_map, config, col), "spatial_join")
            for col in CHOROPLETH_COLUMNS]
    jobs.append(("LISA clusters", partial(generate_lisa_map, config), "autocorrelation"))

    generated = []
    missing_stages = set()
    for label, job, stage in jobs:
        if stage in missing_stages:
            continue
        try:
            generated.append(job())
        except FileNotFoundError:
            missing_stages.add(stage)
            print(f"⚠ {label} skipped (run the '{stage}' stage first)")
        except Exception as e:
            print(f"⚠ Failed to generate {label}: {e}")

    print(f"\n✓ Generated {len(generated)} of {len(jobs)} maps")
    return generated


if __name__ == "__main__":
    generate_all_maps()
