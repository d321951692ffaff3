"""
LIGHTCRIME Visualization Module
===============================

Interactive maps.

Modules:
    - choropleth_map: Crime counts and densities per area
    - lisa_clusters_map: LISA cluster visualization
"""

from .choropleth_map import generate_choropleth_map
from .lisa_clusters_map import generate_lisa_map
from .generate_all_maps import generate_all_maps

__all__ = [
    "generate_choropleth_map",
    "generate_lisa_map",
    "generate_all_maps",
]
