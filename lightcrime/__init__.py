"""
LIGHTCRIME - Street Lighting and Crime Analysis Pipeline
========================================================

A configurable pipeline for testing whether proximity to street
lighting relates to where crime happens in Northern Ireland and
other UK regions.

Modules:
    - config: Configuration loading and validation
    - preprocessing: Streetlight coordinate cleaning and crime preparation
    - analysis: Spatial joins, distance tests, Moran's I/LISA, regression
    - visualization: Interactive maps
"""

__version__ = "1.0.0"
__author__ = "LIGHTCRIME Team"

from .config import PipelineConfig, load_config

__all__ = [
    "PipelineConfig",
    "load_config",
    "__version__",
]
