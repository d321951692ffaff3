"""
LIGHTCRIME Analysis Module
==========================

Spatial joins, distance tests, spatial autocorrelation and regression.

Modules:
    - spatial_join: Crime and streetlight counts per area (choropleths)
    - distance_analysis: Nearest streetlight distances, crimes vs random points
    - spatial_autocorrelation: Global Moran's I and LISA
    - lit_regression: Logistic regression of lit crimes on type and season
"""

from .spatial_join import run_spatial_join
from .distance_analysis import run_distance_analysis
from .spatial_autocorrelation import run_spatial_autocorrelation
from .lit_regression import run_lit_regression

__all__ = [
    "run_spatial_join",
    "run_distance_analysis",
    "run_spatial_autocorrelation",
    "run_lit_regression",
]
