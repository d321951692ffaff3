"""
LIGHTCRIME Preprocessing Module
===============================

Input cleaning and reprojection onto the British National Grid.

Modules:
    - coordinate_cleaning: Per-city streetlight inventories
    - crime_data: police.uk street-level crime points
"""

from .coordinate_cleaning import run_coordinate_cleaning
from .crime_data import run_crime_preprocessing

__all__ = [
    "run_coordinate_cleaning",
    "run_crime_preprocessing",
]
