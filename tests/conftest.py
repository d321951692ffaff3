"""Pytest configuration and shared fixtures."""
import pytest
import numpy as np
import geopandas as gpd
from shapely.geometry import Point, box

from lightcrime.config import PipelineConfig


BNG = "EPSG:27700"

# South-west corner of the synthetic study area on BNG
ORIGIN_X = 330000.0
ORIGIN_Y = 370000.0
CELL = 1000.0


def make_grid(n_rows: int, n_cols: int, cell: float = CELL) -> gpd.GeoDataFrame:
    """n_rows x n_cols grid of square polygons with ids 'A<row>_<col>'."""
    records = []
    for r in range(n_rows):
        for c in range(n_cols):
            x0 = ORIGIN_X + c * cell
            y0 = ORIGIN_Y + r * cell
            records.append({
                'SOA_CODE': f"A{r}_{c}",
                'row': r,
                'col': c,
                'geometry': box(x0, y0, x0 + cell, y0 + cell),
            })
    return gpd.GeoDataFrame(records, geometry='geometry', crs=BNG)


def cell_center(row: int, col: int, cell: float = CELL):
    return (ORIGIN_X + (col + 0.5) * cell, ORIGIN_Y + (row + 0.5) * cell)


@pytest.fixture
def grid_polygons():
    """4x4 grid of 1 km squares on the British National Grid."""
    return make_grid(4, 4)


@pytest.fixture
def streetlights():
    """Streetlights at the centre of the bottom-row cells, split over two cities."""
    points = [Point(*cell_center(0, c)) for c in range(4)]
    return gpd.GeoDataFrame({
        'light_id': [f"l{c}" for c in range(4)],
        'city': ['Belfast', 'Belfast', 'Lisburn', 'Lisburn'],
    }, geometry=points, crs=BNG)


@pytest.fixture
def crimes():
    """A handful of crime points with types and seasons."""
    x0, y0 = cell_center(0, 0)
    x1, y1 = cell_center(2, 3)
    points = [
        Point(x0 + 5, y0 + 5),      # next to light l0
        Point(x0 + 10, y0 - 10),    # next to light l0
        Point(x1, y1),              # far from every light
        Point(x1 + 50, y1 + 50),    # far from every light
    ]
    return gpd.GeoDataFrame({
        'uid': range(4),
        'crime_type': ['Burglary', 'Vehicle crime', 'Burglary', 'Drugs'],
        'season': ['Winter', 'Summer', 'Winter', 'Autumn'],
    }, geometry=points, crs=BNG)


@pytest.fixture
def config_dict():
    """Minimal configuration with one CSV city."""
    return {
        'paths': {
            'data_dir': 'data',
            'raw_dir': 'raw',
            'results_dir': 'results',
            'assets_dir': 'assets',
            'boundaries': 'areas.geojson',
            'crimes': ['crimes/*-street.csv'],
        },
        'cities': [{
            'name': 'Belfast',
            'file': 'belfast_lights.csv',
            'x_column': 'LONGITUDE',
            'y_column': 'LATITUDE',
            'source_crs': 'EPSG:4326',
        }],
        'distance': {'sample_size': 100, 'random_state': 7},
        'spatial': {'lisa': {'permutations': 99}},
    }


@pytest.fixture
def config(tmp_path, config_dict):
    """PipelineConfig rooted in a temporary project directory."""
    return PipelineConfig(config_dict, tmp_path)


@pytest.fixture
def rng():
    return np.random.default_rng(42)
