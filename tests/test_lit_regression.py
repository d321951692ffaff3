"""Tests for analysis/lit_regression.py."""
import pytest
import numpy as np
import pandas as pd
import geopandas as gpd
from shapely.geometry import Point

from lightcrime.analysis import lit_regression as lr
from conftest import BNG, cell_center


SEASON_NAMES = ['Winter', 'Spring', 'Summer', 'Autumn']


def synthetic_crimes(rng, n=2000):
    """Crimes next to (lit) or 200 m away from a single streetlight at the origin.

    Burglary is lit 80% of the time, Anti-social behaviour 40%, Drugs 50%.
    """
    types = rng.choice(['Anti-social behaviour', 'Burglary', 'Drugs'], size=n)
    p_lit = pd.Series(types).map({'Anti-social behaviour': 0.4, 'Burglary': 0.8, 'Drugs': 0.5}).values
    lit = rng.random(n) < p_lit
    angle = rng.uniform(0, 2 * np.pi, n)
    radius = np.where(lit, rng.uniform(0, 10, n), rng.uniform(150, 250, n))
    x0, y0 = cell_center(0, 0)
    return gpd.GeoDataFrame({
        'uid': range(n),
        'crime_type': types,
        'season': rng.choice(SEASON_NAMES, size=n),
    }, geometry=gpd.points_from_xy(x0 + radius * np.cos(angle), y0 + radius * np.sin(angle)), crs=BNG)


def test_flag_lit_crimes(crimes, streetlights):
    flagged = lr.flag_lit_crimes(crimes, streetlights, radius=30)

    assert flagged['lit'].tolist() == [True, True, False, False]
    assert 'lit' not in crimes.columns


def test_flag_lit_crimes_radius():
    light = gpd.GeoDataFrame(geometry=[Point(0, 0)], crs=BNG)
    crimes = gpd.GeoDataFrame(geometry=[Point(10, 0), Point(100, 0)], crs=BNG)

    assert lr.flag_lit_crimes(crimes, light, 30)['lit'].tolist() == [True, False]
    assert lr.flag_lit_crimes(crimes, light, 150)['lit'].tolist() == [True, True]


def test_overlapping_buffers_give_one_row():
    lights = gpd.GeoDataFrame(geometry=[Point(0, 0), Point(5, 0), Point(0, 5)], crs=BNG)
    crimes = gpd.GeoDataFrame({'uid': [7]}, geometry=[Point(2, 2)], index=[42], crs=BNG)

    flagged = lr.flag_lit_crimes(crimes, lights, 30)

    assert len(flagged) == 1
    assert flagged.loc[42, 'lit']


def test_flag_lit_crimes_crs_mismatch(crimes, streetlights):
    with pytest.raises(ValueError, match="CRS mismatch"):
        lr.flag_lit_crimes(crimes, streetlights.to_crs("EPSG:4326"), 30)


def test_build_light_buffers(streetlights):
    buffers = lr.build_light_buffers(streetlights, 30)

    assert len(buffers) == len(streetlights)
    assert buffers.geometry.area.iloc[0] == pytest.approx(np.pi * 30 ** 2, rel=0.01)


def test_prepare_model_frame_pools_rare_types():
    crimes = pd.DataFrame({
        'crime_type': ['Burglary'] * 40 + ['Arson'] * 3 + ['Theft'] * 2 + [None],
        'season': ['Winter'] * 45 + ['Summer'],
        'lit': [True, False] * 23,
    })

    frame = lr.prepare_model_frame(crimes, min_category_count=30)

    assert len(frame) == 45
    assert set(frame['crime_type']) == {'Burglary', lr.OTHER_CATEGORY}
    assert (frame['crime_type'] == lr.OTHER_CATEGORY).sum() == 5
    assert frame['lit'].dtype.kind == 'i'


def test_readable_term():
    assert lr.readable_term("C(season, Treatment(reference='Summer'))[T.Winter]") == "season: Winter"
    assert lr.readable_term(
        "C(crime_type, Treatment(reference='Anti-social behaviour'))[T.Criminal damage and arson]"
    ) == "crime_type: Criminal damage and arson"
    assert lr.readable_term("Intercept") == "Intercept"


def test_single_class_outcome():
    frame = pd.DataFrame({'crime_type': ['A', 'B'] * 20, 'season': ['Winter'] * 40, 'lit': [1] * 40})
    with pytest.raises(ValueError, match="single class"):
        lr.fit_lit_model(frame, 'A', 'Winter')


def test_fit_lit_model_recovers_effect(rng):
    crimes = synthetic_crimes(rng)
    light = gpd.GeoDataFrame(geometry=[Point(*cell_center(0, 0))], crs=BNG)
    frame = lr.prepare_model_frame(lr.flag_lit_crimes(crimes, light, 30))

    result = lr.fit_lit_model(frame, 'Anti-social behaviour', 'Summer')
    table = lr.odds_ratio_table(result).set_index('term')

    assert list(table.columns) == ['coef', 'std_err', 'odds_ratio', 'ci_lower', 'ci_upper', 'p_value']
    burglary = table.loc['crime_type: Burglary']
    # true odds ratio (0.8/0.2) / (0.4/0.6) = 6
    assert burglary['odds_ratio'] > 3
    assert burglary['ci_lower'] < burglary['odds_ratio'] < burglary['ci_upper']
    assert burglary['p_value'] < 0.001
    assert 'season: Summer' not in table.index
    assert 'season: Winter' in table.index


def test_reference_falls_back_to_most_frequent():
    levels = pd.Series(['Burglary'] * 5 + ['Drugs'] * 2)
    assert lr._resolve_reference(levels, 'Anti-social behaviour', 'crime type') == 'Burglary'
    assert lr._resolve_reference(levels, 'Drugs', 'crime type') == 'Drugs'


def test_run_lit_regression(config, rng):
    config.paths.ensure_dirs()
    crimes = synthetic_crimes(rng, n=600)
    light = gpd.GeoDataFrame({'light_id': ['l0'], 'city': ['Belfast']},
                             geometry=[Point(*cell_center(0, 0))], crs=BNG)
    crimes.to_file(config.get_clean_crimes_path(), driver='GeoJSON')
    light.to_file(config.get_clean_streetlights_path(), driver='GeoJSON')

    table = lr.run_lit_regression(config)

    assert table.loc[0, 'term'] == 'Intercept'
    results_dir = config.paths.results / 'lit_regression'
    assert (results_dir / 'logit_odds_ratios.csv').exists()
    assert (results_dir / 'logit_summary.txt').exists()
    lit = pd.read_csv(results_dir / 'lit_crimes.csv')
    assert len(lit) == 600
