"""Tests for preprocessing/coordinate_cleaning.py."""
import pytest
import numpy as np
import pandas as pd
import geopandas as gpd
from shapely.geometry import Point

from lightcrime.preprocessing import coordinate_cleaning as cc


def test_clean_coordinates_drops_bad_rows():
    df = pd.DataFrame({
        'x': [-5.93, None, 'abc', 0, -5.90, np.inf],
        'y': [54.60, 54.61, 54.62, 0, 54.58, 54.50],
        'asset': ['a', 'b', 'c', 'd', 'e', 'f'],
    })

    out = cc.clean_coordinates(df, 'x', 'y')

    assert list(out['asset']) == ['a', 'e']
    assert out['x'].dtype == float


def test_clean_coordinates_keeps_zero_on_one_axis():
    df = pd.DataFrame({'x': [0.0, 1.0], 'y': [5.0, 0.0]})
    assert len(cc.clean_coordinates(df, 'x', 'y')) == 2


def test_clean_coordinates_missing_column():
    with pytest.raises(ValueError, match="Missing coordinate columns"):
        cc.clean_coordinates(pd.DataFrame({'lon': [1.0]}), 'lon', 'lat')


def test_reproject_wgs84_to_bng():
    # Belfast City Hall
    df = pd.DataFrame({'lon': [-5.9301], 'lat': [54.5965]})
    gdf = cc.reproject(cc.to_points(df, 'lon', 'lat', 'EPSG:4326'), 'EPSG:27700')

    assert gdf.crs.to_epsg() == 27700
    x, y = gdf.geometry.iloc[0].x, gdf.geometry.iloc[0].y
    assert 100000 < x < 200000
    assert 480000 < y < 580000


def test_reproject_irish_grid_to_bng():
    # Irish Grid coordinates near Derry
    df = pd.DataFrame({'e': [243500.0], 'n': [416500.0]})
    gdf = cc.reproject(cc.to_points(df, 'e', 'n', 'EPSG:29902'), 'EPSG:27700')
    back = gdf.to_crs('EPSG:4326').geometry.iloc[0]

    assert -7.6 < back.x < -7.0
    assert 54.8 < back.y < 55.2


def test_reproject_without_crs():
    gdf = gpd.GeoDataFrame(geometry=[Point(0, 0)])
    with pytest.raises(ValueError, match="no CRS"):
        cc.reproject(gdf, 'EPSG:27700')


def test_clip_to_bounds():
    gdf = gpd.GeoDataFrame(geometry=[Point(10, 10), Point(-5, 10), Point(50, 200)], crs='EPSG:27700')
    out = cc.clip_to_bounds(gdf, [0, 0, 100, 100])
    assert len(out) == 1
    assert out.geometry.iloc[0].equals(Point(10, 10))


def test_drop_duplicate_points():
    gdf = gpd.GeoDataFrame(
        {'id': [1, 2, 3]},
        geometry=[Point(1.001, 2.0), Point(1.0011, 2.0), Point(3, 4)],
        crs='EPSG:27700',
    )
    out = cc.drop_duplicate_points(gdf)
    assert list(out['id']) == [1, 3]


def test_read_point_table_csv(tmp_path):
    path = tmp_path / "lights.csv"
    pd.DataFrame({'X': [1.0, 2.0], 'Y': [3.0, 4.0]}).to_csv(path, index=False)

    df = cc.read_point_table(path)

    assert isinstance(df, pd.DataFrame)
    assert len(df) == 2


def test_read_point_table_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        cc.read_point_table(tmp_path / "missing.csv")

    path = tmp_path / "lights.txt"
    path.write_text("x")
    with pytest.raises(ValueError):
        cc.read_point_table(path)


def test_vector_to_points_flattens_and_explodes():
    from shapely.geometry import MultiPoint, LineString
    gdf = gpd.GeoDataFrame(
        {'name': ['a', 'b', 'c']},
        geometry=[Point(1, 2, 30), MultiPoint([(3, 4), (5, 6)]), LineString([(0, 0), (1, 1)])],
        crs='EPSG:4326',
    )

    out = cc._vector_to_points(gdf, 'EPSG:4326')

    assert len(out) == 3
    assert not out.geometry.has_z.any()
    assert out.crs.to_epsg() == 4326


def _write_city_csv(config):
    config.paths.raw.mkdir(parents=True, exist_ok=True)
    pd.DataFrame({
        'LONGITUDE': [-5.93, -5.93, -5.92, None, 0.0, 40.0],
        'LATITUDE': [54.60, 54.60, 54.59, 54.6, 0.0, 10.0],
    }).to_csv(config.paths.raw / "belfast_lights.csv", index=False)


def test_load_city_streetlights(config):
    _write_city_csv(config)

    gdf = cc.load_city_streetlights(config.cities[0], config)

    # missing, (0,0), out of bounds and one duplicate removed
    assert len(gdf) == 2
    assert gdf.crs.to_epsg() == 27700
    assert set(gdf['city']) == {'Belfast'}
    assert list(gdf['light_id']) == ['belfast_0', 'belfast_1']


def test_run_coordinate_cleaning_writes_outputs(config):
    _write_city_csv(config)

    combined = cc.run_coordinate_cleaning(config)

    assert len(combined) == 2
    assert config.get_clean_streetlights_path(config.cities[0]).exists()
    assert config.get_clean_streetlights_path().exists()

    summary = pd.read_csv(config.paths.results / "preprocessing" / "streetlight_cleaning_summary.csv")
    assert summary.loc[0, 'raw'] == 6
    assert summary.loc[0, 'kept'] == 2
    assert summary.loc[0, 'dropped'] == 4


def test_run_coordinate_cleaning_without_cities(tmp_path):
    from lightcrime.config import PipelineConfig
    with pytest.raises(ValueError, match="No cities"):
        cc.run_coordinate_cleaning(PipelineConfig({}, tmp_path))
