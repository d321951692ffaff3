"""Tests for preprocessing/crime_data.py."""
import pytest
import pandas as pd

from lightcrime.config import PipelineConfig
from lightcrime.preprocessing import crime_data


def police_rows():
    """Street-level rows in the police.uk layout."""
    return pd.DataFrame({
        'Crime ID': ['abc', None, 'def', 'ghi', 'jkl'],
        'Month': ['2023-01', '2023-04', '2023-07', '2023-10', '2023-12'],
        'Reported by': ['Police Service of Northern Ireland'] * 5,
        'Longitude': [-5.93, -5.92, None, -6.33, -7.31],
        'Latitude': [54.60, 54.59, 54.60, 54.18, 54.99],
        'Location': ['On or near Street'] * 5,
        'Crime type': ['Burglary', 'Anti-social behaviour', 'Burglary', 'Drugs', 'Burglary'],
    })


def test_assign_season():
    months = pd.Series(['2023-12', '2023-01', '2023-03', '2023-06', '2023-11', 'unknown'])

    seasons = crime_data.assign_season(months)

    assert list(seasons[:5]) == ['Winter', 'Winter', 'Spring', 'Summer', 'Autumn']
    assert pd.isna(seasons.iloc[5])


def test_prepare_crimes(tmp_path):
    config = PipelineConfig({}, tmp_path)

    crimes = crime_data.prepare_crimes(police_rows(), config)

    assert list(crimes.columns) == crime_data.CRIME_COLUMNS
    assert len(crimes) == 4
    assert crimes.crs.to_epsg() == 27700
    assert list(crimes['uid']) == [0, 1, 2, 3]
    assert list(crimes['season']) == ['Winter', 'Spring', 'Autumn', 'Winter']
    assert crimes['crime_id'].isna().sum() == 1


def test_prepare_crimes_type_filter(tmp_path):
    config = PipelineConfig({'crimes': {'crime_types': ['Burglary']}}, tmp_path)

    crimes = crime_data.prepare_crimes(police_rows(), config)

    assert set(crimes['crime_type']) == {'Burglary'}
    assert len(crimes) == 2


def test_prepare_crimes_without_id_column(tmp_path):
    config = PipelineConfig({}, tmp_path)
    df = police_rows().drop(columns='Crime ID')

    crimes = crime_data.prepare_crimes(df, config)

    assert crimes['crime_id'].isna().all()


def test_prepare_crimes_missing_columns(tmp_path):
    config = PipelineConfig({}, tmp_path)
    with pytest.raises(ValueError, match="Crime type"):
        crime_data.prepare_crimes(police_rows().drop(columns='Crime type'), config)


def test_prepare_crimes_projected_source(tmp_path):
    config = PipelineConfig({'crimes': {'x_column': 'Easting', 'y_column': 'Northing',
                                        'source_crs': 'EPSG:27700'}}, tmp_path)
    df = pd.DataFrame({
        'Month': ['2023-01', '2023-06'],
        'Crime type': ['Burglary', 'Drugs'],
        'Easting': [330000.0, 331000.0],
        'Northing': [530000.0, 531000.0],
    })

    crimes = crime_data.prepare_crimes(df, config)

    assert 'longitude' not in crimes.columns
    assert list(crimes['source_x']) == [330000.0, 331000.0]
    assert list(crimes.geometry.x) == pytest.approx([330000.0, 331000.0])


def test_read_crime_files(tmp_path):
    paths = []
    for month in ['2023-01', '2023-02']:
        path = tmp_path / f"{month}-street.csv"
        police_rows().assign(Month=month).to_csv(path, index=False)
        paths.append(path)

    df = crime_data.read_crime_files(paths)

    assert len(df) == 10
    assert set(df['Month']) == {'2023-01', '2023-02'}


def test_read_crime_files_none_found():
    with pytest.raises(FileNotFoundError):
        crime_data.read_crime_files([])


def test_run_crime_preprocessing(config):
    crimes_dir = config.paths.raw / "crimes"
    crimes_dir.mkdir(parents=True)
    police_rows().to_csv(crimes_dir / "2023-01-street.csv", index=False)

    crimes = crime_data.run_crime_preprocessing(config)

    assert len(crimes) == 4
    assert config.get_clean_crimes_path().exists()
    assert (config.paths.results / "preprocessing" / "crime_preprocessing_log.txt").exists()
