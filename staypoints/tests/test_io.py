import io
import warnings
from pathlib import Path

import geopandas as gpd
import pandas as pd
import pytest
from pandas.testing import assert_frame_equal

from staypoints.io import base as loader


@pytest.fixture
def sample_path():
    return Path(__file__).resolve().parent.parent / "data" / "sample_pings.csv"

@pytest.fixture
def visits_df():
    return pd.DataFrame({
        "user_id": ["1", "1"],
        "start_timestamp": [1, 4],
        "end_timestamp": [2, 6],
        "x": [1.5, 10.0],
        "y": [1.5, 10.0],
    })


##########################################
####            READ TESTS            ####
##########################################
def test_from_file_with_header(sample_path):
    df = loader.from_file(sample_path)

    assert list(df.columns) == ["user_id", "timestamp", "x", "y"]
    assert len(df) == 9
    assert df["timestamp"].dtype == "Int64"
    assert df["x"].dtype == "float64"
    assert df["user_id"].tolist()[:2] == ["1", "1"]

def test_from_file_headerless_buffer():
    buffer = io.StringIO("7,100,1.0,2.0\n7,160,1.5,2.5\n")
    df = loader.from_file(buffer)

    assert list(df.columns) == ["user_id", "timestamp", "x", "y"]
    assert df["timestamp"].tolist() == [100, 160]
    assert df["y"].tolist() == [2.0, 2.5]

def test_from_file_headerless_with_names():
    buffer = io.StringIO("7,100,1.0,2.0\n")
    df = loader.from_file(buffer, names=["uid", "unix_time", "x", "y"], user_id="uid", timestamp="unix_time")

    assert list(df.columns) == ["uid", "unix_time", "x", "y"]
    assert df["unix_time"].iloc[0] == 100

def test_from_file_header_with_spaces():
    buffer = io.StringIO("user_id, timestamp, x, y\n1, 5, 0.5, 0.25\n")
    df = loader.from_file(buffer)

    assert list(df.columns) == ["user_id", "timestamp", "x", "y"]
    assert df["x"].iloc[0] == 0.5

def test_from_file_empty_input():
    df = loader.from_file(io.StringIO(""))

    assert df.empty
    assert list(df.columns) == ["user_id", "timestamp", "x", "y"]

def test_from_file_fixed_format():
    buffer = io.StringIO("1,2024-01-01 08:00:00,0.0,0.0\n1,2024-01-01 08:05:00,0.1,0.1\n")
    df = loader.from_file(buffer, fixed_format="%Y-%m-%d %H:%M:%S")

    assert list(df.columns) == ["user_id", "datetime", "x", "y"]
    assert pd.api.types.is_datetime64_any_dtype(df["datetime"])
    assert df["datetime"].iloc[1] == pd.Timestamp("2024-01-01 08:05:00")

def test_from_file_bad_rows_raise():
    buffer = io.StringIO("1,1,0.0,0.0\n1,two,0.0,0.0\n1,3,nan-ish,0.0\n")
    with pytest.raises(ValueError, match=r"2 malformed row\(s\) at line\(s\) \[2, 3\]"):
        loader.from_file(buffer)

def test_from_file_bad_rows_skip():
    buffer = io.StringIO("1,1,0.0,0.0\n1,two,0.0,0.0\n,3,0.0,0.0\n1,4,1.0,1.0\n")
    with pytest.warns(UserWarning, match="Skipped 2 malformed row"):
        df = loader.from_file(buffer, on_bad_rows="skip")

    assert df["timestamp"].tolist() == [1, 4]

def test_from_file_fractional_timestamp_is_bad():
    with pytest.raises(ValueError, match="malformed"):
        loader.from_file(io.StringIO("1,1.5,0.0,0.0\n"))

def test_from_file_invalid_format(sample_path):
    with pytest.raises(ValueError, match="format"):
        loader.from_file(sample_path, format="json")

def test_millisecond_timestamps_warn():
    with pytest.warns(UserWarning, match="milliseconds"):
        loader.from_file(io.StringIO("1,1700000000000,0.0,0.0\n"))

def test_from_df_casts_columns():
    df = pd.DataFrame({"user_id": [1, 2], "timestamp": ["10", "20"], "x": ["1", "2"], "y": [0, 0]})
    cast = loader.from_df(df)

    assert cast["user_id"].tolist() == ["1", "2"]
    assert cast["timestamp"].dtype == "Int64"
    assert cast["x"].dtype == "float64" and cast["y"].dtype == "float64"

def test_from_df_requires_dataframe():
    with pytest.raises(TypeError):
        loader.from_df([[1, 1, 0.0, 0.0]])

def test_from_df_missing_columns():
    with pytest.raises(ValueError, match="spatial"):
        loader.from_df(pd.DataFrame({"timestamp": [1], "lon": [0.0], "lat": [0.0]}))
    with pytest.raises(ValueError, match="temporal"):
        loader.from_df(pd.DataFrame({"x": [0.0], "y": [0.0]}))

def test_from_df_conflicting_names():
    df = pd.DataFrame({"t": [1], "x": [0.0], "y": [0.0]})
    with pytest.raises(ValueError, match="Conflicting"):
        loader.from_df(df, traj_cols={"timestamp": "t"}, timestamp="time")

def test_from_df_missing_mapped_column_warns():
    df = pd.DataFrame({"timestamp": [1], "x": [0.0], "y": [0.0]})
    with pytest.warns(UserWarning, match="'uid' specified for 'user_id' not found"):
        loader.from_df(df, user_id="uid")

def test_from_df_naive_datetime_warns():
    df = pd.DataFrame({"datetime": pd.date_range("2024-01-01", periods=2, freq="60min"), "x": [0.0, 1.0], "y": [0.0, 1.0]})
    with pytest.warns(UserWarning, match="timezone-naive"):
        loader.from_df(df)


##########################################
####           WRITE TESTS            ####
##########################################
def test_to_file_csv_headerless(visits_df):
    buffer = io.StringIO()
    loader.to_file(visits_df, buffer, header=False)

    assert buffer.getvalue().splitlines() == ["1,1,2,1.5,1.5", "1,4,6,10.0,10.0"]

def test_to_file_csv_datetime_format():
    visits = pd.DataFrame({
        "user_id": ["1"],
        "start_datetime": [pd.Timestamp("2024-01-01 08:00:00")],
        "end_datetime": [pd.Timestamp("2024-01-01 08:05:00")],
        "x": [0.0],
        "y": [0.0],
    })
    buffer = io.StringIO()
    loader.to_file(visits, buffer, fixed_format="%Y-%m-%d %H:%M:%S")

    assert buffer.getvalue().splitlines()[1] == "1,2024-01-01 08:00:00,2024-01-01 08:05:00,0.0,0.0"

def test_to_file_parquet_round_trip(visits_df, tmp_path):
    out = tmp_path / "visits"
    loader.to_file(visits_df, out, format="parquet")

    loaded = loader.from_file(out, format="parquet")

    assert loaded["start_timestamp"].tolist() == [1, 4]
    assert_frame_equal(loaded[["x", "y"]], visits_df[["x", "y"]])

def test_to_file_csv_round_trip(tmp_path, sample_path):
    pings = loader.from_file(sample_path)
    out = tmp_path / "pings.csv"
    loader.to_file(pings, out)

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        reloaded = loader.from_file(out)

    assert_frame_equal(reloaded.reset_index(drop=True), pings.reset_index(drop=True))

def test_to_gdf(visits_df):
    gdf = loader.to_gdf(visits_df, crs="EPSG:3857")

    assert isinstance(gdf, gpd.GeoDataFrame)
    assert gdf.crs.to_epsg() == 3857
    assert gdf.geometry.x.tolist() == [1.5, 10.0]
    assert "geometry" not in visits_df.columns

def test_has_user_cols(visits_df):
    assert loader._has_user_cols(visits_df.columns, {"user_id": "user_id"})
    with pytest.raises(ValueError, match="'user_id'"):
        loader._has_user_cols(visits_df.columns, {"user_id": "uid"})

def test_is_visit_df(visits_df):
    assert loader._is_visit_df(visits_df)
    assert not loader._is_visit_df(visits_df.drop(columns=["end_timestamp"]))
    assert not loader._is_visit_df(visits_df.assign(x=["a", "b"]))
