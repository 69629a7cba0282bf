import warnings

import geopandas as gpd
import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.dataset as ds
from pandas.api.types import (
    is_datetime64_any_dtype,
    is_float_dtype,
    is_integer_dtype,
    is_object_dtype,
    is_string_dtype,
)
from pandas import Int64Dtype, StringDtype

from staypoints.constants import BAD_ROW_POLICIES, DEFAULT_CSV_COLUMNS, DEFAULT_SCHEMA


# utils
def _update_schema(original, new_labels):
    updated_schema = dict(original)
    for label in new_labels:
        if label in DEFAULT_SCHEMA:
            updated_schema[label] = new_labels[label]
    return updated_schema

def _parse_traj_cols(columns, traj_cols, kwargs, warn=True, defaults=DEFAULT_SCHEMA):
    """
    Internal helper to finalize trajectory column names using user input and defaults.
    """
    if traj_cols:
        for k in kwargs:
            if k in traj_cols and kwargs[k] != traj_cols[k]:
                raise ValueError(
                    f"Conflicting column name for '{k}': '{traj_cols[k]}' (from traj_cols) vs '{kwargs[k]}' (from keyword arguments)."
                )
        traj_cols = _update_schema(traj_cols, kwargs)
    else:
        traj_cols = _update_schema({}, kwargs)

    if warn:
        for key, value in traj_cols.items():
            if value not in columns:
                warnings.warn(f"Trajectory column '{value}' specified for '{key}' not found in DataFrame.")

    return _update_schema(defaults, traj_cols)

def _is_series_of_timestamps(series):
    """Check if all elements in a pandas Series are of type pd.Timestamp."""
    is_timestamp_vectorized = np.frompyfunc(lambda x: isinstance(x, pd.Timestamp), 1, 1)
    return is_timestamp_vectorized(series.values).all()

def _has_time_cols(col_names, traj_cols):
    """Checks for at least one primary or start time column."""
    dt_col = traj_cols.get('datetime')
    ts_col = traj_cols.get('timestamp')
    start_dt_col = traj_cols.get('start_datetime')
    start_ts_col = traj_cols.get('start_timestamp')

    temporal_exists = (
        (dt_col and dt_col in col_names) or
        (ts_col and ts_col in col_names) or
        (start_dt_col and start_dt_col in col_names) or
        (start_ts_col and start_ts_col in col_names)
    )

    if not temporal_exists:
        raise ValueError(
            "Could not find required temporal columns in {}. The dataset must contain or map to "
            "at least one of 'datetime', 'timestamp', 'start_datetime', or 'start_timestamp'.".format(list(col_names))
        )

    return temporal_exists

def _has_end_cols(col_names, traj_cols):
    """Checks if at least one end time column exists (returns bool)."""
    end_dt_col = traj_cols.get('end_datetime')
    end_ts_col = traj_cols.get('end_timestamp')
    end_dt_exists = (end_dt_col is not None and end_dt_col in col_names)
    end_ts_exists = (end_ts_col is not None and end_ts_col in col_names)
    return end_dt_exists or end_ts_exists

def _has_spatial_cols(col_names, traj_cols):
    traj_cols = _update_schema(DEFAULT_SCHEMA, traj_cols)

    spatial_exists = (
        'x' in traj_cols and 'y' in traj_cols and
        traj_cols['x'] in col_names and traj_cols['y'] in col_names
    )

    if not spatial_exists:
        raise ValueError(
            "Could not find required spatial columns in {}. The dataset must contain or map to "
            "the planar coordinates ('x', 'y').".format(list(col_names))
        )

    return spatial_exists

def _has_user_cols(col_names, traj_cols):
    user_exists = 'user_id' in traj_cols and traj_cols['user_id'] in col_names

    if not user_exists:
        raise ValueError(
            "Could not find required user identifier column in {}. The dataset must contain or map to 'user_id'.".format(list(col_names))
        )

    return user_exists

# for testing only
def _is_visit_df(df, traj_cols=None, **kwargs):
    """Checks visit DataFrame structure and column types."""
    if not isinstance(df, (pd.DataFrame, gpd.GeoDataFrame)):
        return False

    traj_cols = _parse_traj_cols(df.columns, traj_cols, kwargs, warn=False)

    try:
        _has_spatial_cols(df.columns, traj_cols)
        _has_time_cols(df.columns, traj_cols)
    except ValueError:
        return False

    if not _has_end_cols(df.columns, traj_cols):
        return False

    for col_key in ['start_timestamp', 'end_timestamp', 'duration']:
        col_name = traj_cols.get(col_key)
        if col_name in df.columns and not df.empty:
            if not (is_integer_dtype(df[col_name].dtype) or isinstance(df[col_name].dtype, Int64Dtype)):
                return False

    for col_key in ['start_datetime', 'end_datetime']:
        col_name = traj_cols.get(col_key)
        if col_name in df.columns and not df.empty:
            col = df[col_name]
            if not (is_datetime64_any_dtype(col) or (is_object_dtype(col) and _is_series_of_timestamps(col))):
                return False

    for col_key in ['x', 'y']:
        col_name = traj_cols[col_key]
        if not df.empty and not is_float_dtype(df[col_name].dtype):
            return False

    return True

def _warn_timestamp_precision(col, values):
    if values.empty:
        return
    ts_len = len(str(abs(int(values.iloc[0]))))
    if ts_len == 13:
        warnings.warn(
            f"The '{col}' column appears to be in milliseconds. "
            "This may lead to inconsistencies, converting to seconds is recommended."
        )
    elif ts_len == 19:
        warnings.warn(
            f"The '{col}' column appears to be in nanoseconds. "
            "This may lead to inconsistencies, converting to seconds is recommended."
        )

def _cast_traj_cols(df, traj_cols, fixed_format=None, on_bad_rows="raise"):
    """
    Casts trajectory columns to their expected dtypes and applies the bad-row policy.

    Rows with a missing identifier, a non-numeric coordinate, a non-integer
    timestamp or an unparseable datetime are malformed. With
    ``on_bad_rows='raise'`` they raise a ValueError naming their line numbers
    (index + 1); with ``on_bad_rows='skip'`` they are dropped with a warning.
    """
    if on_bad_rows not in BAD_ROW_POLICIES:
        raise ValueError(f"on_bad_rows must be one of {BAD_ROW_POLICIES}, got {on_bad_rows!r}.")

    df = df.copy()
    bad = pd.Series(False, index=df.index)

    for key in ['datetime', 'start_datetime', 'end_datetime']:
        col = traj_cols.get(key)
        if col not in df:
            continue
        if is_datetime64_any_dtype(df[col]):
            if df[col].dt.tz is None:
                warnings.warn(f"The '{col}' column is timezone-naive. Consider localizing or using unix timestamps.")
        elif is_string_dtype(df[col]) or isinstance(df[col].dtype, StringDtype):
            parsed = pd.to_datetime(df[col], format=fixed_format, errors='coerce')
            bad |= parsed.isna()
            df[col] = parsed
        elif not (is_object_dtype(df[col]) and _is_series_of_timestamps(df[col])):
            raise TypeError(
                f"Column '{col}' (mapped as '{key}' in traj_cols) must be of type datetime64, string, "
                f"or an array of Timestamp objects, but it is of type {df[col].dtype}."
            )

    for key in ['timestamp', 'start_timestamp', 'end_timestamp', 'duration', 'tz_offset']:
        col = traj_cols.get(key)
        if col not in df:
            continue
        values = pd.to_numeric(df[col], errors='coerce')
        bad |= (values.isna() | (values % 1 != 0)).fillna(True).astype(bool)
        df[col] = values

    for key in ['x', 'y']:
        col = traj_cols.get(key)
        if col not in df:
            continue
        values = pd.to_numeric(df[col], errors='coerce')
        bad |= values.isna()
        df[col] = values

    uid = traj_cols.get('user_id')
    if uid in df:
        bad |= df[uid].isna() | (df[uid].astype(str).str.strip() == "")

    if bad.any():
        lines = [int(i) + 1 for i in bad[bad].index[:10]]
        if on_bad_rows == "raise":
            raise ValueError(
                f"Found {int(bad.sum())} malformed row(s) at line(s) {lines}"
                f"{' ...' if bad.sum() > 10 else ''}. Fix the data or set on_bad_rows='skip'."
            )
        warnings.warn(f"Skipped {int(bad.sum())} malformed row(s) at line(s) {lines}.")
        df = df.loc[~bad]

    for key in ['timestamp', 'start_timestamp', 'end_timestamp', 'duration', 'tz_offset']:
        col = traj_cols.get(key)
        if col in df and df[col].dtype != "Int64":
            df[col] = df[col].astype("Int64")
        if key == 'timestamp' and col in df:
            _warn_timestamp_precision(col, df[col])

    for key in ['x', 'y']:
        col = traj_cols.get(key)
        if col in df and not is_float_dtype(df[col].dtype):
            df[col] = df[col].astype("float64")

    if uid in df and not is_string_dtype(df[uid].dtype):
        df[uid] = df[uid].astype("str")

    return df

def _is_number(token):
    try:
        float(token)
    except (TypeError, ValueError):
        return False
    return True

def _headerless_names(n_fields, traj_cols, fixed_format=None):
    names = []
    for k in range(n_fields):
        if k < len(DEFAULT_CSV_COLUMNS):
            key = DEFAULT_CSV_COLUMNS[k]
            if key == 'timestamp' and fixed_format is not None:
                key = 'datetime'
            names.append(traj_cols[key])
        else:
            names.append(f"col_{k}")
    return names

def _read_csv(filepath, traj_cols, names=None, fixed_format=None, on_bad_rows="raise", sep=","):
    """
    Read delimited text as strings, detecting an optional header row.

    A first row where no field parses as a number is a header. Otherwise
    fields are named ``names`` or, by position, user_id, timestamp (datetime
    when ``fixed_format`` is given), x, y.
    """
    try:
        raw = pd.read_csv(
            filepath,
            sep=sep,
            header=None,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            on_bad_lines="error" if on_bad_rows == "raise" else "warn",
        )
    except pd.errors.EmptyDataError:
        names = names or _headerless_names(len(DEFAULT_CSV_COLUMNS), traj_cols, fixed_format)
        return pd.DataFrame(columns=names)

    first_row = [value.strip() for value in raw.iloc[0].fillna("")]
    if not any(_is_number(value) for value in first_row):
        raw.columns = first_row
        raw = raw.iloc[1:]
    elif names is not None:
        if len(names) != raw.shape[1]:
            raise ValueError(f"Expected {raw.shape[1]} column names, got {len(names)}.")
        raw.columns = list(names)
    else:
        raw.columns = _headerless_names(raw.shape[1], traj_cols, fixed_format)

    return raw

def from_df(df, traj_cols=None, fixed_format=None, on_bad_rows="raise", **kwargs):
    """
    Converts a DataFrame into a standardized trajectory format by validating and casting
    the spatial, temporal and identifier columns.

    Parameters
    ----------
    df : pd.DataFrame or gpd.GeoDataFrame
        The input DataFrame containing trajectory data.
    traj_cols : dict, optional
        Mapping of expected trajectory column names (e.g., 'x', 'y', 'timestamp',
        'datetime', 'user_id') to actual column names in `df`.
    fixed_format : str, optional
        strftime-style format used to parse string datetime columns.
    on_bad_rows : {'raise', 'skip'}, default 'raise'
        What to do with rows whose required fields cannot be parsed.
    **kwargs : dict
        Column name overrides, e.g. ``x='easting'``.

    Returns
    -------
    pd.DataFrame
        Copy of `df` with Int64 timestamps, float64 coordinates, string user ids
        and parsed datetimes.
    """
    if not isinstance(df, (pd.DataFrame, gpd.GeoDataFrame)):
        raise TypeError("Expected the data argument to be either a pandas DataFrame or a GeoPandas GeoDataFrame.")

    traj_cols = _parse_traj_cols(df.columns, traj_cols, kwargs)

    _has_spatial_cols(df.columns, traj_cols)
    _has_time_cols(df.columns, traj_cols)

    return _cast_traj_cols(df, traj_cols, fixed_format=fixed_format, on_bad_rows=on_bad_rows)

def from_file(filepath, format="csv", traj_cols=None, names=None, fixed_format=None,
              on_bad_rows="raise", sep=",", **kwargs):
    """
    Load and cast trajectory data from a file path or an open text buffer.

    Parameters
    ----------
    filepath : str, Path or file-like
        CSV file or buffer (e.g. ``sys.stdin``), or a Parquet file/directory.
    format : {'csv', 'parquet'}
        The format of the data.
    traj_cols : dict, optional
        Mapping of trajectory column names (e.g., 'x', 'timestamp').
    names : list of str, optional
        Column names for a headerless CSV. Ignored when a header row is found.
    fixed_format : str, optional
        Datetime format of the time field. For a headerless CSV it also marks the
        second field as a datetime string instead of an integer timestamp.
    on_bad_rows : {'raise', 'skip'}, default 'raise'
        Policy for malformed rows.
    sep : str, default ','
        Field delimiter for CSV input.

    Returns
    -------
    pd.DataFrame
        The DataFrame with trajectory columns cast to expected types.
    """
    if format not in {"csv", "parquet"}:
        raise ValueError("format must be 'csv' or 'parquet'")

    parsed_cols = _parse_traj_cols([], traj_cols, kwargs, warn=False)

    if format == "parquet":
        df = ds.dataset(filepath, format="parquet", partitioning="hive").to_table().to_pandas()
    else:
        df = _read_csv(filepath, parsed_cols, names=names, fixed_format=fixed_format,
                       on_bad_rows=on_bad_rows, sep=sep)

    _has_spatial_cols(df.columns, parsed_cols)
    _has_time_cols(df.columns, parsed_cols)

    return _cast_traj_cols(df, parsed_cols, fixed_format=fixed_format, on_bad_rows=on_bad_rows)

def to_file(df, path, format="csv", traj_cols=None, fixed_format=None, header=True, sep=",", **kwargs):
    """
    Write a visit (or trajectory) table to CSV or to a Parquet dataset directory.

    Datetime columns are rendered with `fixed_format` when given, otherwise
    with their ISO string representation. `path` may be an open text buffer
    for CSV output.
    """
    if format not in {"csv", "parquet"}:
        raise ValueError("format must be 'csv' or 'parquet'")

    df = df.copy()
    traj_cols = _parse_traj_cols(df.columns, traj_cols, kwargs, warn=False)

    for k in ["datetime", "start_datetime", "end_datetime"]:
        col = traj_cols[k]
        if col in df.columns and is_datetime64_any_dtype(df[col]):
            if fixed_format is not None:
                df[col] = df[col].dt.strftime(fixed_format)
            else:
                df[col] = df[col].astype(str)

    if format == "csv":
        df.to_csv(path, index=False, header=header, sep=sep)
    else:
        table = pa.Table.from_pandas(df, preserve_index=False)
        ds.write_dataset(table, base_dir=str(path), format="parquet",
                         existing_data_behavior="overwrite_or_ignore")

def to_gdf(visits, crs=None, traj_cols=None, **kwargs):
    """
    Attach point geometries built from the visit coordinates.

    Returns
    -------
    gpd.GeoDataFrame
        The visit table with a 'geometry' column of points at (x, y).
    """
    traj_cols = _parse_traj_cols(visits.columns, traj_cols, kwargs, warn=False)
    _has_spatial_cols(visits.columns, traj_cols)

    geometry = gpd.points_from_xy(visits[traj_cols['x']], visits[traj_cols['y']])
    return gpd.GeoDataFrame(visits.copy(), geometry=geometry, crs=crs)
