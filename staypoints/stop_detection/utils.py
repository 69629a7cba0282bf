import math

import numpy as np
import pandas as pd

import staypoints.io.base as loader
from staypoints import constants
from staypoints.filters import to_timestamp


def _median(values):
    """
    Median of a sequence of real numbers, in any order.

    For an even count this is the mean of the two central values after an
    ascending sort, for an odd count the central value itself.

    Raises
    ------
    ValueError
        If `values` is empty.
    """
    values = np.asarray(values, dtype='float64')
    if values.size == 0:
        raise ValueError("Cannot compute the median of an empty sequence.")
    return float(np.median(values))

def _distance(p, q):
    """Euclidean distance between two planar points given as (x, y) pairs."""
    return math.sqrt((p[0] - q[0]) ** 2 + (p[1] - q[1]) ** 2)

def _bbox_diameter(min_x, min_y, max_x, max_y):
    """
    Length of the diagonal of an axis-aligned bounding box.

    This is the spread measure used for window compactness. It is not the
    maximum pairwise distance of the points inside the box.
    """
    return _distance((min_x, min_y), (max_x, max_y))

def _fallback_time_cols(col_names, traj_cols, kwargs):
    '''
    Helper to decide whether to use datetime vs timestamp in cases of ambiguity
    '''
    traj_cols = loader._parse_traj_cols(col_names, traj_cols, kwargs, defaults={}, warn=False)
    # check for explicit datetime usage
    t_keys = ['timestamp', 'start_timestamp', 'datetime', 'start_datetime']
    if 'datetime' in kwargs or 'start_datetime' in kwargs or 'datetime' in traj_cols:
        t_keys = t_keys[-2:] + t_keys[:2]

    # load defaults and check for time columns
    traj_cols = loader._update_schema(constants.DEFAULT_SCHEMA, traj_cols)
    loader._has_time_cols(col_names, traj_cols)

    for t_key in t_keys:
        if traj_cols[t_key] in col_names:
            use_datetime = (t_key in ['datetime', 'start_datetime'])
            break

    return t_key, use_datetime

def _time_values(data, time_col, use_datetime, tz_offset_col=None):
    """
    Times of `data` as an int64 array of unix seconds (or raw timestamp units).

    Naive datetimes are shifted by `tz_offset_col` (seconds east of UTC) when
    that column is present.
    """
    if use_datetime:
        tz_offset = data[tz_offset_col] if tz_offset_col in data.columns else None
        return to_timestamp(data[time_col], tz_offset=tz_offset).to_numpy(dtype='int64')
    return data[time_col].to_numpy(dtype='int64')

def _visit_keys(traj_cols, use_datetime, keep_col_names):
    """Output column names of a visit: (start, end, x, y)."""
    start_key = 'start_datetime' if use_datetime else 'start_timestamp'
    end_key = 'end_datetime' if use_datetime else 'end_timestamp'
    if keep_col_names:
        x_col, y_col = traj_cols['x'], traj_cols['y']
    else:
        x_col, y_col = constants.DEFAULT_SCHEMA['x'], constants.DEFAULT_SCHEMA['y']
    return traj_cols[start_key], traj_cols[end_key], x_col, y_col

def _merge_window(coords, times, start, end):
    """
    Collapse the samples in ``[start, end)`` into one visit.

    Returns
    -------
    tuple
        (start time, end time, median x, median y).
    """
    window = coords[start:end]
    return (
        times[start],
        times[end - 1],
        _median(window[:, 0]),
        _median(window[:, 1]),
    )

def _visit_record(window_data, coords, times, time_col, keys, complete_output=False, passthrough_cols=[]):
    """
    Build the output record of one visit from its window.

    `coords` and `times` hold the window's own samples. Start and end values
    are taken from `time_col`, so datetime input yields datetime output.
    """
    start_col, end_col, x_col, y_col = keys
    _, _, x, y = _merge_window(coords, times, 0, len(coords))

    record = {}
    for col in passthrough_cols:
        if col in window_data.columns:
            record[col] = window_data[col].iloc[0]

    record[start_col] = window_data[time_col].iloc[0]
    record[end_col] = window_data[time_col].iloc[-1]
    record[x_col] = x
    record[y_col] = y

    if complete_output:
        record['duration'] = int(times[-1] - times[0])
        record['n_pings'] = len(coords)
        record['diameter'] = _bbox_diameter(coords[:, 0].min(), coords[:, 1].min(),
                                            coords[:, 0].max(), coords[:, 1].max())
        record['max_gap'] = int(np.diff(times).max()) if len(times) > 1 else 0

    return record

def summarize_visit(grouped_data, complete_output=False, keep_col_names=True, passthrough_cols=[], traj_cols=None, **kwargs):
    """
    Summarize the pings of one accepted window into a visit.

    Parameters
    ----------
    grouped_data : pd.DataFrame
        The consecutive pings of one visit, in chronological order.
    complete_output : bool
        If True, also report duration, n_pings, diameter and max_gap.
    keep_col_names : bool
        If True, coordinates keep the input column names; otherwise 'x' and 'y'.
    passthrough_cols : list, optional
        Columns whose first value is carried into the visit (e.g. user_id).
    traj_cols : dict, optional
        Column-name overrides.

    Returns
    -------
    pd.Series
        start, end, per-axis median x and y, plus the optional columns.
    """
    if grouped_data.empty:
        raise ValueError("Cannot summarize a visit from an empty window.")

    t_key, use_datetime = _fallback_time_cols(grouped_data.columns, traj_cols, kwargs)
    traj_cols = loader._parse_traj_cols(grouped_data.columns, traj_cols, kwargs, warn=False)
    loader._has_spatial_cols(grouped_data.columns, traj_cols)

    coords = grouped_data[[traj_cols['x'], traj_cols['y']]].to_numpy(dtype='float64')
    times = _time_values(grouped_data, traj_cols[t_key], use_datetime, traj_cols['tz_offset'])
    keys = _visit_keys(traj_cols, use_datetime, keep_col_names)

    return pd.Series(_visit_record(grouped_data, coords, times, traj_cols[t_key], keys,
                                   complete_output=complete_output,
                                   passthrough_cols=passthrough_cols))

def _get_empty_visit_columns(input_columns, complete_output, passthrough_cols, traj_cols, keep_col_names, **kwargs):
    """
    Column names of an empty visit table, in the order `_visit_record` produces them.
    """
    t_key, use_datetime = _fallback_time_cols(input_columns, traj_cols, kwargs)
    cols = loader._parse_traj_cols(input_columns, traj_cols, kwargs, warn=False)

    column_list = [col for col in passthrough_cols if col in input_columns]
    column_list.extend(_visit_keys(cols, use_datetime, keep_col_names))
    if complete_output:
        column_list.extend(['duration', 'n_pings', 'diameter', 'max_gap'])
    return column_list
