import math
from functools import partial
from multiprocessing import Pool

import geopandas as gpd
import numpy as np
import pandas as pd

import staypoints.io.base as loader
from staypoints import constants
from staypoints.stop_detection import utils
from staypoints.stop_detection.grouping import group_pings

##########################################
########  Sequential stay points  ########
##########################################

class BoundingBox:
    """
    Axis-aligned bounding box of the pings in the current window.

    `absorb` grows the box by one ping in O(1); `reset` reseeds it from a
    single ping when a new window starts.
    """

    __slots__ = ('min_x', 'max_x', 'min_y', 'max_y')

    def __init__(self, point):
        self.reset(point)

    def reset(self, point):
        x, y = point
        self.min_x = self.max_x = x
        self.min_y = self.max_y = y

    def absorb(self, point):
        x, y = point
        self.min_x = min(self.min_x, x)
        self.max_x = max(self.max_x, x)
        self.min_y = min(self.min_y, y)
        self.max_y = max(self.max_y, y)

    @property
    def diameter(self):
        return utils._bbox_diameter(self.min_x, self.min_y, self.max_x, self.max_y)


def _validate_thresholds(max_distance, min_duration):
    if max_distance is None or not math.isfinite(max_distance) or max_distance <= 0:
        raise ValueError(f"max_distance must be a positive finite number, got {max_distance!r}.")
    if min_duration is None or not (min_duration >= 0):
        raise ValueError(f"min_duration must be a non-negative number, got {min_duration!r}.")


def sequential_windows(coords, times, max_distance, min_duration):
    """
    Scan one user's pings and return the windows accepted as visits.

    A window grows one ping at a time while the diagonal of its bounding box
    stays strictly below `max_distance`. The ping that breaks compactness
    closes the window (without itself) and starts the next one. A closed
    window is kept when its first-to-last time span is at least
    `min_duration`.

    Parameters
    ----------
    coords : array-like, shape (n, 2)
        Planar (x, y) coordinates in chronological order.
    times : array-like, shape (n,)
        Timestamps of the pings, non-decreasing.
    max_distance : float
        Exclusive upper bound on the bounding-box diagonal of a window.
    min_duration : int
        Inclusive lower bound on a window's time span, in timestamp units.

    Returns
    -------
    list of tuple
        Half-open index ranges ``(start, end)`` in increasing order.
    """
    coords = np.asarray(coords, dtype='float64').tolist()
    times = np.asarray(times).tolist()
    n = len(coords)
    windows = []
    if n == 0:
        return windows

    box = BoundingBox(coords[0])
    i, j = 0, 1
    while j <= n:
        if box.diameter < max_distance:
            if j == n and times[j - 1] - times[i] >= min_duration:
                windows.append((i, j))
            j += 1
            if j <= n:
                box.absorb(coords[j - 1])
        elif j - 1 > i:
            if times[j - 2] - times[i] >= min_duration:
                windows.append((i, j - 1))
            # the breaking ping opens the next window
            i = j - 1
            box.reset(coords[i])
        else:
            # a single ping that is not compact (non-finite coordinates) is dropped
            i, j = j, j + 1
            if j <= n:
                box.reset(coords[i])

    return windows


def sequential_labels(data, max_distance, min_duration, traj_cols=None, **kwargs):
    """
    Scan a single user's trajectory and assign each ping a visit index or -1.

    Parameters
    ----------
    data : pd.DataFrame or GeoDataFrame
        Chronologically ordered pings with 'x', 'y' and a time column.
    max_distance : float
        Maximum (exclusive) bounding-box diagonal of a visit.
    min_duration : int
        Minimum (inclusive) visit duration, in the unit of the time column
        (seconds for datetime columns).
    traj_cols : dict, optional
        Mapping for 'x', 'y', 'timestamp' or 'datetime'.
    **kwargs
        Passed along to the column-detection helper.

    Returns
    -------
    pd.Series
        One integer label per row, -1 for pings outside any visit, 0..K-1 for visits.
    """
    if not isinstance(data, (pd.DataFrame, gpd.GeoDataFrame)):
        raise TypeError("Input 'data' must be a pandas DataFrame or GeoDataFrame.")
    _validate_thresholds(max_distance, min_duration)
    if data.empty:
        return pd.Series([], dtype=int, name='cluster')

    t_key, use_datetime = utils._fallback_time_cols(data.columns, traj_cols, kwargs)
    traj_cols = loader._parse_traj_cols(data.columns, traj_cols, kwargs)
    loader._has_spatial_cols(data.columns, traj_cols)

    coords = data[[traj_cols['x'], traj_cols['y']]].to_numpy(dtype='float64')
    times = utils._time_values(data, traj_cols[t_key], use_datetime, traj_cols['tz_offset'])

    labels = np.full(len(data), -1, dtype=int)
    for cluster_id, (start, end) in enumerate(sequential_windows(coords, times, max_distance, min_duration)):
        labels[start:end] = cluster_id

    return pd.Series(labels, index=data.index, name='cluster')


def sequential(
    data,
    max_distance=constants.DEFAULT_MAX_DISTANCE,
    min_duration=constants.DEFAULT_MIN_DURATION,
    complete_output=False,
    passthrough_cols=[],
    keep_col_names=True,
    traj_cols=None,
    **kwargs
):
    """
    Sequential stay-point detection with a bounding-box diameter criterion.

    Parameters
    ----------
    data : pd.DataFrame or GeoDataFrame
        Chronologically ordered pings of a single user.
    max_distance : float
        Maximum (exclusive) bounding-box diagonal of a visit.
    min_duration : int
        Minimum (inclusive) visit duration in timestamp units.
    complete_output : bool
        If True, add duration, n_pings, diameter and max_gap columns.
    passthrough_cols : list, optional
        Columns to carry into each visit from its first ping.
    keep_col_names : bool
        If True, coordinate columns keep the input names.
    traj_cols : dict, optional
        Mapping for 'user_id', 'x', 'y', 'timestamp' or 'datetime'.

    Returns
    -------
    pd.DataFrame
        One row per visit: user_id (if present), start, end, median x and y.

    Raises
    ------
    ValueError if multiple users found; use sequential_per_user instead.
    """
    if not isinstance(data, (pd.DataFrame, gpd.GeoDataFrame)):
        raise TypeError("Input 'data' must be a pandas DataFrame or GeoDataFrame.")
    _validate_thresholds(max_distance, min_duration)

    traj_cols_temp = loader._parse_traj_cols(data.columns, traj_cols, kwargs, warn=False)
    uid = traj_cols_temp['user_id']
    if uid in data.columns:
        arr = data[uid].values
        if len(arr) > 0 and any(x != arr[0] for x in arr[1:]):
            raise ValueError("Multi-user data? Use sequential_per_user instead.")
        passthrough_cols = [uid] + [col for col in passthrough_cols if col != uid]

    columns = utils._get_empty_visit_columns(
        data.columns, complete_output, passthrough_cols, traj_cols,
        keep_col_names=keep_col_names, **kwargs
    )
    if data.empty:
        return pd.DataFrame(columns=columns)

    t_key, use_datetime = utils._fallback_time_cols(data.columns, traj_cols, kwargs)
    traj_cols = loader._parse_traj_cols(data.columns, traj_cols, kwargs)
    loader._has_spatial_cols(data.columns, traj_cols)

    coords = data[[traj_cols['x'], traj_cols['y']]].to_numpy(dtype='float64')
    times = utils._time_values(data, traj_cols[t_key], use_datetime, traj_cols['tz_offset'])
    keys = utils._visit_keys(traj_cols, use_datetime, keep_col_names)

    records = [
        utils._visit_record(
            data.iloc[start:end],
            coords[start:end],
            times[start:end],
            traj_cols[t_key],
            keys,
            complete_output=complete_output,
            passthrough_cols=passthrough_cols,
        )
        for start, end in sequential_windows(coords, times, max_distance, min_duration)
    ]

    return pd.DataFrame.from_records(records, columns=columns)


def sequential_per_user(
    data,
    max_distance=constants.DEFAULT_MAX_DISTANCE,
    min_duration=constants.DEFAULT_MIN_DURATION,
    grouping='contiguous',
    n_jobs=1,
    complete_output=False,
    passthrough_cols=[],
    keep_col_names=True,
    traj_cols=None,
    **kwargs
):
    """
    Run sequential stay-point detection on each user separately, then concatenate.

    Users are split with `group_pings` (see `grouping`). Groups share no
    state, so with ``n_jobs > 1`` they are processed by a process pool;
    visits keep the group order either way.

    Raises if 'user_id' not in traj_cols or missing from data.
    """
    if not isinstance(data, (pd.DataFrame, gpd.GeoDataFrame)):
        raise TypeError("Input 'data' must be a pandas DataFrame or GeoDataFrame.")
    _validate_thresholds(max_distance, min_duration)
    if n_jobs < 1:
        raise ValueError(f"n_jobs must be a positive integer, got {n_jobs!r}.")

    traj_cols_temp = loader._parse_traj_cols(data.columns, traj_cols, kwargs)
    loader._has_user_cols(data.columns, traj_cols_temp)
    uid = traj_cols_temp['user_id']

    groups = group_pings(data, strategy=grouping, traj_cols=traj_cols, **kwargs)

    detect = partial(
        sequential,
        max_distance=max_distance,
        min_duration=min_duration,
        complete_output=complete_output,
        passthrough_cols=passthrough_cols,
        keep_col_names=keep_col_names,
        traj_cols=traj_cols,
        **kwargs
    )

    if n_jobs > 1 and len(groups) > 1:
        with Pool(processes=min(n_jobs, len(groups))) as pool:
            results = pool.map(detect, groups)
    else:
        results = [detect(group) for group in groups]

    results = [visits for visits in results if not visits.empty]
    if not results:
        columns = utils._get_empty_visit_columns(
            data.columns, complete_output, [uid] + [col for col in passthrough_cols if col != uid], traj_cols,
            keep_col_names=keep_col_names, **kwargs
        )
        return pd.DataFrame(columns=columns)

    return pd.concat(results, ignore_index=True)
