import warnings

import geopandas as gpd
import pandas as pd
from pandas.api.types import is_datetime64_any_dtype, is_numeric_dtype

import staypoints.io.base as loader
from staypoints import constants


def _is_chronological(times):
    """True when `times` never decreases."""
    return times.is_monotonic_increasing

def _time_column(data, traj_cols):
    """Name of a directly comparable time column of `data`, or None."""
    for key in ['timestamp', 'datetime']:
        col = traj_cols[key]
        if col in data.columns and (is_numeric_dtype(data[col]) or is_datetime64_any_dtype(data[col])):
            return col
    return None

def _contiguous_runs(uid_col):
    """Run index per row; it increments whenever the identifier changes."""
    return (uid_col != uid_col.shift()).cumsum()

def group_pings(data, strategy='contiguous', traj_cols=None, **kwargs):
    """
    Split a trajectory table into per-user groups of consecutive pings.

    Parameters
    ----------
    data : pd.DataFrame or gpd.GeoDataFrame
        Pings of one or more users. Each user's pings are expected in
        chronological order.
    strategy : {'contiguous', 'partition'}
        'contiguous' starts a new group whenever the user_id changes from one
        row to the next, so every group is a maximal run of equal ids.
        'partition' collects all rows of each user_id into one group, in order
        of first appearance, for data where users are interleaved.
    traj_cols : dict, optional
        Column-name overrides (only 'user_id' and the time column are used).

    Returns
    -------
    list of pd.DataFrame
        Non-empty groups in input order. Empty input gives an empty list and
        data without a user_id column is a single group.
    """
    if not isinstance(data, (pd.DataFrame, gpd.GeoDataFrame)):
        raise TypeError("Input 'data' must be a pandas DataFrame or GeoDataFrame.")
    if strategy not in constants.GROUPING_STRATEGIES:
        raise ValueError(f"strategy must be one of {constants.GROUPING_STRATEGIES}, got {strategy!r}.")
    if data.empty:
        return []

    traj_cols = loader._parse_traj_cols(data.columns, traj_cols, kwargs, warn=False)
    uid = traj_cols['user_id']

    if uid not in data.columns:
        groups = [data]
    elif strategy == 'contiguous':
        runs = _contiguous_runs(data[uid])
        groups = [grp for _, grp in data.groupby(runs.to_numpy(), sort=False)]
        n_users = data[uid].nunique(dropna=False)
        if len(groups) > n_users:
            warnings.warn(
                f"Found {len(groups)} runs for {n_users} distinct '{uid}' values; some users' pings are not contiguous "
                "and will be split into separate groups. Sort the data by user or use strategy='partition'."
            )
    else:
        groups = [grp for _, grp in data.groupby(uid, sort=False, dropna=False)]

    time_col = _time_column(data, traj_cols)
    if time_col is not None:
        unsorted = sum(1 for grp in groups if not _is_chronological(grp[time_col]))
        if unsorted:
            warnings.warn(
                f"{unsorted} group(s) are not in chronological order by '{time_col}'. "
                "Visits will still be computed but may be meaningless; sort each user's pings by time."
            )

    return groups
