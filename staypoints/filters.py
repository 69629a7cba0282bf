import warnings

import numpy as np
import pandas as pd
from pandas.api.types import is_integer_dtype

import staypoints.io.base as loader

_EPOCH = pd.Timestamp(0)
_EPOCH_UTC = pd.Timestamp(0, tz="UTC")
_ONE_SECOND = pd.Timedelta(seconds=1)


def to_timestamp(datetime, tz_offset=None):
    """
    Convert a datetime series into UNIX timestamps (seconds).

    Parameters
    ----------
    datetime : pd.Series
        datetime64 (naive or aware), ISO strings, or boxed pd.Timestamp objects.
    tz_offset : pd.Series, optional
        UTC offsets in seconds for timezone-naive local datetimes.

    Returns
    -------
    pd.Series
        UNIX timestamps as int64 values (seconds since epoch).
    """
    if not (
        pd.api.types.is_datetime64_any_dtype(datetime) or
        pd.api.types.is_string_dtype(datetime) or
        (pd.api.types.is_object_dtype(datetime) and loader._is_series_of_timestamps(datetime))
    ):
        raise TypeError(
            f"Input must be of type datetime64, string, or an array of Timestamp objects, "
            f"but it is of type {datetime.dtype}."
        )

    if tz_offset is not None and not is_integer_dtype(tz_offset):
        tz_offset = tz_offset.astype('int64')

    if isinstance(datetime.dtype, pd.DatetimeTZDtype):
        return ((datetime - _EPOCH_UTC) // _ONE_SECOND).astype('int64')

    # datetime without timezone
    elif pd.api.types.is_datetime64_dtype(datetime):
        seconds = ((datetime - _EPOCH) // _ONE_SECOND).astype('int64')
        if tz_offset is not None:
            return seconds - tz_offset
        warnings.warn(
            "The input is timezone-naive. UTC will be assumed. "
            "Consider localizing to a timezone or passing a timezone offset column.")
        return seconds

    # datetime as string
    elif pd.api.types.is_string_dtype(datetime):
        parsed = pd.to_datetime(datetime, errors="coerce", utc=True)
        seconds = ((parsed - _EPOCH_UTC) // _ONE_SECOND).astype('int64')

        # contains timezone e.g. '2024-01-01 12:29:00-02:00'
        if datetime.str.contains(r'(?:Z|[+\-]\d{2}:\d{2})$', regex=True, na=False).any():
            return seconds
        if tz_offset is not None and not tz_offset.empty:
            return seconds - tz_offset
        warnings.warn(
            "The input is timezone-naive. UTC will be assumed. "
            "Consider localizing to a timezone or passing a timezone offset column.")
        return seconds

    # series of pandas.Timestamp objects, possibly with mixed timezones
    else:
        f = np.frompyfunc(lambda x: int(x.timestamp()), 1, 1)
        return pd.Series(f(datetime.values).astype("int64"), index=datetime.index)
