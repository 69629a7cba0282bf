DEFAULT_SCHEMA = {
    "user_id": "user_id",
    "datetime": "datetime",
    "start_datetime": "start_datetime",
    "end_datetime": "end_datetime",
    "timestamp": "timestamp",
    "start_timestamp": "start_timestamp",
    "end_timestamp": "end_timestamp",
    "x": "x",
    "y": "y",
    "tz_offset": "tz_offset",
    "duration": "duration"}

# field order of a headerless csv: id,time,x,y
DEFAULT_CSV_COLUMNS = ["user_id", "timestamp", "x", "y"]

DEFAULT_MAX_DISTANCE = 2.0
DEFAULT_MIN_DURATION = 1

GROUPING_STRATEGIES = ("contiguous", "partition")

BAD_ROW_POLICIES = ("raise", "skip")
