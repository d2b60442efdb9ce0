from .sink import (
    ActivitySink,
    CompositeActivitySink,
    LoggingActivitySink,
    SqliteActivitySink,
)

__all__ = [
    "ActivitySink",
    "CompositeActivitySink",
    "LoggingActivitySink",
    "SqliteActivitySink",
]
