"""Process exit statuses.

Every fatal failure mode maps to exactly one status so operators can script on
it. The numbers are stable and must never be reused for a different meaning.
"""

from enum import IntEnum


class ExitStatus(IntEnum):
    OK = 0
    INVALID_COMMAND_LINE_ARGS = 1
    INVALID_SINK_CONFIG = 2
    LOG_FILE_READ_ERROR = 3
    METADATA_CONFIGURATION_ERROR = 4
    SINK_RUNTIME_ERROR = 5
    LOG_CONFIGURATION_ERROR = 6
    LOG_FILE_NOT_FOUND = 7
    METADATA_FORMAT_ERROR = 8
    UNKNOWN = 9
    CONFIG_FILE_NOT_FOUND = 10
    CONFIG_FILE_PARSE_ERROR = 11
    METADATA_UNAVAILABLE = 12


__all__ = ["ExitStatus"]
