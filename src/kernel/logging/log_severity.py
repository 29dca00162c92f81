from enum import Enum


class LogSeverity(Enum):
    """
    Semantic severity level for kernel log entries.

    Values are ordered so that filtering can compare them directly.
    """

    TRACE = 5       # Frame-level transport detail
    DEBUG = 10      # Developer-focused diagnostic information
    INFO = 20       # Normal kernel operation
    WARNING = 30    # Unexpected but recoverable condition
    ERROR = 40      # Request failed, kernel continued
    CRITICAL = 50   # Kernel is about to die

    @classmethod
    def from_name(cls, name: str) -> "LogSeverity":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown log severity: {name!r}") from None
