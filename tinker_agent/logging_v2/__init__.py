from .debug_log import DebugLogWriter, redact

__all__ = ["DebugLogWriter", "redact"]
