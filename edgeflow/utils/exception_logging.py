"""
Utility functions for exception logging that never raise themselves.

Proxy failures end up in log lines and in error payloads, so formatting an
exception must not be able to turn a handled failure into a new one.
"""

import logging


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ or __repr__ might fail.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            try:
                return f"<{type(obj).__name__} object (string conversion failed)>"
            except Exception:
                return "<object (all string conversions failed)>"


def _safe_get_exceptions(exception_group) -> list:
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def _sub_exceptions(exception) -> list:
    """Members of an exception group, or an empty list for anything else."""
    try:
        if exception is not None and hasattr(exception, "exceptions"):
            return _safe_get_exceptions(exception)
    except Exception:
        pass
    return []


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception, including every sub-exception of an exception group.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]", "[Interceptor]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        safe_exception_str = "None" if exception is None else _safe_str(exception)
        sub_exceptions = _sub_exceptions(exception)

        if sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: {safe_exception_str}",
            )
            for i, sub_exc in enumerate(sub_exceptions):
                try:
                    logger.log(
                        level,
                        f"{safe_prefix} Sub-exception {i+1}: {type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                        exc_info=sub_exc,
                    )
                except Exception:
                    continue
            return

        try:
            logger.log(
                level,
                f"{safe_prefix} Exception: {safe_exception_str}",
                exc_info=exception if exception is not None else False,
            )
        except Exception:
            logger.log(level, f"{safe_prefix} Exception: {safe_exception_str}")
    except Exception:
        try:
            if logger is not None:
                logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            pass


def format_exception_message(exception: BaseException) -> str:
    """
    Format an exception message, including sub-exceptions for exception groups.
    Never raises.
    """
    try:
        if exception is None:
            return "None"
        sub_exceptions = _sub_exceptions(exception)
        if not sub_exceptions:
            return _safe_str(exception)
        parts = []
        for sub_exc in sub_exceptions:
            try:
                parts.append(f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}")
            except Exception:
                parts.append("(formatting failed)")
        return f"{_safe_str(exception)} (Sub-exceptions: {'; '.join(parts)})"
    except Exception:
        try:
            return f"<{type(exception).__name__} (formatting failed)>"
        except Exception:
            return "<exception (all formatting failed)>"
