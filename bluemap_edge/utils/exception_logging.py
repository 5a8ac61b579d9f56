"""
Utility functions for logging upstream failures with enough detail to diagnose them.

httpx wraps the transport errors it raises (connection refused, resolver
failures, resets) around the underlying OSError, and anyio may deliver them
inside exception groups. The helpers here unwrap both so the log line names the
real cause, and never raise themselves.
"""

import logging
from typing import List


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
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _safe_get_exceptions(exception_group) -> list:
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def _describe(exception: BaseException) -> str:
    text = _safe_str(exception)
    name = type(exception).__name__
    return f"{name}: {text}" if text else name


def _cause_chain(exception: BaseException, limit: int = 5) -> List[BaseException]:
    """Return the explicit/implicit causes of an exception, innermost last."""
    chain = []
    seen = {id(exception)}
    current = exception
    while len(chain) < limit:
        current = current.__cause__ or current.__context__
        if current is None or id(current) in seen:
            break
        seen.add(id(current))
        chain.append(current)
    return chain


def format_exception_message(exception: BaseException) -> str:
    """
    Format an exception including its causes and, for exception groups, its sub-exceptions.

    Args:
        exception: The exception to format

    Returns:
        A single line describing the exception
    """
    try:
        if exception is None:
            return "None"

        message = _describe(exception)

        causes = _cause_chain(exception)
        if causes:
            message += " (caused by " + " <- ".join(_describe(c) for c in causes) + ")"

        sub_exceptions = (
            _safe_get_exceptions(exception) if hasattr(exception, "exceptions") else []
        )
        if sub_exceptions:
            message += (
                " (Sub-exceptions: "
                + "; ".join(format_exception_message(sub) for sub in sub_exceptions)
                + ")"
            )
        return message
    except Exception:
        try:
            return f"<{type(exception).__name__} (formatting failed)>"
        except Exception:
            return "<exception (all formatting failed)>"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its cause chain on a single line.

    The traceback is only attached at DEBUG verbosity; an unreachable live
    server is an operational condition, not a bug.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[LiveData]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        logger.log(
            level,
            f"{safe_prefix} {format_exception_message(exception)}",
            exc_info=exception if logger.isEnabledFor(logging.DEBUG) else None,
        )
    except Exception:
        try:
            logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            pass
