"""
Helpers for logging and describing upstream failures.

httpx transport errors frequently carry an empty message, and anyio may wrap
them in exception groups, so both helpers fall back to the exception type
and unwrap sub-exceptions.
"""

import logging


def _safe_str(obj) -> str:
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _sub_exceptions(exception) -> list:
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def format_exception_message(exception: Exception) -> str:
    """
    Describe an exception in one line, e.g. ``ConnectError: [Errno 111] ...``.

    Exception groups list their sub-exceptions. Never raises.
    """
    if exception is None:
        return "None"
    name = type(exception).__name__
    message = _safe_str(exception)
    described = f"{name}: {message}" if message else name

    subs = _sub_exceptions(exception)
    if subs:
        joined = "; ".join(format_exception_message(sub) for sub in subs)
        return f"{described} (Sub-exceptions: {joined})"
    return described


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception and each of its sub-exceptions, if it is a group.

    Tracebacks are attached at DEBUG level only; upstream failures are
    routine for an open relay.
    """
    try:
        subs = _sub_exceptions(exception)
        with_traceback = logger.isEnabledFor(logging.DEBUG)
        logger.log(
            level,
            f"{prefix} {format_exception_message(exception)}",
            exc_info=exception if with_traceback and not subs else None,
        )
        for i, sub in enumerate(subs):
            logger.log(
                level,
                f"{prefix} Sub-exception {i + 1}: {format_exception_message(sub)}",
                exc_info=sub if with_traceback else None,
            )
    except Exception:
        try:
            logger.log(logging.ERROR, f"{prefix} Exception logging failed")
        except Exception:
            pass
