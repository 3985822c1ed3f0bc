import logging
from typing import Any, Callable, Optional

log = logging.getLogger("expiringmap.quietly")


def run_quietly(action: Optional[Callable[[], Any]],
                on_error: Optional[Callable[[Exception], None]] = None) -> bool:
    """
    Run `action`, handing any exception to `on_error` instead of raising.
    Returns True when the action completed without error.
    """
    if action is None:
        return True
    try:
        action()
        return True
    except Exception as e:
        if on_error is not None:
            on_error(e)
        return False


def close_quietly(closeable: Any) -> None:
    if closeable is None:
        return
    try:
        closeable.close()
    except Exception:
        log.debug("close failed", exc_info=True)
