import time


def now_seconds() -> int:
    """Current epoch time in whole seconds, the unit every cache timestamp uses."""
    return int(time.time())
