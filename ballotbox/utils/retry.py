from typing import Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")


class RetriesExhausted(Exception):
    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        super().__init__(f"gave up after {attempts} attempts: {last_error!r}")
        self.attempts = attempts
        self.last_error = last_error


def with_bounded_retry(
    fn: Callable[[], T],
    *,
    retry_on: Tuple[Type[BaseException], ...],
    attempts: int,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    Call fn until it returns, retrying only on the given exception types.
    Anything else propagates immediately. After `attempts` failures
    RetriesExhausted is raised with the last error attached.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            last_error = exc
            if on_retry is not None:
                on_retry(attempt, exc)
    raise RetriesExhausted(attempts, last_error)
