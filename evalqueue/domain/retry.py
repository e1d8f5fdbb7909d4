import random

def calculate_retry_delay(
    retry_count: int,
    base_delay_seconds: float = 30,
    max_delay_seconds: float = 3600,
    backoff: bool = False,
    jitter: bool = False
) -> float:
    """
    Calculates how long a failed evaluation waits before it is re-queued.

    Formula:
        flat:     delay = base
        backoff:  delay = min(base * (2 ^ retry_count), max_delay)
        if jitter:
            delay = delay + random_uniform(0, 0.1 * delay)

    Args:
        retry_count: Retries already performed for the job (0 before the
                     first retry).
        backoff: When False (the queue default) every retry waits the same
                 fixed delay.

    Returns:
        float: Delay in seconds.
    """
    if retry_count < 0:
        retry_count = 0

    delay = float(base_delay_seconds)

    if backoff:
        # 2^20 * base already exceeds any sane max_delay
        safe_count = min(retry_count, 20)
        delay = min(base_delay_seconds * (2 ** safe_count), max_delay_seconds)

    if jitter:
        # Up to 10% jitter to avoid a thundering herd of re-queues
        delay += random.uniform(0, delay * 0.1)

    return delay
