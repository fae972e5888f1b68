"""Rest countdown between sets."""
import logging

logger = logging.getLogger(__name__)

MIN_REST_SECONDS = 10


class RestCountdown:
    """Counts down from ``total_seconds`` to zero, one tick per second.

    Pure timing: it never touches persistence. The owner calls :meth:`tick`
    once per second and checks :attr:`is_done`.
    """

    def __init__(self, total_seconds: int):
        if total_seconds < 0:
            raise ValueError("Rest duration cannot be negative")
        self.total = int(total_seconds)
        self.remaining = int(total_seconds)
        self.is_running = self.remaining > 0

    @property
    def is_done(self) -> bool:
        return self.remaining <= 0

    @property
    def progress(self) -> float:
        """Percentage of the rest already elapsed (0-100)."""
        if self.total <= 0:
            return 100.0
        return (self.total - self.remaining) / self.total * 100

    def tick(self, seconds: int = 1) -> bool:
        """Advance the countdown. Returns True when it has reached zero."""
        if seconds < 0:
            raise ValueError("Cannot tick backwards")
        if self.is_running:
            self.remaining = max(0, self.remaining - seconds)
            if self.remaining == 0:
                self.is_running = False
                logger.debug("Rest countdown finished (%ss)", self.total)
        return self.is_done

    def skip(self) -> None:
        self.remaining = 0
        self.is_running = False

    def adjust(self, delta_seconds: int) -> int:
        """Change the rest length by ``delta_seconds``, never below 10s.

        The remaining time restarts from the new total.
        """
        self.total = max(MIN_REST_SECONDS, self.total + delta_seconds)
        self.remaining = self.total
        self.is_running = True
        return self.total
