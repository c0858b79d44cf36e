"""Bound on model/tool round trips within a single user turn."""

DEFAULT_MAX_ITERATIONS = 50


class IterationGovernor:
    """Counts completed tool batches and reports when the cap is reached.

    The session asks the human whether to keep going once ``exhausted`` is
    true; a yes calls ``reset()``.
    """

    def __init__(self, limit: int = DEFAULT_MAX_ITERATIONS):
        if limit < 1:
            raise ValueError(f"max iterations must be at least 1, got {limit}")
        self.limit = limit
        self.count = 0

    def reset(self) -> None:
        self.count = 0

    def record_iteration(self) -> None:
        self.count += 1

    @property
    def exhausted(self) -> bool:
        return self.count >= self.limit
