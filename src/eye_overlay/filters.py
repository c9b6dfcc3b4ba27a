from __future__ import annotations

from collections import deque
from typing import Deque, Dict, Iterator, Optional

SMOOTHING_WINDOW = 3


class MovingAverage:
    def __init__(self, window: int = SMOOTHING_WINDOW) -> None:
        if window < 1:
            raise ValueError("window must be >= 1")
        self.window = int(window)
        self._values: Deque[float] = deque(maxlen=self.window)
        self._mean = 0.0

    def push(self, value: float) -> float:
        self._values.append(float(value))
        self._mean = sum(self._values) / len(self._values)
        return self._mean

    @property
    def mean(self) -> float:
        return self._mean

    @property
    def values(self) -> tuple[float, ...]:
        return tuple(self._values)

    def __len__(self) -> int:
        return len(self._values)


class SmoothingFilter:
    """Per-channel moving average.

    Each named channel keeps its own bounded window, created on first push.
    Partial windows average whatever they hold, so the first push returns the
    value unchanged.
    """

    def __init__(self, window: int = SMOOTHING_WINDOW) -> None:
        if window < 1:
            raise ValueError("window must be >= 1")
        self.window = int(window)
        self._channels: Dict[str, MovingAverage] = {}

    def push(self, channel: str, value: float) -> float:
        average = self._channels.get(channel)
        if average is None:
            average = MovingAverage(self.window)
            self._channels[channel] = average
        return average.push(value)

    def channel(self, name: str) -> Optional[MovingAverage]:
        return self._channels.get(name)

    def reset(self) -> None:
        self._channels.clear()

    def __iter__(self) -> Iterator[str]:
        return iter(self._channels)

    def __len__(self) -> int:
        return len(self._channels)
