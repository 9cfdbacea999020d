"""Rolling per-channel telemetry windows."""

from collections import deque
from collections.abc import Iterator
from datetime import datetime

from lungua.config import InferenceConfig
from lungua.domain.models import Channel, Sample

DEFAULT_WINDOW_SIZE = 150


class TelemetryWindow:
    """
    Fixed-capacity FIFO of samples for one channel.

    Ingestion order is trusted: samples are never reordered by timestamp.
    """

    def __init__(self, channel: Channel, capacity: int = DEFAULT_WINDOW_SIZE) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.channel = channel
        self.capacity = capacity
        self._samples: deque[Sample] = deque(maxlen=capacity)

    def append(self, sample: Sample) -> None:
        if sample.channel is not self.channel:
            raise ValueError(
                f"Sample for {sample.channel.value} pushed to {self.channel.value} window"
            )
        self._samples.append(sample)

    def latest(self) -> Sample | None:
        """Most recent sample, or None when the window holds no data."""
        return self._samples[-1] if self._samples else None

    def values(self) -> list[float]:
        return [s.value for s in self._samples]

    def snapshot(self) -> list[Sample]:
        return list(self._samples)

    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(list(self._samples))


class TelemetryBuffers:
    """One window per channel, merged by most recent value at read time."""

    def __init__(
        self, capacity: int = DEFAULT_WINDOW_SIZE, baseline: InferenceConfig | None = None
    ) -> None:
        baseline = baseline or InferenceConfig()
        self.windows = {channel: TelemetryWindow(channel, capacity) for channel in Channel}
        self._defaults = {
            Channel.HEART_RATE: baseline.heart_rate_mean,
            Channel.AIRFLOW: baseline.airflow_mean,
        }

    def record(self, channel: Channel, value: float, timestamp: datetime | None = None) -> Sample:
        sample = (
            Sample(channel=channel, value=value)
            if timestamp is None
            else Sample(channel=channel, value=value, timestamp=timestamp)
        )
        self.windows[channel].append(sample)
        return sample

    def latest_value(self, channel: Channel) -> float:
        """Newest value on ``channel``, or its baseline when nothing has arrived yet."""
        sample = self.windows[channel].latest()
        return sample.value if sample is not None else self._defaults[channel]

    def clear(self) -> None:
        for window in self.windows.values():
            window.clear()

    def __getitem__(self, channel: Channel) -> TelemetryWindow:
        return self.windows[channel]
