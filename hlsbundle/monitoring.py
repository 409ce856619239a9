from __future__ import annotations

from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, start_http_server


class Metrics:
    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else REGISTRY
        self.files_processed = Counter(
            "mkhls_files_processed", "Number of input files processed", ["status"], registry=self.registry
        )
        self.transcode_seconds = Histogram(
            "mkhls_transcode_seconds", "Wall time of one ffmpeg run (s)", registry=self.registry
        )
        self.progress_percent = Gauge(
            "mkhls_transcode_progress_percent", "Progress of the current ffmpeg run", registry=self.registry
        )

    def start_server(self, port: int) -> None:
        start_http_server(port, registry=self.registry)

    def file_done(self, success: bool) -> None:
        self.files_processed.labels(status="ok" if success else "failed").inc()

    def observe_transcode_time(self, duration: float) -> None:
        self.transcode_seconds.observe(duration)

    def set_progress(self, percent: float) -> None:
        self.progress_percent.set(percent)


metrics = Metrics()
