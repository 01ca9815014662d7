"""
Assessment metrics.

The reconciler reports through the `MetricsSink` protocol. Recording is
fire-and-forget: the reconciler logs and ignores any sink failure.
"""

from __future__ import annotations

from typing import Dict, Optional, Protocol

from prometheus_client import CollectorRegistry, Gauge

STATUSES = ("PASS", "WARN", "FAIL", "INFO")


class MetricsSink(Protocol):
    def record_assessment(
        self,
        name: str,
        profile: str,
        score: int,
        pass_count: int,
        warn_count: int,
        fail_count: int,
        info_count: int,
        timestamp: float,
        duration_seconds: float,
    ) -> None:
        ...

    def record_cluster_info(self, cluster_id: str, cluster_version: str, platform: str, channel: str) -> None:
        ...

    def record_validator(self, name: str, validator: str, counts: Dict[str, int]) -> None:
        ...

    def record_category(self, name: str, category: str, counts: Dict[str, int]) -> None:
        ...


class NullMetricsSink:
    def record_assessment(self, *args, **kwargs) -> None:
        pass

    def record_cluster_info(self, *args, **kwargs) -> None:
        pass

    def record_validator(self, *args, **kwargs) -> None:
        pass

    def record_category(self, *args, **kwargs) -> None:
        pass


class PrometheusMetricsSink:
    """Gauges named after the cluster_assessment_* series the operator has always exported."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.score = Gauge(
            "cluster_assessment_score",
            "Overall cluster assessment score (0-100)",
            ["assessment_name", "profile"],
            registry=self.registry,
        )
        self.findings_total = Gauge(
            "cluster_assessment_findings_total",
            "Total number of findings by status",
            ["assessment_name", "status"],
            registry=self.registry,
        )
        self.findings_by_category = Gauge(
            "cluster_assessment_findings_by_category",
            "Number of findings by category and status",
            ["assessment_name", "category", "status"],
            registry=self.registry,
        )
        self.last_run_timestamp = Gauge(
            "cluster_assessment_last_run_timestamp",
            "Unix timestamp of the last assessment run",
            ["assessment_name"],
            registry=self.registry,
        )
        self.duration = Gauge(
            "cluster_assessment_duration_seconds",
            "Duration of the last assessment in seconds",
            ["assessment_name"],
            registry=self.registry,
        )
        self.validator_findings = Gauge(
            "cluster_assessment_validator_findings",
            "Number of findings per validator",
            ["assessment_name", "validator", "status"],
            registry=self.registry,
        )
        self.cluster_info = Gauge(
            "cluster_assessment_cluster_info",
            "Cluster information (always 1, use labels for metadata)",
            ["cluster_id", "cluster_version", "platform", "channel"],
            registry=self.registry,
        )

    def record_assessment(
        self,
        name: str,
        profile: str,
        score: int,
        pass_count: int,
        warn_count: int,
        fail_count: int,
        info_count: int,
        timestamp: float,
        duration_seconds: float,
    ) -> None:
        self.score.labels(name, profile).set(score)
        for status, count in zip(STATUSES, (pass_count, warn_count, fail_count, info_count)):
            self.findings_total.labels(name, status).set(count)
        self.last_run_timestamp.labels(name).set(timestamp)
        self.duration.labels(name).set(duration_seconds)

    def record_cluster_info(self, cluster_id: str, cluster_version: str, platform: str, channel: str) -> None:
        self.cluster_info.labels(cluster_id, cluster_version, platform, channel).set(1)

    def record_validator(self, name: str, validator: str, counts: Dict[str, int]) -> None:
        for status in STATUSES:
            self.validator_findings.labels(name, validator, status).set(counts.get(status, 0))

    def record_category(self, name: str, category: str, counts: Dict[str, int]) -> None:
        for status in STATUSES:
            self.findings_by_category.labels(name, category, status).set(counts.get(status, 0))
