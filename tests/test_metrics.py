"""
Unit tests for core/assessment/metrics.py
"""
from prometheus_client import CollectorRegistry

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.assessment.metrics import NullMetricsSink, PrometheusMetricsSink


def sample(registry, name, **labels):
    return registry.get_sample_value(name, labels)


class TestPrometheusMetricsSink:
    """Test the Prometheus gauges written after each completed assessment"""

    def test_assessment_gauges(self):
        """Score, status counts, last-run time and duration are exported per assessment"""
        reg = CollectorRegistry()
        sink = PrometheusMetricsSink(reg)
        sink.record_assessment("weekly", "production", 66, 2, 0, 1, 0, 1700000000.0, 2.5)

        assert sample(reg, "cluster_assessment_score", assessment_name="weekly", profile="production") == 66
        assert sample(reg, "cluster_assessment_findings_total", assessment_name="weekly", status="PASS") == 2
        assert sample(reg, "cluster_assessment_findings_total", assessment_name="weekly", status="FAIL") == 1
        assert sample(reg, "cluster_assessment_findings_total", assessment_name="weekly", status="WARN") == 0
        assert sample(reg, "cluster_assessment_last_run_timestamp", assessment_name="weekly") == 1700000000.0
        assert sample(reg, "cluster_assessment_duration_seconds", assessment_name="weekly") == 2.5

    def test_validator_and_category_gauges_fill_missing_statuses(self):
        """Statuses with no findings are exported as 0"""
        reg = CollectorRegistry()
        sink = PrometheusMetricsSink(reg)
        sink.record_validator("weekly", "nodes", {"FAIL": 2})
        sink.record_category("weekly", "Security", {"WARN": 1})

        assert sample(reg, "cluster_assessment_validator_findings", assessment_name="weekly", validator="nodes", status="FAIL") == 2
        assert sample(reg, "cluster_assessment_validator_findings", assessment_name="weekly", validator="nodes", status="PASS") == 0
        assert sample(reg, "cluster_assessment_findings_by_category", assessment_name="weekly", category="Security", status="WARN") == 1

    def test_cluster_info(self):
        """Cluster identity is exported as an info-style gauge"""
        reg = CollectorRegistry()
        PrometheusMetricsSink(reg).record_cluster_info("abc", "4.14.8", "AWS", "stable-4.14")
        assert sample(
            reg,
            "cluster_assessment_cluster_info",
            cluster_id="abc",
            cluster_version="4.14.8",
            platform="AWS",
            channel="stable-4.14",
        ) == 1

    def test_separate_registries_do_not_collide(self):
        """Each sink owns its registry, so several can coexist in one process"""
        PrometheusMetricsSink()
        PrometheusMetricsSink()


class TestNullMetricsSink:
    """Test the no-op sink used when metrics are disabled"""

    def test_accepts_everything(self):
        """Every recording call is accepted and ignored"""
        sink = NullMetricsSink()
        sink.record_assessment("a", "p", 0, 0, 0, 0, 0, 0.0, 0.0)
        sink.record_cluster_info("", "", "", "")
        sink.record_validator("a", "v", {})
        sink.record_category("a", "c", {})
