"""
Unit tests for core/assessment/report.py

Tests cover:
- Report structure and grouping
- JSON / YAML / HTML encoders
- HTML escaping and reference link safety
- Artifact naming and storage
"""
import json
from datetime import datetime, timezone

import yaml

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.assessment.models import Assessment, AssessmentSpec, Finding, ReportStorageSpec
from core.assessment.report import (
    InMemoryReportStore,
    ReportAssembler,
    artifact_name,
    build_report,
    encode_html,
)
from core.assessment.scoring import calculate_summary

GENERATED = datetime(2026, 3, 1, 2, 30, 15, tzinfo=timezone.utc)


def make_finding(id, status, **extra):
    base = dict(
        id=id,
        validator="nodes",
        category="Infrastructure",
        status=status,
        title=f"Title {id}",
        description=f"Description {id}",
    )
    base.update(extra)
    return Finding(**base)


def assessed(findings, name="weekly", report_name=""):
    a = Assessment(
        name=name,
        spec=AssessmentSpec(report_storage=ReportStorageSpec(enabled=True, name=report_name)),
    )
    a.status.findings = list(findings)
    a.status.summary = calculate_summary(findings, "production")
    a.status.cluster_info.cluster_id = "abc-123"
    return a


FINDINGS = [
    make_finding("ok", "PASS", recommendation="nothing to do"),
    make_finding("bad", "FAIL", recommendation="fix it", category="Security", validator="rbac"),
    make_finding("meh", "WARN"),
]


class TestBuildReport:
    """Test the report document built from a completed assessment"""

    def test_metadata_and_groups(self):
        """Metadata comes from the assessment; findings are grouped by category and status"""
        report = build_report(assessed(FINDINGS), "1.2.3", GENERATED)
        assert report.metadata.assessment_name == "weekly"
        assert report.metadata.profile == "production"
        assert report.metadata.operator_version == "1.2.3"
        assert report.metadata.generated_at == GENERATED
        assert sorted(report.findings_by_category) == ["Infrastructure", "Security"]
        assert [f.id for f in report.findings_by_status["FAIL"]] == ["bad"]
        assert len(report.findings) == 3


class TestEncoders:
    """Test report encoding and format selection"""

    def test_json_is_camel_case(self):
        """JSON keys use the camelCase wire names"""
        artifacts = ReportAssembler("1.0.0").assemble(assessed(FINDINGS), ["json"], GENERATED)
        doc = json.loads(artifacts["report.json"])
        assert doc["metadata"]["assessmentName"] == "weekly"
        assert doc["clusterInfo"]["clusterId"] == "abc-123"
        assert doc["summary"]["totalChecks"] == 3
        assert doc["findingsByStatus"]["FAIL"][0]["id"] == "bad"

    def test_yaml_matches_json(self):
        """YAML and JSON carry the same document"""
        artifacts = ReportAssembler("1.0.0").assemble(assessed(FINDINGS), ["json", "yaml"], GENERATED)
        assert yaml.safe_load(artifacts["report.yaml"]) == json.loads(artifacts["report.json"])

    def test_unknown_formats_skipped(self):
        """Unsupported formats are dropped; format names are case-insensitive"""
        artifacts = ReportAssembler().assemble(assessed(FINDINGS), ["pdf", "HTML"], GENERATED)
        assert list(artifacts) == ["report.html"]

    def test_default_format_is_json(self):
        """No formats requested = JSON only"""
        assert list(ReportAssembler().assemble(assessed(FINDINGS), None, GENERATED)) == ["report.json"]


class TestHTML:
    """Test the HTML report, including escaping of cluster-supplied text"""

    def render(self, findings):
        return encode_html(build_report(assessed(findings), "1.0.0", GENERATED)).decode("utf-8")

    def test_worst_first(self):
        """Findings are listed FAIL, then WARN, then PASS"""
        html = self.render(FINDINGS)
        assert html.index("Title bad") < html.index("Title meh") < html.index("Title ok")

    def test_recommendations_only_for_fail_and_warn(self):
        """Passing findings do not show a recommendation"""
        html = self.render(FINDINGS)
        assert "fix it" in html
        assert "nothing to do" not in html

    def test_all_text_is_escaped(self):
        """Titles, descriptions and recommendations never inject markup"""
        evil = make_finding(
            "x",
            "FAIL",
            title="<script>alert(1)</script>",
            description='"><img src=x onerror=alert(1)>',
            recommendation="<b>bold</b>",
        )
        html = self.render([evil])
        assert "<script>" not in html
        assert "<img" not in html
        assert "<b>bold" not in html
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html

    def test_only_http_references_become_links(self):
        """Only http(s) references are rendered as links; others stay as text"""
        f = make_finding(
            "x",
            "WARN",
            references=[
                "https://docs.example.com/rbac",
                "javascript:alert(1)",
                "data:text/html,<script>alert(1)</script>",
            ],
        )
        html = self.render([f])
        assert '<a href="https://docs.example.com/rbac">' in html
        assert 'href="javascript:' not in html
        assert 'href="data:' not in html
        assert "javascript:alert(1)" in html

    def test_long_link_text_truncated(self):
        """Long link text is cut to 47 characters plus an ellipsis"""
        url = "https://docs.example.com/" + "a" * 80
        html = self.render([make_finding("x", "WARN", references=[url])])
        assert f'href="{url}"' in html
        assert f">{url[:47]}...</a>" in html

    def test_score_band_shown(self):
        """The header shows the score and its band"""
        html = self.render([make_finding("a", "PASS")])
        assert "Score: 100% (Healthy)" in html


class TestArtifacts:
    """Test artifact naming and the in-memory report store"""

    def test_default_name(self):
        """Default name = <assessment>-report-<timestamp>"""
        assert artifact_name(assessed([]), GENERATED) == "weekly-report-20260301-023015"

    def test_custom_name(self):
        """A configured report name replaces the default prefix"""
        assert artifact_name(assessed([], report_name="nightly"), GENERATED) == "nightly-20260301-023015"

    def test_in_memory_store(self):
        """Saved artifacts are kept per assessment"""
        store = InMemoryReportStore()
        store.save("weekly", "weekly-report-1", {"report.json": b"{}"})
        store.save("other", "other-report-1", {"report.json": b"{}"})
        assert store.for_assessment("weekly") == ["weekly-report-1"]
        assert store.reports["weekly-report-1"]["report.json"] == b"{}"
