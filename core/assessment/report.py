from __future__ import annotations

import html
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

import yaml
from pydantic import Field

from core.assessment.models import (
    STATUS_FAIL,
    STATUS_INFO,
    STATUS_PASS,
    STATUS_WARN,
    Assessment,
    AssessmentSummary,
    ClusterInfo,
    Finding,
    _Model,
)
from core.assessment.scoring import interpret

logger = logging.getLogger(__name__)

DEFAULT_FORMATS = ["json"]
MAX_LINK_TEXT = 50


# -----------------------------
# Report structure
# -----------------------------

class ReportMetadata(_Model):
    generated_at: datetime
    assessment_name: str
    profile: str
    operator_version: str


class Report(_Model):
    metadata: ReportMetadata
    cluster_info: ClusterInfo
    summary: AssessmentSummary
    findings: List[Finding] = Field(default_factory=list)
    findings_by_category: Dict[str, List[Finding]] = Field(default_factory=dict)
    findings_by_status: Dict[str, List[Finding]] = Field(default_factory=dict)


def build_report(assessment: Assessment, operator_version: str, generated_at: Optional[datetime] = None) -> Report:
    st = assessment.status
    report = Report(
        metadata=ReportMetadata(
            generated_at=generated_at or datetime.now(timezone.utc),
            assessment_name=assessment.name,
            profile=st.summary.profile_used or assessment.spec.profile,
            operator_version=operator_version,
        ),
        cluster_info=st.cluster_info,
        summary=st.summary,
        findings=list(st.findings),
    )
    for f in st.findings:
        report.findings_by_category.setdefault(f.category, []).append(f)
        report.findings_by_status.setdefault(f.status, []).append(f)
    return report


# -----------------------------
# Encoders
# -----------------------------

def _plain(report: Report) -> Dict[str, Any]:
    return report.model_dump(mode="json", by_alias=True)


def encode_json(report: Report) -> bytes:
    return json.dumps(_plain(report), indent=2).encode("utf-8")


def encode_yaml(report: Report) -> bytes:
    return yaml.safe_dump(_plain(report), sort_keys=False, allow_unicode=True).encode("utf-8")


def _is_safe_url(ref: str) -> bool:
    lower = ref.strip().lower()
    return lower.startswith("http://") or lower.startswith("https://")


def _truncate(url: str) -> str:
    if len(url) > MAX_LINK_TEXT:
        return url[:MAX_LINK_TEXT - 3] + "..."
    return url


def _render_reference(ref: str) -> str:
    # only http(s) becomes a link; anything else (javascript:, data:, ...) stays inert text
    if _is_safe_url(ref):
        return f'<a href="{html.escape(ref, quote=True)}">{html.escape(_truncate(ref))}</a>'
    return html.escape(ref)


_HTML_HEAD = """<!DOCTYPE html>
<html>
<head>
<meta charset="UTF-8">
<title>Cluster Assessment Report</title>
<style>
body { font-family: 'Segoe UI', Arial, sans-serif; margin: 40px; background: #f5f5f5; }
.container { max-width: 900px; margin: 0 auto; background: white; padding: 40px; }
h1, h2 { color: #003366; }
.summary-box { display: inline-block; padding: 15px 25px; margin: 5px; border-radius: 8px; color: white; text-align: center; min-width: 80px; }
.pass { background: #228B22; } .warn { background: #FFA500; } .fail { background: #DC143C; } .info { background: #4682B4; }
.finding { background: #f8f8fa; padding: 15px; margin: 10px 0; border-left: 4px solid #ccc; }
.finding.status-FAIL { border-left-color: #DC143C; } .finding.status-WARN { border-left-color: #FFA500; }
.finding.status-PASS { border-left-color: #228B22; } .finding.status-INFO { border-left-color: #4682B4; }
.finding-title { font-weight: bold; } .finding-desc { color: #555; } .finding-meta { font-size: 11px; color: #888; }
.recommendation { background: #fffaef; padding: 10px; margin-top: 10px; font-style: italic; }
.info-table td { padding: 8px; border-bottom: 1px solid #eee; }
</style>
</head>
<body>
<div class="container">
"""

# worst first
_HTML_STATUS_ORDER = [STATUS_FAIL, STATUS_WARN, STATUS_INFO, STATUS_PASS]


def encode_html(report: Report) -> bytes:
    esc = html.escape
    info = report.cluster_info
    summary = report.summary
    out: List[str] = [_HTML_HEAD]

    out.append("<h1>Cluster Assessment Report</h1>")
    out.append(f'<p style="color: #888;">Generated: {esc(report.metadata.generated_at.strftime("%B %d, %Y at %H:%M %Z"))}</p>')

    out.append('<h2>Cluster Information</h2><table class="info-table">')
    rows = [
        ("Cluster ID", info.cluster_id),
        ("Cluster Version", info.cluster_version),
        ("Platform", info.platform),
        ("Update Channel", info.channel),
        ("Total Nodes", str(info.node_count)),
        ("Control Plane Nodes", str(info.control_plane_nodes)),
        ("Worker Nodes", str(info.worker_nodes)),
        ("Assessment Profile", report.metadata.profile),
    ]
    for label, value in rows:
        out.append(f"<tr><td>{label}</td><td>{esc(value)}</td></tr>")
    out.append("</table>")

    out.append('<h2>Assessment Summary</h2><div style="margin: 20px 0;">')
    for css, label, count in (
        ("pass", STATUS_PASS, summary.pass_count),
        ("warn", STATUS_WARN, summary.warn_count),
        ("fail", STATUS_FAIL, summary.fail_count),
        ("info", STATUS_INFO, summary.info_count),
    ):
        out.append(f'<div class="summary-box {css}"><div class="count">{count}</div><div class="label">{label}</div></div>')
    out.append("</div>")
    out.append(f"<p>Total Checks: {summary.total_checks}</p>")
    if summary.score is not None:
        out.append(f"<p>Score: {summary.score}% ({interpret(summary.score)})</p>")

    out.append("<h2>Detailed Findings</h2>")
    for status in _HTML_STATUS_ORDER:
        for f in report.findings_by_status.get(status, []):
            out.append(f'<div class="finding status-{esc(f.status)}">')
            out.append(f'<div class="finding-title">[{esc(f.status)}] {esc(f.title)}</div>')
            out.append(f'<div class="finding-desc">{esc(f.description)}</div>')
            out.append(f'<div class="finding-meta">Category: {esc(f.category)} | Validator: {esc(f.validator)}</div>')
            if f.recommendation and f.status in (STATUS_FAIL, STATUS_WARN):
                out.append(f'<div class="recommendation">{esc(f.recommendation)}</div>')
            if f.references:
                refs = ", ".join(_render_reference(r) for r in f.references)
                out.append(f'<div class="finding-meta">References: {refs}</div>')
            out.append("</div>")

    out.append("</div></body></html>")
    return "\n".join(out).encode("utf-8")


ENCODERS: Dict[str, Callable[[Report], bytes]] = {
    "json": encode_json,
    "yaml": encode_yaml,
    "html": encode_html,
}

FILENAMES = {
    "json": "report.json",
    "yaml": "report.yaml",
    "html": "report.html",
}


# -----------------------------
# Assembler
# -----------------------------

def artifact_name(assessment: Assessment, now: datetime) -> str:
    """Timestamped so an earlier report is never overwritten."""
    base = assessment.spec.report_storage.name or f"{assessment.name}-report"
    return f"{base}-{now.strftime('%Y%m%d-%H%M%S')}"


class ReportAssembler:
    def __init__(self, operator_version: str = "1.0.0"):
        self.operator_version = operator_version

    def assemble(
        self,
        assessment: Assessment,
        formats: Optional[Sequence[str]] = None,
        generated_at: Optional[datetime] = None,
    ) -> Dict[str, bytes]:
        report = build_report(assessment, self.operator_version, generated_at)
        artifacts: Dict[str, bytes] = {}

        for fmt in formats or DEFAULT_FORMATS:
            fmt = fmt.strip().lower()
            encoder = ENCODERS.get(fmt)
            if encoder is None:
                logger.warning("Unknown report format, skipping: format=%s", fmt)
                continue
            try:
                artifacts[FILENAMES[fmt]] = encoder(report)
            except Exception:
                logger.exception("Failed to generate %s report (non-fatal)", fmt)
                continue
            logger.info("Generated %s report: assessment=%s", fmt, assessment.name)

        return artifacts


# -----------------------------
# Report storage
# -----------------------------

class ReportStore(Protocol):
    def save(self, assessment_name: str, artifact_name: str, artifacts: Dict[str, bytes]) -> None:
        ...


class InMemoryReportStore:
    def __init__(self):
        self._lock = threading.Lock()
        self.reports: Dict[str, Dict[str, bytes]] = {}
        self.owners: Dict[str, str] = {}

    def save(self, assessment_name: str, artifact_name: str, artifacts: Dict[str, bytes]) -> None:
        with self._lock:
            self.reports[artifact_name] = dict(artifacts)
            self.owners[artifact_name] = assessment_name

    def for_assessment(self, assessment_name: str) -> List[str]:
        with self._lock:
            return sorted(n for n, owner in self.owners.items() if owner == assessment_name)


REPORTS_DDL = """
CREATE TABLE IF NOT EXISTS assessment_reports (
  artifact_name TEXT NOT NULL,
  filename TEXT NOT NULL,
  assessment_name TEXT NOT NULL,
  content BYTEA NOT NULL,
  created_at TIMESTAMPTZ NOT NULL,
  PRIMARY KEY (artifact_name, filename)
);

CREATE INDEX IF NOT EXISTS idx_assessment_reports_assessment ON assessment_reports(assessment_name);
"""


class PostgresReportStore:
    """Stores report artifacts next to the assessments, sharing their connection pool."""

    def __init__(self, pool):
        self._pool = pool

    def ensure_schema(self) -> None:
        conn = self._pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute(REPORTS_DDL)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def save(self, assessment_name: str, artifact_name: str, artifacts: Dict[str, bytes]) -> None:
        import psycopg2

        sql = """
        INSERT INTO assessment_reports (artifact_name, filename, assessment_name, content, created_at)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (artifact_name, filename) DO UPDATE SET content = EXCLUDED.content;
        """
        now = datetime.now(timezone.utc)
        conn = self._pool.getconn()
        try:
            with conn.cursor() as cur:
                for filename, content in artifacts.items():
                    cur.execute(sql, (artifact_name, filename, assessment_name, psycopg2.Binary(content), now))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)
