from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


FindingStatus = Literal["PASS", "WARN", "FAIL", "INFO"]
Phase = Literal["Pending", "Running", "Completed", "Failed"]
ConditionStatus = Literal["True", "False", "Unknown"]
ReportFormat = Literal["json", "yaml", "html"]

STATUS_PASS: FindingStatus = "PASS"
STATUS_WARN: FindingStatus = "WARN"
STATUS_FAIL: FindingStatus = "FAIL"
STATUS_INFO: FindingStatus = "INFO"

PHASE_PENDING: Phase = "Pending"
PHASE_RUNNING: Phase = "Running"
PHASE_COMPLETED: Phase = "Completed"
PHASE_FAILED: Phase = "Failed"

PHASES = (PHASE_PENDING, PHASE_RUNNING, PHASE_COMPLETED, PHASE_FAILED)


class _Model(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Finding(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    validator: str
    category: str
    resource: Optional[str] = None
    namespace: Optional[str] = None
    status: FindingStatus
    title: str
    description: str
    impact: Optional[str] = None
    recommendation: Optional[str] = None
    references: List[str] = Field(default_factory=list)


class ClusterInfo(_Model):
    cluster_id: str = ""
    cluster_version: str = ""
    platform: str = ""
    channel: str = ""
    node_count: int = 0
    control_plane_nodes: int = 0
    worker_nodes: int = 0


class AssessmentSummary(_Model):
    total_checks: int = 0
    pass_count: int = 0
    warn_count: int = 0
    fail_count: int = 0
    info_count: int = 0

    # None (not zero) when there were no checks
    score: Optional[int] = Field(default=None, ge=0, le=100)
    profile_used: str = ""


class Condition(_Model):
    type: str
    status: ConditionStatus
    last_transition_time: datetime
    reason: str
    message: str = ""


class ReportStorageSpec(_Model):
    enabled: bool = False
    formats: List[ReportFormat] = Field(default_factory=lambda: ["json"])

    # base name for stored artifacts; defaults to <assessment>-report
    name: str = ""


class AssessmentSpec(_Model):
    schedule: str = ""
    profile: str = "production"
    validators: List[str] = Field(default_factory=list)
    suspend: bool = False

    # kept as a plain string: unknown values disable filtering instead of failing
    min_severity: str = ""
    report_storage: ReportStorageSpec = Field(default_factory=ReportStorageSpec)


class AssessmentStatus(_Model):
    phase: Phase = PHASE_PENDING
    last_run_time: Optional[datetime] = None
    next_run_time: Optional[datetime] = None
    cluster_info: ClusterInfo = Field(default_factory=ClusterInfo)
    summary: AssessmentSummary = Field(default_factory=AssessmentSummary)
    findings: List[Finding] = Field(default_factory=list)
    report_name: str = ""
    message: str = ""
    conditions: List[Condition] = Field(default_factory=list)


class Assessment(_Model):
    name: str = Field(min_length=1, max_length=253)

    # owned by the store; bumped on every successful status write
    resource_version: int = 0

    spec: AssessmentSpec = Field(default_factory=AssessmentSpec)
    status: AssessmentStatus = Field(default_factory=AssessmentStatus)

    @property
    def scheduled(self) -> bool:
        return bool(self.spec.schedule.strip())
