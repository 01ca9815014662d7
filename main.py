import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field, field_validator

from config import Settings, settings
from core.assessment.cluster import ClusterReader, FakeClusterReader, KubernetesClusterReader
from core.assessment.metrics import PrometheusMetricsSink
from core.assessment.models import Assessment, AssessmentSpec
from core.assessment.profiles import get_profile, list_profiles
from core.assessment.reconciler import Reconciler
from core.assessment.report import InMemoryReportStore, PostgresReportStore, ReportAssembler
from core.assessment.store import (
    AssessmentExistsError,
    AssessmentNotFoundError,
    AssessmentStore,
    InMemoryAssessmentStore,
    PostgresAssessmentStore,
)
from core.assessment.validator import Registry, load_default_validators
from core.assessment.workqueue import WorkQueue

# -------------------------------------------------------------------
# Logging
# -------------------------------------------------------------------

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger("assessment")

SERVICE_NAME = "Cluster Assessment Service"

logger.info("Database storage: %s", "ENABLED" if settings.database_enabled else "DISABLED")
logger.info("Cluster access: %s", "ENABLED" if settings.KUBE_ENABLED else "DISABLED")

# -------------------------------------------------------------------
# FastAPI App
# -------------------------------------------------------------------

app = FastAPI(
    title=SERVICE_NAME,
    version=settings.OPERATOR_VERSION,
    description="Continuously assesses a Kubernetes/OpenShift cluster against a baseline profile.",
)

# -------------------------------------------------------------------
# Runtime wiring
# -------------------------------------------------------------------


@dataclass
class Runtime:
    store: AssessmentStore
    reader: ClusterReader
    registry: Registry
    reconciler: Reconciler
    metrics: PrometheusMetricsSink
    queue: Optional[WorkQueue] = None
    pool: Any = None

    def enqueue(self, name: str) -> None:
        if self.queue is not None:
            self.queue.add(name)


runtime: Optional[Runtime] = None


def build_runtime(cfg: Settings, registry: Registry, reader: Optional[ClusterReader] = None) -> Runtime:
    pool = None
    if cfg.database_enabled:
        store = PostgresAssessmentStore.connect(cfg.DATABASE_URL, cfg.DB_POOL_MIN, cfg.DB_POOL_MAX)
        store.ensure_schema()
        pool = store.pool
        report_store = PostgresReportStore(pool)
        report_store.ensure_schema()
    else:
        store = InMemoryAssessmentStore()
        report_store = InMemoryReportStore()

    if reader is None:
        if cfg.KUBE_ENABLED:
            reader = KubernetesClusterReader.from_config(
                in_cluster=cfg.KUBE_IN_CLUSTER,
                kubeconfig=cfg.KUBECONFIG,
                context=cfg.KUBE_CONTEXT,
            )
        else:
            logger.warning("KUBE_ENABLED is false; assessments run against an empty cluster view")
            reader = FakeClusterReader()

    metrics = PrometheusMetricsSink()
    reconciler = Reconciler(
        store,
        reader,
        registry,
        report_assembler=ReportAssembler(cfg.OPERATOR_VERSION),
        report_store=report_store,
        metrics=metrics,
        status_retries=cfg.STATUS_UPDATE_RETRIES,
        sort_findings=cfg.SORT_FINDINGS,
    )
    return Runtime(
        store=store,
        reader=reader,
        registry=registry,
        reconciler=reconciler,
        metrics=metrics,
        pool=pool,
    )


def get_runtime() -> Runtime:
    if runtime is None:
        raise HTTPException(status_code=503, detail="Service is not initialized")
    return runtime


# -------------------------------------------------------------------
# Models
# -------------------------------------------------------------------


class AssessmentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=253)
    spec: AssessmentSpec = Field(default_factory=AssessmentSpec)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name is required")
        return v


def _dump(a: Assessment) -> Dict[str, Any]:
    return a.model_dump(mode="json", by_alias=True)


# -------------------------------------------------------------------
# Lifecycle
# -------------------------------------------------------------------


@app.on_event("startup")
def on_startup():
    global runtime
    logger.info("Assessment service starting up...")

    # a duplicate validator name raises here and aborts start-up
    registry = load_default_validators()
    runtime = build_runtime(settings, registry)

    queue = WorkQueue(
        runtime.reconciler.reconcile,
        workers=settings.RECONCILE_WORKERS,
        max_backoff=float(settings.MAX_ERROR_BACKOFF_SECONDS),
    )
    queue.start()
    runtime.queue = queue

    for a in runtime.store.list():
        queue.add(a.name)
    logger.info("Assessment service startup complete")


@app.on_event("shutdown")
def on_shutdown():
    global runtime
    logger.info("Assessment service shutting down...")
    if runtime is None:
        return
    if runtime.queue is not None:
        try:
            runtime.queue.shutdown()
        except Exception:
            logger.exception("Error stopping work queue")
    if runtime.pool is not None:
        try:
            runtime.pool.closeall()
        except Exception:
            logger.exception("Error closing DB pool")
    runtime = None


# -------------------------------------------------------------------
# Routes
# -------------------------------------------------------------------


@app.get("/")
def root():
    return {"status": "ok", "service": SERVICE_NAME, "version": settings.OPERATOR_VERSION}


@app.get("/health")
def health():
    rt = runtime
    return {
        "status": "healthy" if rt is not None else "starting",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "api": "operational",
            "database": "operational" if settings.database_enabled else "not_configured",
            "cluster": "operational" if settings.KUBE_ENABLED else "not_configured",
            "validators": len(rt.registry) if rt is not None else 0,
        },
    }


@app.get("/profiles")
def profiles():
    return [
        {
            "name": p.name,
            "description": p.description,
            "strictness": p.strictness,
            "thresholds": asdict(p.thresholds),
        }
        for p in map(get_profile, list_profiles())
    ]


@app.get("/validators")
def validators():
    rt = get_runtime()
    return sorted(
        ({"name": v.name, "category": v.category, "description": v.description} for v in rt.registry.list()),
        key=lambda d: d["name"],
    )


@app.post("/assessments", status_code=201)
def create_assessment(payload: AssessmentCreate):
    rt = get_runtime()
    try:
        created = rt.store.create(Assessment(name=payload.name, spec=payload.spec))
    except AssessmentExistsError:
        raise HTTPException(status_code=409, detail=f"Assessment {payload.name!r} already exists")
    logger.info("Assessment created: name=%s profile=%s schedule=%r", created.name, created.spec.profile, created.spec.schedule)
    rt.enqueue(created.name)
    return _dump(created)


@app.get("/assessments")
def list_assessments() -> List[Dict[str, Any]]:
    rt = get_runtime()
    return [_dump(a) for a in sorted(rt.store.list(), key=lambda a: a.name)]


@app.get("/assessments/{name}")
def get_assessment(name: str):
    rt = get_runtime()
    try:
        return _dump(rt.store.get(name))
    except AssessmentNotFoundError:
        raise HTTPException(status_code=404, detail=f"Assessment {name!r} not found")


@app.post("/assessments/{name}/reconcile")
def reconcile_assessment(name: str):
    rt = get_runtime()
    try:
        rt.store.get(name)
    except AssessmentNotFoundError:
        raise HTTPException(status_code=404, detail=f"Assessment {name!r} not found")

    result = rt.reconciler.reconcile(name)
    if result.requeue_after is not None:
        if rt.queue is not None:
            rt.queue.add_after(name, result.requeue_after)
    elif result.requeue:
        rt.enqueue(name)

    return {
        "result": {
            "requeue": result.requeue,
            "requeueAfterSeconds": result.requeue_after.total_seconds() if result.requeue_after is not None else None,
        },
        "assessment": _dump(rt.store.get(name)),
    }


@app.get("/metrics")
def metrics():
    rt = get_runtime()
    return Response(content=generate_latest(rt.metrics.registry), media_type=CONTENT_TYPE_LATEST)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "status_code": exc.status_code, "path": str(request.url)},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})
