"""
Read-only cluster access for validators.

Validators only ever see the `ClusterReader` protocol. Objects come back as plain
dict trees (the shape the API server returns), so the same code works for core
kinds and for arbitrary custom resources. The `get_nested_*` accessors read those
trees without raising on missing keys or unexpected types.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from core.assessment.cancellation import CancellationToken, CancelledError
from core.assessment.models import ClusterInfo

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 500

LABEL_ROLE_MASTER = "node-role.kubernetes.io/master"
LABEL_ROLE_CONTROL_PLANE = "node-role.kubernetes.io/control-plane"
LABEL_ROLE_WORKER = "node-role.kubernetes.io/worker"


class ResourceNotFoundError(LookupError):
    """The object (or its kind) does not exist on the cluster."""


@dataclass(frozen=True)
class ResourceKind:
    group: str
    version: str
    kind: str
    namespaced: bool = False

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return f"{self.kind}.{self.api_version}"


NODES = ResourceKind("", "v1", "Node")
NAMESPACES = ResourceKind("", "v1", "Namespace")
PODS = ResourceKind("", "v1", "Pod", namespaced=True)
CONFIG_MAPS = ResourceKind("", "v1", "ConfigMap", namespaced=True)
CLUSTER_ROLE_BINDINGS = ResourceKind("rbac.authorization.k8s.io", "v1", "ClusterRoleBinding")
NETWORK_POLICIES = ResourceKind("networking.k8s.io", "v1", "NetworkPolicy", namespaced=True)
STORAGE_CLASSES = ResourceKind("storage.k8s.io", "v1", "StorageClass")
CLUSTER_VERSIONS = ResourceKind("config.openshift.io", "v1", "ClusterVersion")
INFRASTRUCTURES = ResourceKind("config.openshift.io", "v1", "Infrastructure")


class ClusterReader(Protocol):
    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        ...

    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        ctx: Optional[CancellationToken] = None,
    ) -> List[Dict[str, Any]]:
        ...


# -----------------------------
# Nested accessors
# -----------------------------

def get_nested(obj: Any, *path: str) -> Tuple[Any, bool]:
    cur = obj
    for key in path:
        if not isinstance(cur, dict) or key not in cur:
            return None, False
        cur = cur[key]
    return cur, True


def get_nested_string(obj: Any, *path: str, default: str = "") -> str:
    v, found = get_nested(obj, *path)
    return v if found and isinstance(v, str) else default


def get_nested_bool(obj: Any, *path: str, default: bool = False) -> bool:
    v, found = get_nested(obj, *path)
    return v if found and isinstance(v, bool) else default


def get_nested_int(obj: Any, *path: str, default: int = 0) -> int:
    v, found = get_nested(obj, *path)
    # bool is an int subclass; a flag is not a count
    if found and isinstance(v, int) and not isinstance(v, bool):
        return v
    return default


def get_nested_slice(obj: Any, *path: str) -> List[Any]:
    v, found = get_nested(obj, *path)
    return list(v) if found and isinstance(v, list) else []


def get_nested_map(obj: Any, *path: str) -> Dict[str, Any]:
    v, found = get_nested(obj, *path)
    return dict(v) if found and isinstance(v, dict) else {}


def labels_of(obj: Dict[str, Any]) -> Dict[str, Any]:
    return get_nested_map(obj, "metadata", "labels")


def name_of(obj: Dict[str, Any]) -> str:
    return get_nested_string(obj, "metadata", "name")


# -----------------------------
# Readers
# -----------------------------

class FakeClusterReader:
    """In-memory reader keyed by kind; used by tests and for dry runs without a cluster."""

    def __init__(self, objects: Optional[Dict[ResourceKind, Iterable[Dict[str, Any]]]] = None):
        self._objects: Dict[ResourceKind, List[Dict[str, Any]]] = {}
        for kind, items in (objects or {}).items():
            self._objects[kind] = [copy.deepcopy(o) for o in items]
        self.calls: List[Tuple[str, str]] = []

    def add(self, kind: ResourceKind, obj: Dict[str, Any]) -> None:
        self._objects.setdefault(kind, []).append(copy.deepcopy(obj))

    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        self.calls.append(("get", str(kind)))
        for o in self._objects.get(kind, []):
            if name_of(o) != name:
                continue
            if namespace and get_nested_string(o, "metadata", "namespace") != namespace:
                continue
            return copy.deepcopy(o)
        raise ResourceNotFoundError(f"{kind} {namespace + '/' if namespace else ''}{name} not found")

    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        ctx: Optional[CancellationToken] = None,
    ) -> List[Dict[str, Any]]:
        self.calls.append(("list", str(kind)))
        if ctx is not None:
            ctx.raise_if_cancelled()
        items = self._objects.get(kind, [])
        if namespace:
            items = [o for o in items if get_nested_string(o, "metadata", "namespace") == namespace]
        return [copy.deepcopy(o) for o in items]


class KubernetesClusterReader:
    """ClusterReader over the official `kubernetes` client's dynamic API (get/list only)."""

    def __init__(self, api_client: Any):
        from kubernetes import dynamic

        self._client = dynamic.DynamicClient(api_client)

    @classmethod
    def from_config(
        cls,
        *,
        in_cluster: bool = False,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
    ) -> "KubernetesClusterReader":
        from kubernetes import client as kube_client
        from kubernetes import config as kube_config

        if in_cluster:
            kube_config.load_incluster_config()
            api_client = kube_client.ApiClient()
        else:
            api_client = kube_config.new_client_from_config(config_file=kubeconfig, context=context)
        logger.info("Kubernetes reader configured (in_cluster=%s context=%s)", in_cluster, context)
        return cls(api_client)

    def _resource(self, kind: ResourceKind):
        from kubernetes.dynamic.exceptions import ResourceNotFoundError as DynamicKindNotFound

        try:
            return self._client.resources.get(api_version=kind.api_version, kind=kind.kind)
        except DynamicKindNotFound as e:
            raise ResourceNotFoundError(f"kind {kind} is not served by this cluster") from e

    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        from kubernetes.dynamic.exceptions import NotFoundError

        resource = self._resource(kind)
        try:
            obj = resource.get(name=name, namespace=namespace if kind.namespaced else None)
        except NotFoundError as e:
            raise ResourceNotFoundError(f"{kind} {name} not found") from e
        return obj.to_dict()

    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        ctx: Optional[CancellationToken] = None,
    ) -> List[Dict[str, Any]]:
        resource = self._resource(kind)
        items: List[Dict[str, Any]] = []
        token: Optional[str] = None
        while True:
            if ctx is not None:
                ctx.raise_if_cancelled()
            kwargs: Dict[str, Any] = {"limit": LIST_PAGE_SIZE}
            if token:
                kwargs["_continue"] = token
            if kind.namespaced and namespace:
                kwargs["namespace"] = namespace
            page = resource.get(**kwargs).to_dict()
            items.extend(page.get("items") or [])
            token = get_nested_string(page, "metadata", "continue")
            if not token:
                return items


# -----------------------------
# Cluster metadata
# -----------------------------

def collect_cluster_info(ctx: CancellationToken, reader: ClusterReader) -> ClusterInfo:
    """
    Best-effort cluster metadata. Every lookup is independent: a failure is logged and
    the corresponding fields keep their zero values.
    """
    info = ClusterInfo()

    try:
        cv = reader.get(CLUSTER_VERSIONS, "version")
        info.cluster_id = get_nested_string(cv, "spec", "clusterID")
        info.channel = get_nested_string(cv, "spec", "channel")
        history = get_nested_slice(cv, "status", "history")
        if history:
            info.cluster_version = get_nested_string(history[0], "version")
    except Exception:
        logger.warning("ClusterVersion unavailable; version fields left empty", exc_info=True)

    ctx.raise_if_cancelled()

    try:
        infra = reader.get(INFRASTRUCTURES, "cluster")
        info.platform = get_nested_string(infra, "status", "platformStatus", "type")
    except Exception:
        logger.warning("Infrastructure unavailable; platform left empty", exc_info=True)

    ctx.raise_if_cancelled()

    try:
        nodes = reader.list(NODES, ctx=ctx)
    except CancelledError:
        raise
    except Exception:
        logger.warning("Node list unavailable; node counts left at zero", exc_info=True)
        nodes = []

    info.node_count = len(nodes)
    for node in nodes:
        labels = labels_of(node)
        if LABEL_ROLE_MASTER in labels or LABEL_ROLE_CONTROL_PLANE in labels:
            info.control_plane_nodes += 1
        if LABEL_ROLE_WORKER in labels:
            info.worker_nodes += 1

    return info
