from __future__ import annotations

from typing import Any, Dict, List

from core.assessment.cancellation import CancellationToken
from core.assessment.cluster import NODES, ClusterReader, get_nested_slice, get_nested_string, labels_of, name_of
from core.assessment.models import STATUS_FAIL, STATUS_INFO, STATUS_PASS, STATUS_WARN, Finding
from core.assessment.profiles import PROFILE_PRODUCTION, Profile
from core.assessment.validator import Validator, register

ROLE_LABEL = "node-role.kubernetes.io/"
PRESSURE_CONDITIONS = ("MemoryPressure", "DiskPressure", "PIDPressure")


def has_role(node: Dict[str, Any], role: str) -> bool:
    return f"{ROLE_LABEL}{role}" in labels_of(node)


def is_control_plane(node: Dict[str, Any]) -> bool:
    return has_role(node, "master") or has_role(node, "control-plane")


@register
class NodesValidator(Validator):
    name = "nodes"
    category = "Infrastructure"
    description = "Validates node configuration including roles, readiness and resource pressure"

    def validate(self, ctx: CancellationToken, reader: ClusterReader, profile: Profile) -> List[Finding]:
        nodes = reader.list(NODES, ctx=ctx)

        findings: List[Finding] = []
        findings.extend(self.check_node_count(nodes, profile))
        ctx.raise_if_cancelled()
        findings.extend(self.check_conditions(nodes))
        ctx.raise_if_cancelled()
        findings.extend(self.check_roles(nodes))
        return findings

    def check_node_count(self, nodes: List[Dict[str, Any]], profile: Profile) -> List[Finding]:
        th = profile.thresholds
        control_plane = sum(1 for n in nodes if is_control_plane(n))
        workers = sum(1 for n in nodes if has_role(n, "worker"))
        out: List[Finding] = []

        if control_plane < th.min_control_plane_nodes:
            out.append(self.finding(
                id="nodes-control-plane-count",
                status=STATUS_FAIL,
                title="Insufficient Control Plane Nodes",
                description=(
                    f"Cluster has {control_plane} control plane nodes, minimum recommended is "
                    f"{th.min_control_plane_nodes} for {profile.name} profile."
                ),
                impact="Fewer control plane nodes reduce the cluster's ability to tolerate failures and may impact high availability.",
                recommendation=f"Consider adding control plane nodes to meet the minimum of {th.min_control_plane_nodes} for high availability.",
            ))
        else:
            out.append(self.finding(
                id="nodes-control-plane-count",
                status=STATUS_PASS,
                title="Control Plane Node Count",
                description=f"Cluster has {control_plane} control plane nodes, meeting the minimum of {th.min_control_plane_nodes}.",
            ))

        if workers < th.min_worker_nodes:
            # only production treats a short worker pool as a hard failure
            status = STATUS_FAIL if profile.name == PROFILE_PRODUCTION else STATUS_WARN
            out.append(self.finding(
                id="nodes-worker-count",
                status=status,
                title="Insufficient Worker Nodes",
                description=(
                    f"Cluster has {workers} worker nodes, minimum recommended is "
                    f"{th.min_worker_nodes} for {profile.name} profile."
                ),
                impact="Insufficient worker nodes may limit workload capacity and resilience.",
                recommendation=f"Consider adding worker nodes to meet the minimum of {th.min_worker_nodes} for better capacity.",
            ))
        else:
            out.append(self.finding(
                id="nodes-worker-count",
                status=STATUS_PASS,
                title="Worker Node Count",
                description=f"Cluster has {workers} worker nodes, meeting the minimum of {th.min_worker_nodes}.",
            ))

        return out

    def check_conditions(self, nodes: List[Dict[str, Any]]) -> List[Finding]:
        not_ready: List[str] = []
        pressured: List[str] = []

        for node in nodes:
            for cond in get_nested_slice(node, "status", "conditions"):
                ctype = get_nested_string(cond, "type")
                cstatus = get_nested_string(cond, "status")
                if ctype == "Ready" and cstatus != "True":
                    not_ready.append(name_of(node))
                elif ctype in PRESSURE_CONDITIONS and cstatus == "True":
                    pressured.append(f"{name_of(node)} ({ctype})")

        out: List[Finding] = []
        if not_ready:
            out.append(self.finding(
                id="nodes-not-ready",
                status=STATUS_FAIL,
                title="Nodes Not Ready",
                description=f"{len(not_ready)} node(s) are not in Ready state: {', '.join(not_ready)}",
                impact="Nodes that are not ready cannot run workloads and may indicate infrastructure issues.",
                recommendation="Investigate the not-ready nodes. Check node status with 'oc describe node <node-name>' and review kubelet logs.",
            ))
        else:
            out.append(self.finding(
                id="nodes-ready",
                status=STATUS_PASS,
                title="All Nodes Ready",
                description=f"All {len(nodes)} nodes are in Ready state.",
            ))

        if pressured:
            out.append(self.finding(
                id="nodes-pressure",
                status=STATUS_WARN,
                title="Nodes Under Resource Pressure",
                description=f"Nodes experiencing resource pressure: {', '.join(pressured)}",
                impact="Resource pressure can cause pod evictions and degraded performance.",
                recommendation="Review resource usage on affected nodes and consider adding capacity or rebalancing workloads.",
            ))

        return out

    def check_roles(self, nodes: List[Dict[str, Any]]) -> List[Finding]:
        no_role: List[str] = []
        mixed: List[str] = []

        for node in nodes:
            cp = is_control_plane(node)
            worker = has_role(node, "worker")
            if not cp and not worker and not has_role(node, "infra"):
                no_role.append(name_of(node))
            if cp and worker:
                mixed.append(name_of(node))

        out: List[Finding] = []
        if no_role:
            out.append(self.finding(
                id="nodes-no-role",
                status=STATUS_WARN,
                title="Nodes Without Recognized Role",
                description=f"{len(no_role)} node(s) do not have a recognized role: {', '.join(no_role)}",
                impact="Nodes without roles may not be scheduled correctly or may be misconfigured.",
                recommendation="Ensure nodes have appropriate role labels (worker, master, infra).",
            ))
        if mixed:
            out.append(self.finding(
                id="nodes-mixed-role",
                status=STATUS_INFO,
                title="Nodes With Mixed Roles",
                description=f"{len(mixed)} node(s) have both control-plane and worker roles: {', '.join(mixed)}",
                impact="Running workloads on control plane nodes can affect cluster stability.",
                recommendation="For production workloads, consider using dedicated worker nodes separate from control plane.",
            ))
        return out
