from __future__ import annotations

from typing import List

from core.assessment.cancellation import CancellationToken
from core.assessment.cluster import CLUSTER_ROLE_BINDINGS, ClusterReader, get_nested_slice, get_nested_string, name_of
from core.assessment.models import STATUS_INFO, STATUS_PASS, STATUS_WARN, Finding
from core.assessment.profiles import Profile
from core.assessment.validator import Validator, register

CLUSTER_ADMIN = "cluster-admin"

# service accounts here are expected to hold cluster-admin
SYSTEM_NAMESPACES = frozenset({
    "kube-system",
    "openshift-apiserver",
    "openshift-authentication",
    "openshift-cluster-version",
    "openshift-controller-manager",
    "openshift-etcd",
    "openshift-kube-apiserver",
    "openshift-kube-controller-manager",
    "openshift-kube-scheduler",
    "openshift-machine-api",
    "openshift-monitoring",
    "openshift-operator-lifecycle-manager",
})

RBAC_DOCS = "https://docs.openshift.com/container-platform/latest/authentication/using-rbac.html"


@register
class RBACValidator(Validator):
    name = "rbac"
    category = "Security"
    description = "Checks cluster-admin ClusterRoleBindings against the profile's limit"

    def validate(self, ctx: CancellationToken, reader: ClusterReader, profile: Profile) -> List[Finding]:
        bindings = reader.list(CLUSTER_ROLE_BINDINGS, ctx=ctx)

        admin_bindings: List[str] = []
        non_system: List[str] = []

        for crb in bindings:
            ctx.raise_if_cancelled()
            if get_nested_string(crb, "roleRef", "name") != CLUSTER_ADMIN:
                continue
            crb_name = name_of(crb)
            admin_bindings.append(crb_name)

            for subject in get_nested_slice(crb, "subjects"):
                kind = get_nested_string(subject, "kind")
                sname = get_nested_string(subject, "name")
                if kind == "ServiceAccount":
                    ns = get_nested_string(subject, "namespace")
                    if ns not in SYSTEM_NAMESPACES:
                        non_system.append(f"{crb_name} (SA: {ns}/{sname})")
                elif kind in ("User", "Group") and not sname.startswith("system:"):
                    non_system.append(f"{crb_name} ({kind}: {sname})")

        limit = profile.thresholds.max_cluster_admin_bindings
        findings = [
            self.finding(
                id="rbac-cluster-admin-total",
                status=STATUS_INFO,
                title="Cluster-Admin Bindings",
                description=f"Found {len(admin_bindings)} ClusterRoleBindings referencing cluster-admin.",
            )
        ]

        if len(non_system) > limit:
            findings.append(self.finding(
                id="rbac-cluster-admin-excessive",
                status=STATUS_WARN,
                title="Excessive Non-System Cluster-Admin Bindings",
                description=(
                    f"Found {len(non_system)} non-system cluster-admin bindings "
                    f"(threshold: {limit}): {', '.join(non_system)}"
                ),
                impact="Excessive cluster-admin permissions increase the attack surface and risk of privilege escalation.",
                recommendation="Review cluster-admin bindings and apply least privilege principle. Consider using more specific ClusterRoles.",
                references=[RBAC_DOCS],
            ))
        elif non_system:
            findings.append(self.finding(
                id="rbac-cluster-admin-found",
                status=STATUS_INFO,
                title="Non-System Cluster-Admin Bindings",
                description=f"Found {len(non_system)} non-system cluster-admin bindings: {', '.join(non_system)}",
            ))
        else:
            findings.append(self.finding(
                id="rbac-cluster-admin-minimal",
                status=STATUS_PASS,
                title="Minimal Cluster-Admin Usage",
                description="No non-system cluster-admin bindings found.",
            ))

        return findings
