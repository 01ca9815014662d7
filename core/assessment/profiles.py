from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List


PROFILE_PRODUCTION = "production"
PROFILE_DEVELOPMENT = "development"

DEFAULT_PROFILE = PROFILE_PRODUCTION


@dataclass(frozen=True)
class Thresholds:
    min_control_plane_nodes: int
    min_worker_nodes: int
    max_pods_per_node: int
    max_cluster_admin_bindings: int
    require_network_policy: bool
    require_resource_quotas: bool
    require_limit_ranges: bool
    max_days_without_update: int
    allow_privileged_containers: bool
    require_default_storage_class: bool


@dataclass(frozen=True)
class Profile:
    name: str
    description: str
    strictness: int  # 1..10
    thresholds: Thresholds


PROFILES: Dict[str, Profile] = {
    PROFILE_PRODUCTION: Profile(
        name=PROFILE_PRODUCTION,
        description=(
            "Production baseline with strict enterprise requirements for high availability, "
            "security, and supportability."
        ),
        strictness=9,
        thresholds=Thresholds(
            min_control_plane_nodes=3,
            min_worker_nodes=3,
            max_pods_per_node=250,
            max_cluster_admin_bindings=5,
            require_network_policy=True,
            require_resource_quotas=True,
            require_limit_ranges=True,
            max_days_without_update=90,
            allow_privileged_containers=False,
            require_default_storage_class=True,
        ),
    ),
    PROFILE_DEVELOPMENT: Profile(
        name=PROFILE_DEVELOPMENT,
        description="Development baseline with relaxed requirements suitable for dev/test environments.",
        strictness=4,
        thresholds=Thresholds(
            min_control_plane_nodes=1,
            min_worker_nodes=1,
            max_pods_per_node=250,
            max_cluster_admin_bindings=20,
            require_network_policy=False,
            require_resource_quotas=False,
            require_limit_ranges=False,
            max_days_without_update=180,
            allow_privileged_containers=True,
            require_default_storage_class=False,
        ),
    ),
}


def get_profile(name: str) -> Profile:
    """Look up a profile by name; empty or unknown names get the production baseline."""
    return PROFILES.get((name or "").strip(), PROFILES[DEFAULT_PROFILE])


def list_profiles() -> List[str]:
    return list(PROFILES)
