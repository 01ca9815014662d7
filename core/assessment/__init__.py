# core/assessment/__init__.py
"""
Cluster assessment engine.

- models / profiles: Assessment resource, Findings and baseline thresholds
- validator / cluster: pluggable read-only checks against the cluster API
- scoring / report / metrics: summaries, report artifacts and gauges
- store / reconciler / workqueue: persistence and the reconcile loop
"""
