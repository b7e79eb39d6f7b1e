"""Fleet version checker (vcheck).

Reconciles the version actually running in each deployment target against the
latest source-control release of its service:
 - reference version per repository, memoized per run and cached on disk
 - live deployed version probed per target (never cached)
 - target selection by tenant/environment/service and region policy
 - deterministic, most-actionable-first report ordering
"""
