"""Desktop provisioner (silent Windows installs for image builds).

Core design goals:
- Idempotent re-runs (registry probes before every install)
- Bounded download retries
- Explicit strict/tolerant exit-code policy per installer
- Global machine state behind an injectable facade
- Centralized logging
"""

__all__ = []
