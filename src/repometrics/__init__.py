"""
repometrics: periodic GitHub metrics reconciliation for organizations.

See DESIGN.md for how a metrics run is put together.
"""

__version__ = "0.1.0"

from repometrics.sync import (
    JobScheduler,
    MetricsDatabase,
    MetricsJobController,
    RunStatus,
    SyncConfig,
)

__all__ = [
    "SyncConfig",
    "MetricsDatabase",
    "MetricsJobController",
    "JobScheduler",
    "RunStatus",
]
