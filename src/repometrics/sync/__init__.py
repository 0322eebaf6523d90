"""Hourly reconciliation of GitHub repository metrics."""

from repometrics.sync.api import MetricsApi
from repometrics.sync.config import SyncConfig
from repometrics.sync.controller import METRICS_TASK, MetricsJobController
from repometrics.sync.database import (
    JobRecord,
    MetricsDatabase,
    Organization,
    OrgStatus,
    Repository,
)
from repometrics.sync.gateway import FetchError, FetchResult, GitHubGateway
from repometrics.sync.results import RepoSyncReport, ResultKind, RunStatus, SyncResult
from repometrics.sync.scheduler import JobScheduler
from repometrics.sync.synchronizers import SYNCHRONIZERS, RepoContext, sync_repository

__all__ = [
    "SyncConfig",
    "MetricsDatabase",
    "Organization",
    "OrgStatus",
    "Repository",
    "JobRecord",
    "GitHubGateway",
    "FetchError",
    "FetchResult",
    "MetricsApi",
    "SyncResult",
    "ResultKind",
    "RunStatus",
    "RepoSyncReport",
    "RepoContext",
    "SYNCHRONIZERS",
    "sync_repository",
    "MetricsJobController",
    "METRICS_TASK",
    "JobScheduler",
]
