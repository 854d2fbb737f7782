"""Task entry point invoked by a scheduler to synchronize two folders."""

import threading
from contextlib import nullcontext
from enum import Enum
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from filesync.models.config import AppConfig
from filesync.share import (
    CommandShareMounter,
    RemoteCredentials,
    ShareMounter,
    network_share_access,
)
from filesync.sync.change_detector import ChangeDetector
from filesync.sync.change_filter import ChangeFilter
from filesync.sync.errors import RemoteAccessError, SyncCancelledError
from filesync.sync.models import ApplyOutcome, ChangeKind, RunResult
from filesync.sync.sync_applier import SyncApplier
from filesync.sync.sync_orchestrator import SyncOrchestrator

log = structlog.stdlib.get_logger()


class TaskStatus(str, Enum):
    """Terminal status of a task run."""

    SUCCESS = "success"
    ERROR = "error"


class TaskResult(BaseModel):
    """Status of a task run with its ordered diagnostics."""

    status: TaskStatus
    diagnostics: list[str] = Field(default_factory=list)
    run_result: RunResult | None = None


def describe_outcome(outcome: ApplyOutcome) -> list[str]:
    """Diagnostic lines for one applied or skipped change."""
    record = outcome.record
    if outcome.applied:
        if record.kind == ChangeKind.CREATE:
            return [f"Applied CREATE for file {record.new_path}"]
        if record.kind == ChangeKind.DELETE:
            return [f"Applied DELETE for file {record.old_path}"]
        if record.kind == ChangeKind.UPDATE:
            return [f"Applied OVERWRITE for file {record.new_path}"]
        return [f"Applied RENAME for file {record.old_path} as {record.new_path}"]

    lines = [
        f"Skipped applying {record.kind.value.upper()} for {record.path} due to error: {outcome.reason}"
    ]
    if outcome.error:
        lines.append(f"Error: {outcome.error}")
    return lines


def run(
    source_path: str | Path,
    destination_path: str | Path,
    remote_credentials: RemoteCredentials | None = None,
    *,
    change_filter: ChangeFilter | None = None,
    mounter: ShareMounter | None = None,
    cancel_event: threading.Event | None = None,
    orchestrator: SyncOrchestrator | None = None,
) -> TaskResult:
    """
    Synchronize a source folder into a destination folder.

    When complete remote credentials and a mounter are given, the share is
    connected before the sync and disconnected afterwards on every path.

    Args:
        source_path: Source replica root
        destination_path: Destination replica root
        remote_credentials: Optional credentials of the share holding the folders
        change_filter: Exclusion rules applied on both sides
        mounter: Collaborator that connects the share
        cancel_event: Set from another thread to cancel the run
        orchestrator: Orchestrator to use, built with defaults if None

    Returns:
        TaskResult with SUCCESS or ERROR and the ordered diagnostics

    Raises:
        SyncCancelledError: If the run is cancelled; the share is still released
            and the diagnostics collected so far are attached to the error
    """
    orchestrator = orchestrator or SyncOrchestrator()
    diagnostics: list[str] = []

    def emit(message: str, level: str = "info") -> None:
        diagnostics.append(message)
        getattr(log, level)("task_diagnostic", message=message)

    emit("Synchronising folders...")

    use_share = remote_credentials is not None and remote_credentials.is_complete
    if use_share and mounter is None:
        raise ValueError("A share mounter is required when remote credentials are given")

    run_result: RunResult | None = None
    remote_failed = False
    try:
        scope = network_share_access(mounter, remote_credentials) if use_share else nullcontext()
        with scope:
            emit(f"Synchronizing changes to replica: {destination_path}")
            run_result = orchestrator.sync(
                Path(source_path),
                Path(destination_path),
                change_filter,
                cancel_event=cancel_event,
            )
    except RemoteAccessError as e:
        remote_failed = True
        emit(f"An error occurred while synchronizing folders: {e}", "error")
    except SyncCancelledError as e:
        for outcome in e.outcomes:
            for line in describe_outcome(outcome):
                emit(line, "info" if outcome.applied else "error")
        emit("Task cancelled.", "warning")
        e.diagnostics = diagnostics
        raise

    if run_result is not None:
        for outcome in run_result.outcomes:
            for line in describe_outcome(outcome):
                emit(line, "info" if outcome.applied else "error")
        for warning in run_result.warnings:
            emit(f"Warning: {warning}", "warning")
        for error in run_result.errors:
            emit(f"An error occurred while synchronizing folders: {error}", "error")

    success = run_result is not None and run_result.success and not remote_failed
    emit("Task finished.")

    return TaskResult(
        status=TaskStatus.SUCCESS if success else TaskStatus.ERROR,
        diagnostics=diagnostics,
        run_result=run_result,
    )


def run_from_config(config: AppConfig, cancel_event: threading.Event | None = None) -> TaskResult:
    """
    Build the engine from the application configuration and run it.

    Args:
        config: Validated application configuration
        cancel_event: Set from another thread to cancel the run

    Returns:
        TaskResult of the run
    """
    sync_config = config.sync
    change_filter = ChangeFilter(
        file_name_excludes=sync_config.file_name_excludes,
        subdirectory_excludes=sync_config.subdirectory_excludes,
    )
    orchestrator = SyncOrchestrator(
        detector=ChangeDetector(signature_mode=sync_config.signature_mode),
        applier=SyncApplier(
            max_retries=sync_config.max_retries,
            retry_base_delay=sync_config.retry_base_delay,
            recycle_retention_days=sync_config.recycle_retention_days,
        ),
        recycle_retention_days=sync_config.recycle_retention_days,
    )

    credentials = None
    mounter = None
    if config.remote is not None and config.remote.connect_command:
        credentials = RemoteCredentials(
            computer_name=config.remote.computer_name,
            domain=config.remote.domain,
            username=config.remote.username,
            password=config.remote.password,
        )
        mounter = CommandShareMounter(config.remote.connect_command, config.remote.disconnect_command)

    return run(
        sync_config.source_path,
        sync_config.destination_path,
        credentials,
        change_filter=change_filter,
        mounter=mounter,
        cancel_event=cancel_event,
        orchestrator=orchestrator,
    )
