"""Archive completed features out of the active plans directory."""

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

from .exceptions import ArchiveError, XLoopError
from .lifecycle import calculate_status
from .plan_store import PlanStore

# Older archived copies are kept under this suffix until the new ones are in place.
BACKUP_SUFFIX = ".prev"


@dataclass
class PruneResult:
    """Outcome of a prune run."""

    archived: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)
    would_archive: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


def identify_completed_features(store: PlanStore) -> List[str]:
    """Features whose task files have every task completed.

    Task files that fail to load are skipped; they are never archivable.
    """
    completed = []
    for filename in store.list_task_files():
        try:
            task_file = store.load_task_file(store.plans_dir / filename)
        except XLoopError:
            continue
        if calculate_status(task_file).archivable:
            completed.append(store.feature_from_task_file(filename))
    return completed


def archive_feature(store: PlanStore, feature: str) -> List[Path]:
    """Move a feature's PRD, task file and progress log into the archive.

    Files missing from the plans directory are skipped. Existing archived
    copies are overwritten. Either every present file is moved or none is:
    on a failed move the files already moved are put back and the older
    archived copies are restored.

    Args:
        store: Plan store for the project
        feature: Feature name

    Returns:
        Archived file paths

    Raises:
        ArchiveError: If no file exists for the feature or a move fails
    """
    sources = [path for path in store.feature_paths(feature) if path.exists()]
    if not sources:
        raise ArchiveError(f"No files found for feature: {feature}")

    try:
        store.archive_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ArchiveError(f"Failed to create archive directory: {e}") from e

    moved: List[Tuple[Path, Path]] = []
    displaced: List[Tuple[Path, Path]] = []
    try:
        for source in sources:
            destination = store.archive_dir / source.name
            if destination.exists():
                backup = destination.with_name(destination.name + BACKUP_SUFFIX)
                os.replace(destination, backup)
                displaced.append((destination, backup))
            shutil.move(str(source), str(destination))
            moved.append((source, destination))
    except OSError as e:
        rollback_errors = _rollback(moved) + _restore(displaced)
        message = f"Failed to archive {feature}: {e}"
        if rollback_errors:
            message += "\n\nRollback incomplete:\n" + "\n".join(rollback_errors)
        raise ArchiveError(message) from e

    for _, backup in displaced:
        try:
            backup.unlink()
        except OSError as e:
            raise ArchiveError(f"Archived {feature} but could not remove {backup}: {e}") from e

    return [destination for _, destination in moved]


def prune_completed(store: PlanStore, dry_run: bool = False) -> PruneResult:
    """Archive every completed feature.

    A failure archiving one feature is recorded and the others continue.
    """
    result = PruneResult()
    for feature in identify_completed_features(store):
        if dry_run:
            result.would_archive.append(feature)
            continue
        try:
            archive_feature(store, feature)
            result.archived.append(feature)
        except ArchiveError as e:
            result.failed.append((feature, str(e)))
    return result


def _rollback(moved: List[Tuple[Path, Path]]) -> List[str]:
    errors = []
    for source, destination in reversed(moved):
        try:
            shutil.move(str(destination), str(source))
        except OSError as e:
            errors.append(f"{destination} -> {source}: {e}")
    return errors


def _restore(displaced: List[Tuple[Path, Path]]) -> List[str]:
    errors = []
    for destination, backup in reversed(displaced):
        try:
            os.replace(backup, destination)
        except OSError as e:
            errors.append(f"{backup} -> {destination}: {e}")
    return errors
