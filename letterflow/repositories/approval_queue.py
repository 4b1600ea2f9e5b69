"""
Approval Queue

File-system backed state machine for approval records. Each record lives in
exactly one partition directory named after its state:

    {root}/pending_approval/approval_{id}.json
    {root}/awaiting_response/approval_{id}.json
    {root}/approved/approval_{id}.json
    {root}/needs_improvement/approval_{id}.json
    {root}/failed/approval_{id}.json

Workflow triggers live in ``{root}/triggers`` with ``processed/`` and
``failed/`` sub-partitions. Records consumed by the watchers are archived
under ``{root}/archive``.

All mutations run under an exclusive ``flock`` on ``{root}/.queue.lock`` and
write files atomically (temp file + ``os.replace``). A partition move writes
the new location first and removes the old one second; ``reconcile()``
repairs the duplicate a crash between those two steps can leave behind.
"""
from __future__ import annotations

import asyncio
import fcntl
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union
from uuid import UUID

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from letterflow.config import get_settings
from letterflow.errors import (
    DeserializationError,
    InvalidTransitionError,
    SerializationError,
    StorageError,
    WorkflowError,
)
from letterflow.models.approval import (
    ApprovalData,
    ApprovalState,
    HealthCheckResult,
    HealthStatus,
    LetterContent,
    MessageRef,
    WorkflowTrigger,
    utcnow,
)
from letterflow.models.crm import MailingAddress
from letterflow.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

APPROVAL_PREFIX = "approval_"
TRIGGER_PREFIX = "trigger_"
PROCESSING_SUFFIX = ".processing"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

IdLike = Union[UUID, str]


# ----------------------------------------------------------------------
# File helpers
# ----------------------------------------------------------------------
def _atomic_write_text(path: Path, content: str) -> None:
    """Write `content` to `path` through a temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def _as_uuid(value: IdLike) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _id_from_name(name: str, prefix: str) -> Optional[UUID]:
    """Parse `approval_<uuid>.json` style names, None for anything else"""
    if not name.startswith(prefix) or not name.endswith(".json"):
        return None
    try:
        return UUID(name[len(prefix):-len(".json")])
    except ValueError:
        return None


class ApprovalQueue:
    """Durable approval records and workflow triggers under one root directory."""

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        pending_threshold: Optional[int] = None,
        failed_threshold: Optional[int] = None,
    ) -> None:
        self.root = Path(root) if root is not None else settings.data_root
        self.pending_threshold = (
            pending_threshold if pending_threshold is not None
            else settings.health_pending_threshold
        )
        self.failed_threshold = (
            failed_threshold if failed_threshold is not None
            else settings.health_failed_threshold
        )
        self.lock_path = self.root / ".queue.lock"
        self.ensure_layout()
        logger.info("ApprovalQueue initialized at %s", self.root)

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------
    def partition_dir(self, state: ApprovalState) -> Path:
        return self.root / state.directory_name

    @property
    def triggers_dir(self) -> Path:
        return self.root / "triggers"

    @property
    def triggers_processed_dir(self) -> Path:
        return self.triggers_dir / "processed"

    @property
    def triggers_failed_dir(self) -> Path:
        return self.triggers_dir / "failed"

    @property
    def archive_dir(self) -> Path:
        return self.root / "archive"

    def data_dir(self, kind: str) -> Path:
        """Working data directory: dossiers, letters or attachments"""
        return self.root / "data" / kind

    def ensure_layout(self) -> None:
        """Create every directory the queue uses"""
        try:
            for state in ApprovalState:
                self.partition_dir(state).mkdir(parents=True, exist_ok=True)
            for directory in (
                self.triggers_processed_dir,
                self.triggers_failed_dir,
                self.archive_dir / "processed",
                self.archive_dir / "failed",
                self.archive_dir / "corrupt",
                self.data_dir("dossiers"),
                self.data_dir("letters"),
                self.data_dir("attachments"),
            ):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to create queue directories under {self.root}: {exc}") from exc

    def _record_path(self, approval_id: UUID, state: ApprovalState) -> Path:
        return self.partition_dir(state) / f"{APPROVAL_PREFIX}{approval_id}.json"

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Exclusive lock shared by every process using this root"""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        with self.lock_path.open("a+", encoding="utf-8") as lock_handle:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    @staticmethod
    def _read_record(path: Path) -> ApprovalData:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to read approval file {path}: {exc}") from exc
        try:
            return ApprovalData.model_validate_json(text)
        except ValidationError as exc:
            raise DeserializationError(f"Failed to parse approval data in {path.name}: {exc}") from exc

    @staticmethod
    def _write_record(path: Path, approval: ApprovalData) -> None:
        try:
            content = approval.model_dump_json(indent=2)
        except PydanticSerializationError as exc:
            raise SerializationError(f"Failed to serialize approval {approval.approval_id}: {exc}") from exc
        try:
            _atomic_write_text(path, content)
        except OSError as exc:
            raise StorageError(f"Failed to write approval file {path}: {exc}") from exc

    def _move(self, approval: ApprovalData, from_state: ApprovalState) -> None:
        """Persist `approval` into its state's partition, then drop the old copy"""
        new_path = self._record_path(approval.approval_id, approval.state)
        old_path = self._record_path(approval.approval_id, from_state)
        self._write_record(new_path, approval)
        if old_path != new_path:
            try:
                old_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise StorageError(f"Failed to remove {old_path}: {exc}") from exc

    def _find(self, approval_id: UUID, state: Optional[ApprovalState]) -> Optional[Tuple[Path, ApprovalData]]:
        states = [state] if state is not None else list(ApprovalState)
        for candidate in states:
            path = self._record_path(approval_id, candidate)
            if path.exists():
                return path, self._read_record(path)
        return None

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------
    def create_approval(
        self,
        task_id: str,
        contact_id: str,
        recipient_name: str,
        company_name: str,
        letter: LetterContent,
        requested_by: int = 1,
        recipient_email: Optional[str] = None,
        recipient_title: Optional[str] = None,
        mailing_address: Optional[MailingAddress] = None,
        pdf_base64: Optional[str] = None,
        person_dossier: Optional[str] = None,
        company_dossier: Optional[str] = None,
        industry: Optional[str] = None,
        website: Optional[str] = None,
    ) -> UUID:
        """Create a record in PendingApproval and return its id."""
        approval = ApprovalData.new(
            task_id=task_id,
            contact_id=contact_id,
            recipient_name=recipient_name,
            company_name=company_name,
            letter=letter,
            requested_by=requested_by,
            recipient_email=recipient_email,
            recipient_title=recipient_title,
            mailing_address=mailing_address,
            pdf_base64=pdf_base64,
            person_dossier=person_dossier,
            company_dossier=company_dossier,
            industry=industry,
            website=website,
        )
        with self._locked():
            self._write_record(
                self._record_path(approval.approval_id, ApprovalState.PENDING_APPROVAL),
                approval,
            )
        logger.info(
            "Created approval %s for task %s (%s, %s)",
            approval.approval_id, task_id, recipient_name, company_name,
        )
        return approval.approval_id

    async def create_approval_async(self, *args, **kwargs) -> UUID:
        """Async wrapper for create_approval."""
        return await asyncio.to_thread(self.create_approval, *args, **kwargs)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------
    def get_approval(self, approval_id: IdLike, state: Optional[ApprovalState] = None) -> Optional[ApprovalData]:
        """Fetch a record, scanning only `state`'s partition when given."""
        with self._locked():
            found = self._find(_as_uuid(approval_id), state)
        return found[1] if found else None

    async def get_approval_async(self, approval_id: IdLike, state: Optional[ApprovalState] = None) -> Optional[ApprovalData]:
        return await asyncio.to_thread(self.get_approval, approval_id, state)

    def list_by_state(self, state: ApprovalState) -> List[ApprovalData]:
        """All readable records in a partition, oldest first. Corrupt files are skipped."""
        records: List[ApprovalData] = []
        with self._locked():
            for path in sorted(self.partition_dir(state).glob(f"{APPROVAL_PREFIX}*.json")):
                try:
                    records.append(self._read_record(path))
                except (DeserializationError, StorageError) as exc:
                    logger.warning("Skipping unreadable approval file %s: %s", path.name, exc)
        records.sort(key=lambda record: record.requested_at)
        return records

    async def list_by_state_async(self, state: ApprovalState) -> List[ApprovalData]:
        return await asyncio.to_thread(self.list_by_state, state)

    def counts_by_state(self) -> Dict[ApprovalState, int]:
        return {
            state: sum(1 for _ in self.partition_dir(state).glob(f"{APPROVAL_PREFIX}*.json"))
            for state in ApprovalState
        }

    def health_check(self) -> HealthCheckResult:
        """Degraded above the pending threshold, unhealthy above the failed threshold."""
        counts = self.counts_by_state()
        total = sum(counts.values())
        if total == 0:
            status = HealthStatus.HEALTHY
        elif counts[ApprovalState.FAILED] > self.failed_threshold:
            status = HealthStatus.UNHEALTHY
        elif counts[ApprovalState.PENDING_APPROVAL] > self.pending_threshold:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY
        return HealthCheckResult(
            status=status,
            counts=counts,
            total_workflows=total,
            root_path=str(self.root),
        )

    async def health_check_async(self) -> HealthCheckResult:
        return await asyncio.to_thread(self.health_check)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def mark_awaiting_response(self, approval_id: IdLike, message_ref: Optional[MessageRef] = None) -> ApprovalData:
        """PendingApproval -> AwaitingUserResponse.

        Raises:
            WorkflowError: record not found
            InvalidTransitionError: record is not PendingApproval
        """
        approval_id = _as_uuid(approval_id)
        with self._locked():
            found = self._find(approval_id, None)
            if found is None:
                raise WorkflowError(f"Approval request {approval_id} not found")
            _, approval = found
            approval.mark_awaiting_response(message_ref)
            self._move(approval, ApprovalState.PENDING_APPROVAL)
        logger.info("Approval %s is awaiting user response", approval_id)
        return approval

    async def mark_awaiting_response_async(self, approval_id: IdLike, message_ref: Optional[MessageRef] = None) -> ApprovalData:
        return await asyncio.to_thread(self.mark_awaiting_response, approval_id, message_ref)

    def _transition_from_awaiting(self, approval_id: IdLike, apply) -> Optional[ApprovalData]:
        approval_id = _as_uuid(approval_id)
        with self._locked():
            found = self._find(approval_id, ApprovalState.AWAITING_USER_RESPONSE)
            if found is None:
                return None
            _, approval = found
            apply(approval)
            self._move(approval, ApprovalState.AWAITING_USER_RESPONSE)
        return approval

    def handle_approval(self, approval_id: IdLike) -> Optional[ApprovalData]:
        """AwaitingUserResponse -> Approved. None when not found or in another state."""
        approval = self._transition_from_awaiting(approval_id, lambda a: a.mark_approved())
        if approval is None:
            logger.warning("Approval %s not awaiting a response, cannot approve", approval_id)
        else:
            logger.info("Approval %s approved", approval_id)
        return approval

    async def handle_approval_async(self, approval_id: IdLike) -> Optional[ApprovalData]:
        return await asyncio.to_thread(self.handle_approval, approval_id)

    def handle_feedback(self, approval_id: IdLike, feedback: str, user_id: int) -> Optional[ApprovalData]:
        """AwaitingUserResponse -> NeedsImprovement with feedback on the last iteration."""
        approval = self._transition_from_awaiting(
            approval_id, lambda a: a.add_feedback(feedback, user_id)
        )
        if approval is None:
            logger.warning("Approval %s not awaiting a response, cannot record feedback", approval_id)
        else:
            logger.info("Approval %s needs improvement: %s", approval_id, feedback)
        return approval

    async def handle_feedback_async(self, approval_id: IdLike, feedback: str, user_id: int) -> Optional[ApprovalData]:
        return await asyncio.to_thread(self.handle_feedback, approval_id, feedback, user_id)

    def requeue_after_improvement(self, approval_id: IdLike, letter: LetterContent) -> bool:
        """NeedsImprovement -> PendingApproval with the improved letter appended."""
        approval_id = _as_uuid(approval_id)
        with self._locked():
            found = self._find(approval_id, ApprovalState.NEEDS_IMPROVEMENT)
            if found is None:
                return False
            _, approval = found
            approval.add_improved_letter(letter)
            self._move(approval, ApprovalState.NEEDS_IMPROVEMENT)
        logger.info(
            "Approval %s requeued with iteration %d", approval_id, approval.current_iteration()
        )
        return True

    async def requeue_after_improvement_async(self, approval_id: IdLike, letter: LetterContent) -> bool:
        return await asyncio.to_thread(self.requeue_after_improvement, approval_id, letter)

    def mark_failed(self, approval_id: IdLike, reason: Optional[str] = None) -> bool:
        """Any non-terminal state -> Failed. False when not found or already terminal."""
        approval_id = _as_uuid(approval_id)
        with self._locked():
            found = self._find(approval_id, None)
            if found is None:
                return False
            _, approval = found
            previous = approval.state
            try:
                approval.mark_failed(reason)
            except InvalidTransitionError as exc:
                logger.warning("Cannot fail approval %s: %s", approval_id, exc)
                return False
            self._move(approval, previous)
        logger.info("Approval %s marked failed: %s", approval_id, reason)
        return True

    async def mark_failed_async(self, approval_id: IdLike, reason: Optional[str] = None) -> bool:
        return await asyncio.to_thread(self.mark_failed, approval_id, reason)

    # ------------------------------------------------------------------
    # Watcher support: claim / release / archive
    # ------------------------------------------------------------------
    def list_claimable(self, state: ApprovalState) -> List[Path]:
        """Unclaimed record files in a partition"""
        return sorted(self.partition_dir(state).glob(f"{APPROVAL_PREFIX}*.json"))

    def claim(self, path: Path) -> Optional[Path]:
        """Rename a record to `<name>.processing`. None if another worker got there first."""
        processing_path = path.with_name(path.name + PROCESSING_SUFFIX)
        with self._locked():
            try:
                os.rename(path, processing_path)
            except FileNotFoundError:
                return None
            except OSError as exc:
                logger.error("Failed to claim %s: %s", path.name, exc)
                return None
        return processing_path

    def read_claimed(self, processing_path: Path) -> ApprovalData:
        return self._read_record(processing_path)

    def _stale_claims(self, state: ApprovalState, older_than_seconds: float) -> List[Path]:
        cutoff = utcnow().timestamp() - older_than_seconds
        stale = []
        for processing_path in self.partition_dir(state).glob(f"*{PROCESSING_SUFFIX}"):
            try:
                if processing_path.stat().st_mtime <= cutoff:
                    stale.append(processing_path)
            except FileNotFoundError:
                continue
        return sorted(stale)

    def release_stale_claims(self, state: ApprovalState, older_than_seconds: float) -> int:
        """Return abandoned `.processing` files in a partition to the queue"""
        released = 0
        with self._locked():
            for processing_path in self._stale_claims(state, older_than_seconds):
                original = processing_path.with_name(processing_path.name[:-len(PROCESSING_SUFFIX)])
                try:
                    os.rename(processing_path, original)
                except OSError as exc:
                    logger.error("Failed to release stale claim %s: %s", processing_path.name, exc)
                    continue
                released += 1
                logger.warning("Released stale claim %s", processing_path.name)
        return released

    def park_stale_claims(self, state: ApprovalState, older_than_seconds: float, reason: str) -> int:
        """
        Move abandoned `.processing` files to archive/failed for manual review

        Used where processing has side effects that must not repeat: the
        claim may have been abandoned after the work was already done.
        Each record is moved verbatim with a `.error.txt` sidecar.
        """
        parked = 0
        failed_dir = self.archive_dir / "failed"
        with self._locked():
            for processing_path in self._stale_claims(state, older_than_seconds):
                base_name = processing_path.name[:-len(PROCESSING_SUFFIX)]
                destination = failed_dir / f"{base_name[:-len('.json')]}_stale_{_timestamp()}.json"
                try:
                    failed_dir.mkdir(parents=True, exist_ok=True)
                    os.replace(processing_path, destination)
                    _atomic_write_text(destination.with_suffix(".error.txt"), reason)
                except OSError as exc:
                    logger.error("Failed to park stale claim %s: %s", processing_path.name, exc)
                    continue
                parked += 1
                logger.warning("Parked stale claim %s at %s", processing_path.name, destination.name)
        return parked

    def _archive(self, processing_path: Path, destination: Path, content: Optional[str] = None) -> Path:
        with self._locked():
            try:
                if content is None:
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    os.replace(processing_path, destination)
                else:
                    _atomic_write_text(destination, content)
                    processing_path.unlink(missing_ok=True)
            except OSError as exc:
                raise StorageError(f"Failed to archive {processing_path.name}: {exc}") from exc
        return destination

    def archive_processed(self, processing_path: Path, approval: ApprovalData) -> Path:
        """Move a consumed record to archive/processed"""
        destination = self.archive_dir / "processed" / (
            f"{APPROVAL_PREFIX}{approval.approval_id}_processed_{_timestamp()}.json"
        )
        return self._archive(processing_path, destination)

    def archive_failed(self, processing_path: Path, approval: ApprovalData, error: str) -> Path:
        """Move a record whose continuation failed to archive/failed with the error attached"""
        destination = self.archive_dir / "failed" / (
            f"{APPROVAL_PREFIX}{approval.approval_id}_failed_{_timestamp()}.json"
        )
        annotated = approval.model_copy(update={"failure_reason": error})
        return self._archive(processing_path, destination, annotated.model_dump_json(indent=2))

    def quarantine(self, processing_path: Path, error: str) -> Path:
        """Move an unreadable record to archive/corrupt with an error sidecar"""
        base_name = processing_path.name[:-len(PROCESSING_SUFFIX)] if processing_path.name.endswith(
            PROCESSING_SUFFIX
        ) else processing_path.name
        destination = self.archive_dir / "corrupt" / f"{base_name}_error_{_timestamp()}.json"
        self._archive(processing_path, destination)
        try:
            _atomic_write_text(destination.with_suffix(".error.txt"), error)
        except OSError as exc:
            logger.error("Failed to write error sidecar for %s: %s", destination.name, exc)
        return destination

    def complete_claimed(self, processing_path: Path, approval: ApprovalData) -> None:
        """Write a claimed record into its (new) state's partition and drop the claim"""
        with self._locked():
            self._write_record(self._record_path(approval.approval_id, approval.state), approval)
            try:
                processing_path.unlink(missing_ok=True)
            except OSError as exc:
                raise StorageError(f"Failed to remove claim {processing_path.name}: {exc}") from exc

    def fail_claimed(self, processing_path: Path, approval: ApprovalData, reason: str) -> None:
        """Transition a claimed non-terminal record to Failed"""
        approval.mark_failed(reason)
        self.complete_claimed(processing_path, approval)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------
    def reconcile(self) -> List[UUID]:
        """Remove duplicate copies of a record left by an interrupted move.

        The copy with the latest ``updated_at`` wins; ties go to the state
        further along the review cycle. Returns the ids that were repaired.
        """
        repaired: List[UUID] = []
        with self._locked():
            locations: Dict[UUID, List[ApprovalState]] = {}
            for state in ApprovalState:
                for path in self.partition_dir(state).glob(f"{APPROVAL_PREFIX}*.json"):
                    approval_id = _id_from_name(path.name, APPROVAL_PREFIX)
                    if approval_id is not None:
                        locations.setdefault(approval_id, []).append(state)

            for approval_id, states in locations.items():
                if len(states) < 2:
                    continue
                copies = []
                for state in states:
                    path = self._record_path(approval_id, state)
                    try:
                        copies.append((self._read_record(path), path))
                    except (DeserializationError, StorageError) as exc:
                        logger.warning("Dropping unreadable duplicate %s: %s", path, exc)
                        path.unlink(missing_ok=True)
                if not copies:
                    continue
                copies.sort(key=lambda item: (item[0].updated_at, item[0].state.rank))
                keep, keep_path = copies[-1]
                for _, path in copies[:-1]:
                    path.unlink(missing_ok=True)
                if keep_path != self._record_path(approval_id, keep.state):
                    self._write_record(self._record_path(approval_id, keep.state), keep)
                    keep_path.unlink(missing_ok=True)
                repaired.append(approval_id)
                logger.warning(
                    "Reconciled duplicate approval %s, kept state %s", approval_id, keep.state.value
                )
        return repaired

    async def reconcile_async(self) -> List[UUID]:
        return await asyncio.to_thread(self.reconcile)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------
    def _trigger_path(self, trigger_id: UUID, directory: Optional[Path] = None) -> Path:
        return (directory or self.triggers_dir) / f"{TRIGGER_PREFIX}{trigger_id}.json"

    def create_trigger(self, requested_by: int, max_tasks: int, dry_run: bool = False) -> UUID:
        trigger = WorkflowTrigger(requested_by=requested_by, max_tasks=max_tasks, dry_run=dry_run)
        with self._locked():
            try:
                _atomic_write_text(self._trigger_path(trigger.trigger_id), trigger.model_dump_json(indent=2))
            except OSError as exc:
                raise StorageError(f"Failed to write trigger: {exc}") from exc
        logger.info(
            "Created workflow trigger %s (max_tasks=%d, dry_run=%s)",
            trigger.trigger_id, max_tasks, dry_run,
        )
        return trigger.trigger_id

    async def create_trigger_async(self, requested_by: int, max_tasks: int, dry_run: bool = False) -> UUID:
        return await asyncio.to_thread(self.create_trigger, requested_by, max_tasks, dry_run)

    def get_trigger(self, trigger_id: IdLike) -> Optional[WorkflowTrigger]:
        trigger_id = _as_uuid(trigger_id)
        for directory in (self.triggers_dir, self.triggers_processed_dir, self.triggers_failed_dir):
            path = self._trigger_path(trigger_id, directory)
            if path.exists():
                try:
                    return WorkflowTrigger.model_validate_json(path.read_text(encoding="utf-8"))
                except ValidationError as exc:
                    raise DeserializationError(f"Failed to parse trigger {path.name}: {exc}") from exc
        return None

    def list_pending_triggers(self) -> List[WorkflowTrigger]:
        """Unprocessed triggers, oldest first"""
        triggers: List[WorkflowTrigger] = []
        for path in self.triggers_dir.glob(f"{TRIGGER_PREFIX}*.json"):
            try:
                trigger = WorkflowTrigger.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as exc:
                logger.warning("Skipping unreadable trigger file %s: %s", path.name, exc)
                continue
            if not trigger.processed:
                triggers.append(trigger)
        triggers.sort(key=lambda trigger: trigger.requested_at)
        return triggers

    async def list_pending_triggers_async(self) -> List[WorkflowTrigger]:
        return await asyncio.to_thread(self.list_pending_triggers)

    def _finish_trigger(self, trigger_id: IdLike, directory: Path, **update) -> bool:
        trigger_id = _as_uuid(trigger_id)
        path = self._trigger_path(trigger_id)
        with self._locked():
            if not path.exists():
                return False
            try:
                trigger = WorkflowTrigger.model_validate_json(path.read_text(encoding="utf-8"))
            except ValidationError as exc:
                raise DeserializationError(f"Failed to parse trigger {path.name}: {exc}") from exc
            finished = trigger.model_copy(update={"processed": True, "processed_at": utcnow(), **update})
            try:
                _atomic_write_text(self._trigger_path(trigger_id, directory), finished.model_dump_json(indent=2))
                path.unlink()
            except OSError as exc:
                raise StorageError(f"Failed to move trigger {trigger_id}: {exc}") from exc
        return True

    def mark_trigger_processed(self, trigger_id: IdLike, result: str) -> bool:
        """Record the batch result and move the trigger to triggers/processed"""
        done = self._finish_trigger(trigger_id, self.triggers_processed_dir, result=result)
        if done:
            logger.info("Trigger %s processed", trigger_id)
        return done

    async def mark_trigger_processed_async(self, trigger_id: IdLike, result: str) -> bool:
        return await asyncio.to_thread(self.mark_trigger_processed, trigger_id, result)

    def mark_trigger_failed(self, trigger_id: IdLike, error: str) -> bool:
        """Move a trigger whose batch raised to triggers/failed"""
        done = self._finish_trigger(trigger_id, self.triggers_failed_dir, error=error)
        if done:
            logger.error("Trigger %s failed: %s", trigger_id, error)
        return done

    async def mark_trigger_failed_async(self, trigger_id: IdLike, error: str) -> bool:
        return await asyncio.to_thread(self.mark_trigger_failed, trigger_id, error)
