"""
Directory watchers

Each watcher polls one approval partition. A record is claimed by renaming
it to ``*.json.processing``; only the worker whose rename succeeds processes
it, so two watcher instances never handle the same record twice.

On start a watcher first recovers abandoned claims and then drains
everything already waiting in its partition, which resumes work interrupted
by a crash. Abandoned approved records are parked in ``archive/failed``
rather than retried, because their letter may already have been mailed.
"""
import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from letterflow.config import get_settings
from letterflow.errors import DeserializationError, LetterflowError, StorageError
from letterflow.models.approval import ApprovalData, ApprovalState
from letterflow.repositories.approval_queue import ApprovalQueue
from letterflow.utils.logger import get_logger
from letterflow.workflow.orchestrator import WorkflowOrchestrator

settings = get_settings()
logger = get_logger(__name__)

STALE_APPROVAL_REASON = (
    "Processing was interrupted and the letter may already have been sent; "
    "verify the dispatch before re-queueing"
)


class PollingWorker(ABC):
    """Run `poll_once` every `poll_interval` seconds until stopped"""

    name = "worker"

    def __init__(self, poll_interval: Optional[float] = None):
        self.poll_interval = poll_interval if poll_interval is not None else settings.watcher_poll_interval_seconds
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    async def on_start(self) -> None:
        """Startup recovery hook"""

    @abstractmethod
    async def poll_once(self) -> int:
        """Process everything currently visible; returns how many items were handled"""

    async def run(self) -> None:
        logger.info(f"Starting {self.name} (interval {self.poll_interval}s)")
        await self.on_start()
        while not self._stop.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"{self.name} poll failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info(f"{self.name} stopped")


class DirectoryWatcher(PollingWorker):
    """Claims and processes records of one approval state"""

    state: ApprovalState

    def __init__(
        self,
        queue: ApprovalQueue,
        orchestrator: WorkflowOrchestrator,
        poll_interval: Optional[float] = None,
        stale_claim_seconds: Optional[float] = None,
    ):
        super().__init__(poll_interval)
        self.queue = queue
        self.orchestrator = orchestrator
        self.stale_claim_seconds = (
            stale_claim_seconds if stale_claim_seconds is not None else settings.stale_claim_seconds
        )

    async def recover_stale_claims(self) -> None:
        """Return claims abandoned by a crashed worker to the partition"""
        released = await asyncio.to_thread(
            self.queue.release_stale_claims, self.state, self.stale_claim_seconds
        )
        if released:
            logger.warning(f"{self.name}: released {released} stale claims")

    async def on_start(self) -> None:
        await self.recover_stale_claims()
        count = await self.poll_once()
        if count:
            logger.info(f"{self.name}: processed {count} existing records on startup")
        else:
            logger.info(f"{self.name}: no existing records found")

    async def poll_once(self) -> int:
        handled = 0
        for path in await asyncio.to_thread(self.queue.list_claimable, self.state):
            claimed = await asyncio.to_thread(self.queue.claim, path)
            if claimed is None:
                logger.debug(f"{self.name}: {path.name} already claimed")
                continue
            handled += 1
            approval = await self._read(claimed)
            if approval is not None:
                await self.process(claimed, approval)
        return handled

    async def _read(self, claimed: Path) -> Optional[ApprovalData]:
        try:
            approval = await asyncio.to_thread(self.queue.read_claimed, claimed)
        except (DeserializationError, StorageError) as e:
            logger.error(f"{self.name}: unreadable record {claimed.name}: {e}")
            try:
                await asyncio.to_thread(self.queue.quarantine, claimed, str(e))
            except StorageError as archive_error:
                logger.error(f"{self.name}: failed to quarantine {claimed.name}: {archive_error}")
            return None
        return approval.with_unescaped_letters()

    @abstractmethod
    async def process(self, claimed: Path, approval: ApprovalData) -> None:
        ...


class ApprovalWatcher(DirectoryWatcher):
    """Sends approved letters and archives the consumed records"""

    name = "ApprovalWatcher"
    state = ApprovalState.APPROVED

    async def recover_stale_claims(self) -> None:
        """
        Park abandoned claims in archive/failed instead of retrying them

        The letter may already be in the post when a claim is abandoned, so
        a stale approved record is never sent again automatically.
        """
        parked = await asyncio.to_thread(
            self.queue.park_stale_claims,
            self.state,
            self.stale_claim_seconds,
            STALE_APPROVAL_REASON,
        )
        if parked:
            logger.error(
                f"{self.name}: parked {parked} abandoned approvals in archive/failed; "
                "check whether their letters were sent"
            )

    async def process(self, claimed: Path, approval: ApprovalData) -> None:
        logger.info(
            f"Processing approval {approval.approval_id} for task {approval.task_id} "
            f"(recipient: {approval.recipient_name})"
        )
        try:
            result = await self.orchestrator.continue_after_approval(approval)
        except Exception as e:
            logger.error(f"Failed to continue workflow for approval {approval.approval_id}: {e}")
            try:
                await asyncio.to_thread(self.queue.archive_failed, claimed, approval, str(e))
            except StorageError as archive_error:
                logger.error(f"Failed to archive approval {approval.approval_id}: {archive_error}")
            return

        logger.info(f"Approval {approval.approval_id} completed: {result}")
        try:
            await asyncio.to_thread(self.queue.archive_processed, claimed, approval)
        except StorageError as e:
            logger.error(f"Failed to archive processed approval {approval.approval_id}: {e}")


class NeedsImprovementWatcher(DirectoryWatcher):
    """Regenerates letters from reviewer feedback and resends them for approval"""

    name = "NeedsImprovementWatcher"
    state = ApprovalState.NEEDS_IMPROVEMENT

    async def _fail(self, claimed: Path, approval: ApprovalData, reason: str) -> None:
        try:
            await asyncio.to_thread(self.queue.fail_claimed, claimed, approval, reason)
        except LetterflowError as e:
            logger.error(f"Could not move approval {approval.approval_id} to failed: {e}")
            try:
                await asyncio.to_thread(self.queue.archive_failed, claimed, approval, reason)
            except StorageError as archive_error:
                logger.error(f"Failed to archive approval {approval.approval_id}: {archive_error}")

    async def process(self, claimed: Path, approval: ApprovalData) -> None:
        feedback = approval.latest_feedback()
        if feedback is None or not feedback.text.strip():
            logger.error(f"Approval {approval.approval_id} needs improvement but has no feedback")
            await self._fail(claimed, approval, "No feedback found for improvement request")
            return

        try:
            improved = await self.orchestrator.process_improvement_request(approval, feedback.text)
        except Exception as e:
            logger.error(f"Improvement of approval {approval.approval_id} failed: {e}")
            await self._fail(claimed, approval, f"Improvement failed: {e}")
            return

        try:
            await asyncio.to_thread(self.queue.complete_claimed, claimed, improved)
        except LetterflowError as e:
            # the new prompt is already live, its buttons now point at a failed record
            reason = f"Improved letter was sent for review but could not be saved: {e}"
            logger.error(f"Approval {approval.approval_id}: {reason}")
            await self.orchestrator.report_approval_error(approval, reason)
            await self._fail(claimed, approval, reason)
            return

        logger.info(
            f"Approval {improved.approval_id} moved to {improved.state.value} "
            f"with iteration {improved.current_iteration()}"
        )
