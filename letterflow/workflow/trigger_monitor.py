"""
Trigger monitor

Polls the trigger partition and runs one orchestrator batch per trigger.
"""
from typing import Optional

from letterflow.config import get_settings
from letterflow.repositories.approval_queue import ApprovalQueue
from letterflow.utils.logger import get_logger
from letterflow.workflow.orchestrator import WorkflowOrchestrator
from letterflow.workflow.watchers import PollingWorker

settings = get_settings()
logger = get_logger(__name__)


class TriggerMonitor(PollingWorker):
    name = "TriggerMonitor"

    def __init__(
        self,
        queue: ApprovalQueue,
        orchestrator: WorkflowOrchestrator,
        poll_interval: Optional[float] = None,
    ):
        super().__init__(
            poll_interval if poll_interval is not None else settings.trigger_poll_interval_seconds
        )
        self.queue = queue
        self.orchestrator = orchestrator

    async def poll_once(self) -> int:
        triggers = await self.queue.list_pending_triggers_async()
        for trigger in triggers:
            logger.info(f"Processing trigger {trigger.trigger_id} (max_tasks={trigger.max_tasks})")
            try:
                finished = await self.orchestrator.process_workflow(trigger)
            except Exception as e:
                logger.error(f"Trigger {trigger.trigger_id} failed: {e}", exc_info=True)
                await self.queue.mark_trigger_failed_async(trigger.trigger_id, str(e))
                continue
            await self.queue.mark_trigger_processed_async(trigger.trigger_id, finished.result or "")
            logger.info(f"Trigger {trigger.trigger_id} done: {finished.result}")
        return len(triggers)
