"""
Runtime wiring of the queue, collaborator clients and orchestrator
"""
from functools import lru_cache

from letterflow.config import get_settings
from letterflow.repositories.approval_queue import ApprovalQueue
from letterflow.services import (
    BaserowClient,
    DossierClient,
    LetterExpressClient,
    LetterServiceClient,
    PdfService,
    TelegramNotifier,
    WorkflowProcessor,
    ZohoAuthenticator,
)
from letterflow.utils.logger import get_logger
from letterflow.workflow.orchestrator import WorkflowOrchestrator

settings = get_settings()
logger = get_logger(__name__)


@lru_cache()
def get_queue() -> ApprovalQueue:
    """Shared approval queue instance"""
    return ApprovalQueue()


async def build_orchestrator(queue: ApprovalQueue) -> WorkflowOrchestrator:
    """
    Authenticate against the CRM and assemble the production orchestrator

    Raises:
        ConfigurationError: Required credentials are missing
        AuthenticationError: The CRM token cannot be obtained
    """
    settings.validate_required()
    zoho = await ZohoAuthenticator().authenticate()
    processor = WorkflowProcessor(
        zoho=zoho,
        baserow=BaserowClient(),
        dossier=DossierClient(),
        letters=LetterServiceClient(),
        pdf=PdfService(),
        letterexpress=LetterExpressClient(),
        notifier=TelegramNotifier(),
        queue=queue,
    )
    logger.info("Workflow orchestrator ready")
    return WorkflowOrchestrator(processor)
