"""Collaborator clients and the production WorkflowSteps"""
from letterflow.services.baserow import BaserowClient
from letterflow.services.dossier import DossierClient
from letterflow.services.letter_service import LetterServiceClient
from letterflow.services.letterexpress import LetterExpressClient
from letterflow.services.nango import NangoClient, TokenCache
from letterflow.services.pdf import PdfService
from letterflow.services.telegram import Notifier, TelegramNotifier
from letterflow.services.zoho import ZohoAuthenticator, ZohoClient
from letterflow.services.workflow_processor import WorkflowProcessor

__all__ = [
    "BaserowClient",
    "DossierClient",
    "LetterServiceClient",
    "LetterExpressClient",
    "NangoClient",
    "TokenCache",
    "PdfService",
    "Notifier",
    "TelegramNotifier",
    "ZohoAuthenticator",
    "ZohoClient",
    "WorkflowProcessor",
]
