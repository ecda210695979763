from .models import ConfirmationDecision, ConfirmationRequest
from .store import ConfirmationStore, ConfirmationTicket

__all__ = [
    "ConfirmationDecision",
    "ConfirmationRequest",
    "ConfirmationStore",
    "ConfirmationTicket",
]
