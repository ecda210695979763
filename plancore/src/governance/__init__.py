from .confirmation_gate import ConfirmationGate

__all__ = ["ConfirmationGate"]
