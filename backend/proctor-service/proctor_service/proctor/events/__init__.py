"""Event derivation from detection frames"""

from .state_machine import EventStateMachine, is_communication_device, is_suspicious_object

__all__ = ["EventStateMachine", "is_communication_device", "is_suspicious_object"]
