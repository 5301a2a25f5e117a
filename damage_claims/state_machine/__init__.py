from .machine import ClaimStateMachine, InvalidTransition

__all__ = ["ClaimStateMachine", "InvalidTransition"]
