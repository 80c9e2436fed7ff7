"""Medico: capability invocation and recovery for medical study tools."""

from medico.capabilities import (
    Capability,
    CapabilityInvoker,
    CapabilityRegistry,
    Failure,
    FailureKind,
    InvocationResult,
    Recovered,
    Schema,
    Success,
)
from medico.client import CallOutcome, MedicoClient, create_client
from medico.sessions import SessionState, SessionStateMachine

__version__ = "0.1.0"

__all__ = [
    "CallOutcome",
    "Capability",
    "CapabilityInvoker",
    "CapabilityRegistry",
    "Failure",
    "FailureKind",
    "InvocationResult",
    "MedicoClient",
    "Recovered",
    "Schema",
    "SessionState",
    "SessionStateMachine",
    "Success",
    "create_client",
]
