"""Exception types raised at Medico's boundaries.

Capability calls never raise these to their callers: the invoker converts
runtime failures into tagged results. Exceptions are reserved for the
gateway/store boundaries and for misconfiguration detected at startup.
"""


class MedicoError(Exception):
    """Base class for Medico errors."""


class TransportError(MedicoError):
    """The model endpoint was unreachable, timed out, or refused the request."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class StoreError(MedicoError):
    """Session persistence failed."""


class TemplateError(MedicoError):
    """A prompt template is malformed or references undeclared fields."""


class CapabilityConfigError(MedicoError):
    """A capability definition is inconsistent."""


class CapabilityNotFoundError(MedicoError, KeyError):
    """No capability is registered under the requested name."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "capability not found"
