"""Capability subsystem public API.

Public API:
- CapabilityRegistry: Registration and lookup by name
- CapabilityInvoker: Validate, render, call, normalize, fall back
- ResultCache: Optional per-capability result cache

Types:
- Capability, CachePolicy, SessionPolicy
- SimplifiedRetry, CannedResponse
- Success, Recovered, Failure, FailureKind
"""

from medico.capabilities.builtin import (
    BUILTIN_CAPABILITIES,
    register_builtin_capabilities,
)
from medico.capabilities.cache import CacheStats, ResultCache, derive_cache_key
from medico.capabilities.invoker import CapabilityInvoker
from medico.capabilities.normalizer import normalize, strip_code_fence
from medico.capabilities.registry import (
    SESSION_CONTEXT_FIELDS,
    CapabilityRegistry,
    CompiledCapability,
    capability_from_dict,
    load_capability_file,
)
from medico.capabilities.schema import (
    Field,
    FieldKind,
    Schema,
    Violation,
    ViolationKind,
    boolean,
    enum,
    integer,
    list_of,
    number,
    obj,
    string,
)
from medico.capabilities.template import PromptTemplate, compile_template, render
from medico.capabilities.types import (
    CachePolicy,
    CannedResponse,
    Capability,
    Failure,
    FailureKind,
    Fallback,
    InvocationResult,
    OutputMode,
    Recovered,
    SessionPolicy,
    SimplifiedRetry,
    Success,
)

__all__ = [
    # Registry and invocation
    "BUILTIN_CAPABILITIES",
    "CapabilityInvoker",
    "CapabilityRegistry",
    "CompiledCapability",
    "SESSION_CONTEXT_FIELDS",
    "capability_from_dict",
    "load_capability_file",
    "register_builtin_capabilities",
    # Cache
    "CacheStats",
    "ResultCache",
    "derive_cache_key",
    # Schema
    "Field",
    "FieldKind",
    "Schema",
    "Violation",
    "ViolationKind",
    "boolean",
    "enum",
    "integer",
    "list_of",
    "number",
    "obj",
    "string",
    # Templates and normalization
    "PromptTemplate",
    "compile_template",
    "normalize",
    "render",
    "strip_code_fence",
    # Types
    "CachePolicy",
    "CannedResponse",
    "Capability",
    "Failure",
    "FailureKind",
    "Fallback",
    "InvocationResult",
    "OutputMode",
    "Recovered",
    "SessionPolicy",
    "SimplifiedRetry",
    "Success",
]
