# Invocation Layer
# Calls the compute functions behind registered procedures

from .ports import (
    ProcedureInvoker,
    InvocationError,
    InvocationResponse,
    decode_response,
    invoke_procedure,
)
from .local import LocalInvoker

__all__ = [
    "ProcedureInvoker",
    "InvocationError",
    "InvocationResponse",
    "decode_response",
    "invoke_procedure",
    "LocalInvoker",
]
