# Submission Layer
# Client -> substrate leg of the session rendezvous

from .endpoint import (
    SubmissionEndpoint,
    SubmissionFormat,
    SubmissionResult,
    WrappedSubmission,
)

__all__ = [
    "SubmissionEndpoint",
    "SubmissionFormat",
    "SubmissionResult",
    "WrappedSubmission",
]
