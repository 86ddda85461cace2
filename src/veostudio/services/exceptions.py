"""Service error hierarchy for Vertex AI video generation.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (rate limits, high load, malformed responses)
- PermanentError: Non-retryable errors (billing, rejected requests)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on the next poll.

    Examples:
    - RESOURCE_EXHAUSTED (8) while the operation is not done
    - "high load" responses
    - Non-JSON responses from the operation endpoint
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Billing not enabled on the Google Cloud project
    - Invalid request parameters (400)
    - Operation finished with an error
    """

    pass


# Submission errors carry a message that is safe to show to the user
class SubmissionError(PermanentError):
    """Video submission failed; the job has been marked failed."""

    default_message = "Video generation could not be started. Please try again."

    def __init__(self, message: str | None = None, user_message: str | None = None):
        self.user_message = user_message or self.default_message
        super().__init__(message or self.user_message)


class CredentialAcquisitionError(SubmissionError):
    """No access token could be obtained from the service account."""

    default_message = (
        "Could not obtain a Google Cloud access token. "
        "Check the service account configuration."
    )


class UpstreamBillingError(SubmissionError):
    """Vertex AI rejected the request because billing is not enabled."""

    default_message = (
        "Veo requires billing to be enabled on your Google Cloud project. "
        "Please enable billing to continue."
    )


class UpstreamError(SubmissionError):
    """Vertex AI returned a non-success status for the generation request."""

    def __init__(self, status_code: int, upstream_message: str = ""):
        self.status_code = status_code
        self.upstream_message = upstream_message
        super().__init__(
            message=f"Vertex submit failed ({status_code}): {upstream_message}",
            user_message=f"Vertex engine error ({status_code}): {upstream_message}".rstrip(": "),
        )


# Reconciliation errors are absorbed by the reconciler
class TransientUpstreamError(TransientError):
    """Operation reported a retryable error (rate limit, high load) and is not done."""

    pass


class MalformedUpstreamResponse(TransientError):
    """Operation status response could not be parsed (wrong content type, bad JSON)."""

    pass


class Unauthorized(ServiceError):
    """No signed-in user for an operation that requires one."""

    pass
