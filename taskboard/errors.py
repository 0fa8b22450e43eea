from __future__ import annotations


class TaskboardError(Exception):
  status_code = 500
  code = "internal_error"

  def __init__(self, message: str, *, detail: str | None = None) -> None:
    super().__init__(message)
    self.message = message
    # internal detail, only exposed outside production
    self.detail = detail


class ValidationError(TaskboardError):
  status_code = 400
  code = "validation_error"


class NotFoundError(TaskboardError):
  status_code = 404
  code = "not_found"


class PermissionDenied(TaskboardError):
  status_code = 403
  code = "forbidden"


class PolicyViolation(TaskboardError):
  status_code = 400
  code = "policy_violation"


class ConcurrencyHazard(TaskboardError):
  status_code = 409
  code = "version_conflict"


class TransactionFailure(TaskboardError):
  status_code = 500
  code = "transaction_failed"


class VerificationFailure(TaskboardError):
  """The write committed but a fresh read disagrees with it. Re-read before retrying."""

  status_code = 500
  code = "verification_failed"
