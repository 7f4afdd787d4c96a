"""Error taxonomy shared by the issuance and verification flows.

Every failure the core can hit maps to exactly one of these classes.
Gateway implementations translate library exceptions (httpx, web3,
nacl) into them at the boundary, so nothing above the gateways ever
sees a bare transport error.

  ValidationError    caller input is malformed            → 400
  NotFoundError      credential / content id is unknown   → 404
  UnavailableError   a collaborator is down or timed out  → 503
  TooLargeError      content exceeded the size cap        → 413
  ProofError         signature / proof check failed       → 400
  ContractRejection  the registry reverted a write        → 400

Which of these propagate and which are folded into a verdict field is
decided by the orchestrators, not here.
"""

from __future__ import annotations


class CredentialServiceError(Exception):
    """Base class.  ``code`` is the stable machine-readable identifier."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(CredentialServiceError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(CredentialServiceError):
    code = "NOT_FOUND"
    status_code = 404


class UnavailableError(CredentialServiceError):
    code = "UNAVAILABLE"
    status_code = 503

    def __init__(
        self, message: str, *, source: str = "unknown", details: str | None = None
    ) -> None:
        super().__init__(message, details=details)
        self.source = source


class TooLargeError(CredentialServiceError):
    code = "TOO_LARGE"
    status_code = 413

    def __init__(self, message: str, *, limit: int) -> None:
        super().__init__(message)
        self.limit = limit


class ProofError(CredentialServiceError):
    code = "PROOF_ERROR"
    status_code = 400


class ContractRejection(CredentialServiceError):
    code = "CONTRACT_ERROR"
    status_code = 400

    def __init__(self, reason: str, *, details: str | None = None) -> None:
        super().__init__(reason, details=details)
        self.reason = reason
