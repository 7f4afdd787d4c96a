"""Documents built during issuance.  Pure functions, no I/O.

Three shapes go into the content store:

  metadata      display-oriented summary (issuer, subject, achievement,
                evidence, schema, colours)
  credential    the unsigned W3C VC body; the proof service signs it
  stored doc    metadata + the signed VC, the document whose CID is
                anchored on chain
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from app.core.clock import utcnow
from app.gateways.identity import DidSigner
from app.models.issuance import IssuanceRequest

VC_CONTEXTS = [
    "https://www.w3.org/2018/credentials/v1",
    "https://credverse.io/contexts/education/v1",
]
CREDENTIAL_SCHEMA = {
    "id": "https://credverse.io/schemas/education-credential.json",
    "type": "JsonSchemaValidator2018",
}
DOCUMENT_VERSION = "1.0"


def _iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def build_metadata(
    credential_id: str,
    request: IssuanceRequest,
    issuer: DidSigner,
    subject_did: str,
) -> dict[str, Any]:
    completion = request.graduation_date.isoformat() if request.graduation_date else None
    return {
        "credentialId": credential_id,
        "credentialType": request.credential_type,
        "issuer": {"name": issuer.name, "did": issuer.did, "logo": None},
        "subject": {
            "name": request.subject_name,
            "email": request.subject_email,
            "did": subject_did,
        },
        "achievement": {
            "name": request.course_name,
            "description": request.course_description or None,
            "type": request.credential_type,
            "grade": request.grade,
            "completionDate": completion,
        },
        "evidence": list(request.evidence),
        "schema": dict(CREDENTIAL_SCHEMA),
        "display": {"backgroundColor": "#ffffff", "textColor": "#000000", "logo": None},
    }


def build_credential(
    credential_id: str,
    request: IssuanceRequest,
    issuer: DidSigner,
    subject_did: str,
    issued_at: datetime,
) -> dict[str, Any]:
    credential: dict[str, Any] = {
        "@context": list(VC_CONTEXTS),
        "type": ["VerifiableCredential", "EducationCredential"],
        "id": credential_id,
        "issuer": {"id": issuer.did, "name": issuer.name},
        "issuanceDate": _iso(issued_at),
        "credentialSubject": {
            "id": subject_did,
            "name": request.subject_name,
            "email": request.subject_email,
            "degree": {
                "type": request.credential_type,
                "name": request.course_name,
                "institution": issuer.name,
                "graduationDate": (
                    request.graduation_date.isoformat() if request.graduation_date else None
                ),
                "grade": request.grade,
            },
        },
        "credentialSchema": dict(CREDENTIAL_SCHEMA),
    }
    if request.expiration_date is not None:
        credential["expirationDate"] = _iso(request.expiration_date)
    return credential


def build_stored_document(
    metadata: dict[str, Any],
    verifiable_credential: dict[str, Any],
    timestamp: datetime | None = None,
) -> dict[str, Any]:
    return {
        **metadata,
        "verifiableCredential": verifiable_credential,
        "version": DOCUMENT_VERSION,
        "timestamp": _iso(timestamp or utcnow()),
    }


def to_json_bytes(document: dict[str, Any]) -> bytes:
    return json.dumps(document, separators=(",", ":"), sort_keys=True).encode("utf-8")
