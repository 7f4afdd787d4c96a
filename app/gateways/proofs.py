"""Credential proofs: Ed25519 signatures over canonical JSON.

The signed payload is the document without its ``proof`` member,
serialized with sorted keys and compact separators.  A client that
reorders keys or reformats whitespace still verifies; a changed value
does not.

Verification never raises for bad input: every problem found is
collected into ProofCheck.errors and ``verified`` is False.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

import base58
from nacl.exceptions import BadSignatureError

from app.core.clock import Clock, utcnow
from app.core.errors import ProofError
from app.gateways.identity import (
    DidSigner,
    verification_method_for,
    verify_key_from_did,
)
from app.models.verdict import PresentationProofCheck, ProofCheck

PROOF_TYPE = "Ed25519Signature2020"
VC_CONTEXT = "https://www.w3.org/2018/credentials/v1"


def canonical_json(document: dict[str, Any]) -> bytes:
    unsigned = {k: v for k, v in document.items() if k != "proof"}
    return json.dumps(unsigned, separators=(",", ":"), sort_keys=True).encode("utf-8")


def issuer_id(document: dict[str, Any]) -> str | None:
    issuer = document.get("issuer")
    if isinstance(issuer, dict):
        issuer = issuer.get("id")
    return issuer if isinstance(issuer, str) else None


def _isoformat(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def _parse_time(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return moment if moment.tzinfo else moment.replace(tzinfo=UTC)


@runtime_checkable
class ProofService(Protocol):
    def issue(self, document: dict[str, Any], signer: DidSigner) -> dict[str, Any]: ...
    def verify(self, document: Any) -> ProofCheck: ...
    def verify_presentation(self, presentation: Any) -> PresentationProofCheck: ...
    def create_presentation(
        self,
        credentials: list[dict[str, Any]],
        holder: DidSigner,
        *,
        challenge: str | None = None,
        domain: str | None = None,
    ) -> dict[str, Any]: ...


class Ed25519ProofService:
    def __init__(self, *, clock: Clock = utcnow) -> None:
        self._clock = clock

    def _sign(
        self, document: dict[str, Any], signer: DidSigner, purpose: str, **extra: str
    ) -> dict[str, Any]:
        if not isinstance(document, dict):
            raise ProofError("Only JSON objects can be signed")
        signature = signer.signing_key.sign(canonical_json(document)).signature
        proof = {
            "type": PROOF_TYPE,
            "created": _isoformat(self._clock()),
            "proofPurpose": purpose,
            "verificationMethod": verification_method_for(signer.did),
            "proofValue": "z" + base58.b58encode(signature).decode("ascii"),
        }
        proof.update({k: v for k, v in extra.items() if v})
        return {**document, "proof": proof}

    def issue(self, document: dict[str, Any], signer: DidSigner) -> dict[str, Any]:
        """Attach an assertionMethod proof.  The issuer must be the signer."""
        if issuer_id(document) != signer.did:
            raise ProofError("Document issuer does not match the signing DID")
        return self._sign(document, signer, "assertionMethod")

    def _check_signature(self, document: dict[str, Any], controller: str | None) -> list[str]:
        proof = document.get("proof")
        if not isinstance(proof, dict):
            return ["Missing proof"]

        errors: list[str] = []
        if proof.get("type") != PROOF_TYPE:
            errors.append(f"Unsupported proof type: {proof.get('type')!r}")
        method = proof.get("verificationMethod")
        proof_value = proof.get("proofValue")
        if not isinstance(method, str) or not method:
            errors.append("Missing verificationMethod in proof")
            return errors
        if not isinstance(proof_value, str) or not proof_value.startswith("z"):
            errors.append("Missing or malformed proofValue")
            return errors
        if controller is None or method.split("#", 1)[0] != controller:
            errors.append("Signer does not match verification method")

        try:
            verify_key = verify_key_from_did(method)
            signature = base58.b58decode(proof_value[1:])
            verify_key.verify(canonical_json(document), signature)
        except BadSignatureError:
            errors.append("Invalid signature - document has been tampered with")
        except ValueError as exc:
            errors.append(f"Unresolvable verification method: {exc}")
        return errors

    def verify(self, document: Any) -> ProofCheck:
        if not isinstance(document, dict):
            return ProofCheck(verified=False, errors=["Credential must be a JSON object"])

        errors = [
            f"Missing required field: {name}"
            for name in ("issuer", "credentialSubject", "proof")
            if name not in document
        ]
        if "proof" in document:
            errors.extend(self._check_signature(document, issuer_id(document)))

        expires = document.get("expirationDate")
        if expires is not None:
            expires_at = _parse_time(expires)
            if expires_at is None:
                errors.append("Malformed expirationDate")
            elif expires_at <= self._clock():
                errors.append("Credential has expired")

        return ProofCheck(verified=not errors, errors=errors)

    def verify_presentation(self, presentation: Any) -> PresentationProofCheck:
        if not isinstance(presentation, dict):
            return PresentationProofCheck(
                verified=False, holder=None, errors=["Presentation must be a JSON object"]
            )

        holder = presentation.get("holder")
        holder = holder if isinstance(holder, str) else None
        errors: list[str] = []
        types = presentation.get("type") or []
        if "VerifiablePresentation" not in (types if isinstance(types, list) else [types]):
            errors.append("type must include VerifiablePresentation")
        if holder is None:
            errors.append("Missing required field: holder")
        errors.extend(self._check_signature(presentation, holder))

        embedded = presentation.get("verifiableCredential", [])
        if isinstance(embedded, dict):
            embedded = [embedded]
        credentials: list[dict[str, Any]] = []
        for item in embedded if isinstance(embedded, list) else []:
            if isinstance(item, dict):
                credentials.append(item)
            else:
                errors.append("Unsupported embedded credential format")

        return PresentationProofCheck(
            verified=not errors, holder=holder, credentials=credentials, errors=errors
        )

    def create_presentation(
        self,
        credentials: list[dict[str, Any]],
        holder: DidSigner,
        *,
        challenge: str | None = None,
        domain: str | None = None,
    ) -> dict[str, Any]:
        presentation = {
            "@context": [VC_CONTEXT],
            "type": ["VerifiablePresentation"],
            "holder": holder.did,
            "verifiableCredential": list(credentials),
        }
        return self._sign(
            presentation,
            holder,
            "authentication",
            challenge=challenge or "",
            domain=domain or "",
        )
