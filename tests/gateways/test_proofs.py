from __future__ import annotations

import copy

import pytest

from app.core.errors import ProofError
from app.gateways.identity import DidSigner
from app.gateways.proofs import VC_CONTEXT, Ed25519ProofService, canonical_json
from tests.conftest import FakeClock


def _credential(issuer: DidSigner, **extra) -> dict:
    return {
        "@context": [VC_CONTEXT],
        "id": "cred-1",
        "type": ["VerifiableCredential", "EducationalCredential"],
        "issuer": issuer.did,
        "issuanceDate": "2026-01-15T12:00:00Z",
        "credentialSubject": {"id": "did:example:alice", "name": "Alice"},
        **extra,
    }


def test_canonical_json_ignores_proof_and_key_order() -> None:
    a = {"b": 1, "a": {"y": 2, "x": 1}, "proof": {"anything": True}}
    b = {"a": {"x": 1, "y": 2}, "b": 1}
    assert canonical_json(a) == canonical_json(b) == b'{"a":{"x":1,"y":2},"b":1}'


def test_issue_then_verify() -> None:
    issuer = DidSigner.generate("Uni")
    service = Ed25519ProofService(clock=FakeClock())
    signed = service.issue(_credential(issuer), issuer)

    proof = signed["proof"]
    assert proof["type"] == "Ed25519Signature2020"
    assert proof["proofPurpose"] == "assertionMethod"
    assert proof["verificationMethod"].startswith(issuer.did + "#")
    assert proof["proofValue"].startswith("z")
    assert proof["created"] == "2026-01-15T12:00:00Z"

    check = service.verify(signed)
    assert check.verified, check.errors
    assert check.errors == []


def test_issue_rejects_foreign_issuer() -> None:
    issuer = DidSigner.generate()
    other = DidSigner.generate()
    with pytest.raises(ProofError):
        Ed25519ProofService().issue(_credential(other), issuer)


def test_tampered_document_fails() -> None:
    issuer = DidSigner.generate()
    service = Ed25519ProofService()
    signed = service.issue(_credential(issuer), issuer)

    tampered = copy.deepcopy(signed)
    tampered["credentialSubject"]["name"] = "Mallory"
    check = service.verify(tampered)
    assert not check.verified
    assert any("tampered" in e for e in check.errors)


def test_proof_signed_by_someone_else_fails() -> None:
    issuer = DidSigner.generate()
    impostor = DidSigner.generate()
    service = Ed25519ProofService()
    forged = service.issue(_credential(impostor), impostor)
    forged["issuer"] = issuer.did

    check = service.verify(forged)
    assert not check.verified
    assert "Signer does not match verification method" in check.errors


def test_missing_fields_and_proof_are_reported() -> None:
    check = Ed25519ProofService().verify({"id": "cred-1"})
    assert not check.verified
    assert "Missing required field: issuer" in check.errors
    assert "Missing required field: proof" in check.errors


def test_non_object_is_rejected_without_raising() -> None:
    check = Ed25519ProofService().verify("not a credential")
    assert not check.verified


def test_unsupported_proof_type() -> None:
    issuer = DidSigner.generate()
    service = Ed25519ProofService()
    signed = service.issue(_credential(issuer), issuer)
    signed["proof"]["type"] = "RsaSignature2018"
    check = service.verify(signed)
    assert any("Unsupported proof type" in e for e in check.errors)


def test_expired_credential_fails_proof_check() -> None:
    clock = FakeClock()
    issuer = DidSigner.generate()
    service = Ed25519ProofService(clock=clock)
    signed = service.issue(_credential(issuer, expirationDate="2026-02-01T00:00:00Z"), issuer)
    assert service.verify(signed).verified

    clock.advance(days=30)
    check = service.verify(signed)
    assert "Credential has expired" in check.errors


def test_naive_expiration_date_is_read_as_utc() -> None:
    issuer = DidSigner.generate()
    service = Ed25519ProofService(clock=FakeClock())
    signed = service.issue(_credential(issuer, expirationDate="2030-01-01T00:00:00"), issuer)
    assert service.verify(signed).verified


def test_presentation_round_trip() -> None:
    issuer = DidSigner.generate()
    holder = DidSigner.generate()
    service = Ed25519ProofService()
    vc = service.issue(_credential(issuer), issuer)

    vp = service.create_presentation([vc], holder, challenge="nonce-1", domain="verifier.test")
    assert vp["proof"]["proofPurpose"] == "authentication"
    assert vp["proof"]["challenge"] == "nonce-1"

    check = service.verify_presentation(vp)
    assert check.verified, check.errors
    assert check.holder == holder.did
    assert check.credentials == [vc]


def test_presentation_with_swapped_holder_fails() -> None:
    holder = DidSigner.generate()
    service = Ed25519ProofService()
    vp = service.create_presentation([], holder)
    vp["holder"] = DidSigner.generate().did

    check = service.verify_presentation(vp)
    assert not check.verified


def test_presentation_shape_errors() -> None:
    service = Ed25519ProofService()
    assert not service.verify_presentation([]).verified

    check = service.verify_presentation(
        {"type": ["VerifiableCredential"], "verifiableCredential": ["eyJhbGciOi..."]}
    )
    assert "type must include VerifiablePresentation" in check.errors
    assert "Missing required field: holder" in check.errors
    assert "Unsupported embedded credential format" in check.errors
