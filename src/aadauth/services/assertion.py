"""Signed JWT client assertions for certificate authentication.

A client assertion is a short-lived JWT signed with the app's certificate
key and sent instead of a client secret. It's built fresh for every token
request and never cached.

Anything that can report its key type and thumbprint and sign a byte
buffer can be used as the certificate: local PEM or PFX files are handled
here, and a key-vault-backed signer can be plugged in through
``RemoteCertificate``.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Protocol, runtime_checkable

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.hazmat.primitives.serialization import pkcs12

from aadauth.models.errors import InvalidCertificateError
from aadauth.primitives.endpoints import aad_uri
from aadauth.primitives.jwt import base64url_encode, encode_segment

logger = logging.getLogger(__name__)

SIGNATURE_SIZES = (256, 384, 512)

_PEM_BLOCK = re.compile(
    rb"-----BEGIN ([A-Z0-9 ]+)-----\r?\n.+?\r?\n-----END \1-----", re.DOTALL
)


@runtime_checkable
class CertificateSigner(Protocol):
    """Protocol for anything that can sign a client assertion."""

    @property
    def key_type(self) -> str:
        """Key type: "RSA" or "EC"."""
        ...

    @property
    def thumbprint(self) -> str:
        """Base64url-encoded SHA-1 thumbprint of the DER certificate."""
        ...

    def sign(self, data: bytes, algorithm: str) -> bytes:
        """Return the raw JWS signature of ``data`` for a JWS algorithm."""
        ...


def _hash_for(size: int) -> hashes.HashAlgorithm:
    if size == 256:
        return hashes.SHA256()
    if size == 384:
        return hashes.SHA384()
    if size == 512:
        return hashes.SHA512()
    raise InvalidCertificateError(
        f"Unsupported signature size {size}; expected one of {SIGNATURE_SIZES}"
    )


def _size_of(algorithm: str) -> int:
    return int(algorithm[2:])


class LocalCertificate:
    """A private key and certificate held in process memory."""

    def __init__(self, private_key: Any, certificate: x509.Certificate):
        self._key = private_key
        self._certificate = certificate

    @property
    def key_type(self) -> str:
        if isinstance(self._key, rsa.RSAPrivateKey):
            return "RSA"
        if isinstance(self._key, ec.EllipticCurvePrivateKey):
            return "EC"
        raise InvalidCertificateError(
            f"Unsupported key type: {type(self._key).__name__}"
        )

    @property
    def thumbprint(self) -> str:
        return base64url_encode(self._certificate.fingerprint(hashes.SHA1()))

    def sign(self, data: bytes, algorithm: str) -> bytes:
        digest = _hash_for(_size_of(algorithm))

        if self.key_type == "RSA":
            return self._key.sign(data, padding.PKCS1v15(), digest)

        # JWS wants the fixed-width r||s form, not DER
        der = self._key.sign(data, ec.ECDSA(digest))
        r, s = decode_dss_signature(der)
        width = (self._key.curve.key_size + 7) // 8
        return r.to_bytes(width, "big") + s.to_bytes(width, "big")


def _read_certificate_file(path: str | os.PathLike[str]) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise InvalidCertificateError(f"Unable to read certificate file {path}: {e}") from e


class PemCertificate(LocalCertificate):
    """Certificate read from a PEM file holding both the key and the cert."""

    @classmethod
    def from_file(
        cls, path: str | os.PathLike[str], password: bytes | None = None
    ) -> PemCertificate:
        return cls.from_bytes(_read_certificate_file(path), password)

    @classmethod
    def from_bytes(cls, data: bytes, password: bytes | None = None) -> PemCertificate:
        blocks = {m.group(1).decode("ascii"): m.group(0) for m in _PEM_BLOCK.finditer(data)}

        key_block = next((b for name, b in blocks.items() if "PRIVATE KEY" in name), None)
        cert_block = blocks.get("CERTIFICATE")
        if key_block is None or cert_block is None:
            raise InvalidCertificateError(
                "PEM file must contain both a private key and a certificate"
            )

        try:
            key = serialization.load_pem_private_key(key_block, password=password)
            certificate = x509.load_pem_x509_certificate(cert_block)
        except ValueError as e:
            raise InvalidCertificateError(f"Unable to read PEM certificate: {e}") from e
        return cls(key, certificate)


class PfxCertificate(LocalCertificate):
    """Certificate read from a PKCS#12 (PFX) bundle."""

    @classmethod
    def from_file(
        cls, path: str | os.PathLike[str], password: bytes | None = None
    ) -> PfxCertificate:
        try:
            key, certificate, _ = pkcs12.load_key_and_certificates(
                _read_certificate_file(path), password
            )
        except ValueError as e:
            raise InvalidCertificateError(f"Unable to read PFX certificate: {e}") from e

        if key is None or certificate is None:
            raise InvalidCertificateError(
                "PFX bundle must contain both a private key and a certificate"
            )
        return cls(key, certificate)


@dataclass(frozen=True)
class RemoteCertificate:
    """Certificate whose key lives in a remote key vault.

    The vault signs a precomputed digest, so ``sign_digest`` receives the
    SHA-2 hash of the signing input and the JWS algorithm name.
    """

    key_type: str
    thumbprint: str
    sign_digest: Callable[[bytes, str], bytes]

    def sign(self, data: bytes, algorithm: str) -> bytes:
        digest = getattr(hashlib, f"sha{_size_of(algorithm)}")(data).digest()
        return self.sign_digest(digest, algorithm)


def load_certificate(
    certificate: str | os.PathLike[str], password: bytes | None = None
) -> LocalCertificate:
    """Load a certificate file, choosing PFX or PEM by its extension."""
    if Path(certificate).suffix.lower() in (".pfx", ".p12"):
        return PfxCertificate.from_file(certificate, password)
    return PemCertificate.from_file(certificate, password)


def resolve_signer(certificate: Any) -> CertificateSigner:
    """Turn a file path or signer object into a CertificateSigner."""
    if isinstance(certificate, (str, os.PathLike)):
        return load_certificate(certificate)
    if isinstance(certificate, CertificateSigner):
        return certificate
    raise InvalidCertificateError(
        f"Invalid certificate: {type(certificate).__name__} can't sign an assertion"
    )


@dataclass(frozen=True)
class CertificateAssertion:
    """Inputs for building a client assertion from a certificate."""

    certificate: Any
    duration: int = 3600
    signature_size: int = 256
    claims: dict[str, Any] = field(default_factory=dict)

    def fingerprint_fields(self) -> dict[str, Any]:
        if isinstance(self.certificate, (str, os.PathLike)):
            certificate_id = os.fspath(self.certificate)
        else:
            certificate_id = getattr(self.certificate, "thumbprint", None)

        return {
            "certificate": certificate_id,
            "duration": self.duration,
            "signature_size": self.signature_size,
            "claims": self.claims,
        }


def cert_assertion(
    certificate: Any, duration: int = 3600, signature_size: int = 256, **claims: Any
) -> CertificateAssertion:
    """Customise a client assertion.

    Args:
        certificate: A PEM/PFX file path or a CertificateSigner
        duration: Requested validity of the assertion in seconds
        signature_size: Size of the SHA-2 digest: 256, 384 or 512
        **claims: Custom claims merged over the standard ones

    Returns:
        A CertificateAssertion to pass as the certificate of a token request
    """
    if signature_size not in SIGNATURE_SIZES:
        raise InvalidCertificateError(
            f"Unsupported signature size {signature_size}; "
            f"expected one of {SIGNATURE_SIZES}"
        )
    return CertificateAssertion(certificate, duration, signature_size, dict(claims))


def as_assertion(certificate: Any) -> CertificateAssertion | None:
    if certificate is None or isinstance(certificate, CertificateAssertion):
        return certificate
    return cert_assertion(certificate)


def sign_assertion(signer: CertificateSigner, claims: dict[str, Any], size: int) -> str:
    """Sign a claim set into a compact JWS.

    The algorithm follows the key type: RS{size} for RSA, ES{size} for EC.
    The header carries the certificate thumbprint as both ``x5t`` and
    ``kid`` so the provider can find the public key.
    """
    key_type = signer.key_type
    if key_type == "RSA":
        algorithm = f"RS{size}"
    elif key_type in ("EC", "ECDSA"):
        algorithm = f"ES{size}"
    else:
        raise InvalidCertificateError(f"Unsupported key type: {key_type}")

    header = {
        "alg": algorithm,
        "typ": "JWT",
        "x5t": signer.thumbprint,
        "kid": signer.thumbprint,
    }
    signing_input = f"{encode_segment(header)}.{encode_segment(claims)}"
    signature = signer.sign(signing_input.encode("ascii"), algorithm)
    return f"{signing_input}.{base64url_encode(signature)}"


def build_assertion(
    assertion: Any,
    tenant: str,
    app: str | None,
    aad_host: str,
    version: int,
    now: float | None = None,
) -> str | None:
    """Build and sign a client assertion for a token request.

    Args:
        assertion: A CertificateAssertion, a certificate accepted by
            ``cert_assertion``, or None
        tenant: Normalized tenant
        app: Client ID, used as issuer and subject
        aad_host: Identity provider host
        version: Protocol version
        now: Current Unix time; defaults to the clock

    Returns:
        The encoded JWT, or None if there was no assertion to build
    """
    assertion = as_assertion(assertion)
    if assertion is None:
        return None

    issued = time.time() if now is None else now
    claims: dict[str, Any] = {
        "iss": app,
        "sub": app,
        "aud": aad_uri(aad_host, tenant, version, "token"),
        "exp": int(issued + assertion.duration),
    }
    claims.update(assertion.claims)

    logger.debug(f"Signing client assertion for {app} (audience {claims['aud']})")
    return sign_assertion(
        resolve_signer(assertion.certificate), claims, assertion.signature_size
    )
