"""Certificate issuing and verification."""

from .issuer import (
    CODE_ALPHABET,
    Certificate,
    CertificateIssuer,
    CertificateStatus,
    CertificateVerification,
)

__all__ = [
    "CODE_ALPHABET",
    "Certificate",
    "CertificateIssuer",
    "CertificateStatus",
    "CertificateVerification",
]
