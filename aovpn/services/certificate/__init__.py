"""
Certificate Service

SSTP listener certificate rotation with supervised RRAS restart.
"""

from .sstp_certificate import (
    CertificateInfo,
    RotationOutcome,
    RotationResult,
    SstpCertificateRotator,
    normalize_thumbprint,
)

__all__ = [
    "CertificateInfo",
    "RotationOutcome",
    "RotationResult",
    "SstpCertificateRotator",
    "normalize_thumbprint",
]
