"""
Access verification: ordered single checks, bounded bulk checks and
per-account application listings.
"""

from .models import ApplicationAccess, BulkVerdict, Verdict, VerdictReason
from .service import AccessVerificationService

__all__ = [
    "AccessVerificationService",
    "ApplicationAccess",
    "BulkVerdict",
    "Verdict",
    "VerdictReason",
]
