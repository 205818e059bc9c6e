"""
AWS Signature Version 4 for federated, temporary credentials

Builds the canonical request, string-to-sign and signature for a request and
returns the Authorization and X-Amz-Security-Token headers to send with it.
"""

from .errors import ConstructionError, EncodingError, RemoteRejection, SigningError, TransportError
from .sigv4 import Credentials, HeaderSet, RequestDescriptor, Service, SignedRequest, SigningContext, SigV4Signer
from .transport import AsyncTransport, TransportResult, send_signed

__version__ = "0.1.0"
__all__ = [
    "SigV4Signer",
    "Credentials",
    "RequestDescriptor",
    "SigningContext",
    "HeaderSet",
    "SignedRequest",
    "Service",
    "AsyncTransport",
    "TransportResult",
    "send_signed",
    "SigningError",
    "ConstructionError",
    "EncodingError",
    "RemoteRejection",
    "TransportError",
]
