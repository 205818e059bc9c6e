"""Environment-driven configuration."""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

from .errors import ConstructionError
from .sigv4 import Credentials, Service, SigV4Signer
from .transport import DEFAULT_TIMEOUT, AsyncTransport

DEFAULT_REGION = 'us-east-1'
DEFAULT_SERVICE = Service.EXECUTE_API.value


def credentials_from_env(environ: Optional[Mapping] = None) -> Credentials:
    """Read ``AWS_ACCESS_KEY_ID``, ``AWS_SECRET_ACCESS_KEY`` and ``AWS_SESSION_TOKEN``."""
    env = os.environ if environ is None else environ
    access_key_id = env.get('AWS_ACCESS_KEY_ID')
    secret_access_key = env.get('AWS_SECRET_ACCESS_KEY')
    if not access_key_id or not secret_access_key:
        raise ConstructionError('AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY must be set')
    return Credentials(access_key_id, secret_access_key, env.get('AWS_SESSION_TOKEN') or None)


@dataclass(frozen=True)
class SignerConfig:
    region: str = DEFAULT_REGION
    service: str = DEFAULT_SERVICE
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[Mapping] = None) -> 'SignerConfig':
        env = os.environ if environ is None else environ
        region = env.get('AWS_REGION') or env.get('AWS_DEFAULT_REGION') or DEFAULT_REGION
        service = env.get('FEDSIG_SERVICE') or DEFAULT_SERVICE
        raw_timeout = env.get('FEDSIG_TIMEOUT')
        try:
            timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT
        except ValueError:
            raise ValueError(f'FEDSIG_TIMEOUT must be a number of seconds, got {raw_timeout!r}') from None
        return cls(region=region, service=service, timeout=timeout)

    def create_signer(self, credentials: Credentials) -> SigV4Signer:
        return SigV4Signer(credentials, self.region, self.service)

    def create_transport(self) -> AsyncTransport:
        return AsyncTransport(timeout=self.timeout)
