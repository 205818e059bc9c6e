"""
AWS Signature Version 4 signing for requests made with temporary credentials.

The pipeline runs in four stages, each usable on its own:

1. URL decomposition: ``split_url`` and ``canonical_uri``
2. Canonicalization: ``canonical_query_string``, ``HeaderSet`` and
   ``build_canonical_request``
3. Digests: ``hash_payload`` and ``canonical_request_digest``
4. Signing: ``derive_signing_key``, ``build_string_to_sign``,
   ``compute_signature`` and ``build_authorization_header``

``SigV4Signer`` runs all four against a single ``SigningContext`` and returns a
``SignedRequest`` ready to hand to a transport.

Reference: https://docs.aws.amazon.com/IAM/latest/UserGuide/create-signed-request.html
"""

import hashlib
import hmac
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union
from urllib.parse import quote, unquote

from .errors import ConstructionError, EncodingError

logger = logging.getLogger(__name__)

ALGORITHM = 'AWS4-HMAC-SHA256'
SCOPE_TERMINATOR = 'aws4_request'
EMPTY_SHA256 = hashlib.sha256(b'').hexdigest()
JSON_CONTENT_TYPE = 'application/json'
SUPPORTED_METHODS = frozenset({'GET', 'PUT', 'POST', 'PATCH', 'DELETE'})

DATE_STAMP_FORMAT = '%Y%m%d'
AMZ_DATE_FORMAT = '%Y%m%dT%H%M%SZ'

# Left unescaped by ECMAScript encodeURI, on top of ASCII letters and digits.
_URI_SAFE = "-_.!~*'();/?:@&=+$,#"
# AWS unreserved characters, on top of ASCII letters and digits.
_COMPONENT_SAFE = '-_.~'

Headers = Dict[str, Any]
Params = Union[None, Mapping, str]
Serializer = Callable[[Mapping], bytes]


class Service(str, Enum):
    EXECUTE_API = 'execute-api'
    LAMBDA = 'lambda'
    APPSYNC = 'appsync'
    S3 = 's3'
    DYNAMODB = 'dynamodb'
    STS = 'sts'
    IAM = 'iam'
    EC2 = 'ec2'


def _service_name(service: Union[str, Service]) -> str:
    return service.value if isinstance(service, Service) else service


@dataclass(frozen=True)
class Credentials:
    """Temporary credentials, e.g. from a federated identity pool."""

    access_key_id: str
    secret_access_key: str = field(repr=False)
    session_token: Optional[str] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.access_key_id or not self.secret_access_key:
            raise ConstructionError('Credentials need both an access key id and a secret access key')


@dataclass(frozen=True)
class SigningContext:
    """The single instant and scope that one signing operation is bound to."""

    date_stamp: str
    amz_date: str
    region: str
    service: str

    @classmethod
    def create(
            cls,
            region: str,
            service: Union[str, Service],
            now: Optional[datetime] = None
    ) -> 'SigningContext':
        """Capture the signing time once, in UTC.

        Naive datetimes are taken to already be UTC.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        else:
            now = now.astimezone(timezone.utc)
        return cls(
            date_stamp=now.strftime(DATE_STAMP_FORMAT),
            amz_date=now.strftime(AMZ_DATE_FORMAT),
            region=region,
            service=_service_name(service),
        )

    @property
    def credential_scope(self) -> str:
        return '/'.join((self.date_stamp, self.region, self.service, SCOPE_TERMINATOR))


@dataclass(frozen=True)
class RequestDescriptor:
    method: str
    url: str
    params: Params
    region: str
    service: Union[str, Service]

    def __post_init__(self) -> None:
        method = (self.method or '').strip().upper()
        if method not in SUPPORTED_METHODS:
            raise ConstructionError(f'Unsupported HTTP method: {self.method!r}')
        if self.params is not None and not isinstance(self.params, (str, Mapping)):
            raise ConstructionError(
                f'params must be a mapping or a query string, not {type(self.params).__name__}'
            )
        object.__setattr__(self, 'method', method)
        object.__setattr__(self, 'service', _service_name(self.service))

    @property
    def params_in_query(self) -> bool:
        """True when ``params`` travel in the query string rather than the body."""
        if isinstance(self.params, str):
            return True
        return self.params is not None and self.method == 'GET'


@dataclass(frozen=True)
class SignedRequest:
    """Everything a transport needs to send a signed request."""

    method: str
    url: str
    headers: Mapping[str, str] = field(repr=False)
    body: bytes = field(repr=False)
    canonical_request: str = field(repr=False)
    string_to_sign: str = field(repr=False)
    signature: str = field(repr=False)


# ---------------------------------------------------------------------------
# URL decomposition
# ---------------------------------------------------------------------------


def split_url(url: str) -> Tuple[str, str, str]:
    """Split a URL into ``(host, path, raw_query)``.

    Never fails: a malformed URL just yields whatever substrings can be found.
    The fragment is dropped since it is never sent.
    """
    rest = url.split('#', 1)[0]
    scheme_end = rest.find('//')
    if scheme_end != -1:
        rest = rest[scheme_end + 2:]
    rest, _, raw_query = rest.partition('?')
    slash = rest.find('/')
    if slash == -1:
        return rest, '', raw_query
    return rest[:slash], rest[slash:], raw_query


def canonical_uri(path: str) -> str:
    """Lower-case, trim and percent-encode a path. An empty path becomes ``/``."""
    path = path.lower().strip()
    if not path:
        return '/'
    return quote(path, safe=_URI_SAFE)


# ---------------------------------------------------------------------------
# Canonicalization
# ---------------------------------------------------------------------------


def _encode_component(value: str) -> str:
    return quote(value, safe=_COMPONENT_SAFE)


def _query_token(key: str, value: str) -> str:
    return f'{_encode_component(key)}={_encode_component(value)}'


def _raw_query_tokens(query: str) -> List[str]:
    _, sep, tail = query.partition('?')
    if sep:
        query = tail
    tokens = []
    for pair in query.strip().split('&'):
        if not pair:
            continue
        key, _, value = pair.partition('=')
        # Decode first so already-escaped input is not escaped twice.
        tokens.append(_query_token(unquote(key), unquote(value)))
    return tokens


def canonical_query_string(method: str, params: Params = None, raw_query: str = '') -> str:
    """Build the canonical query string.

    Tokens come from the URL's own query plus ``params``: a raw query string
    always contributes, a mapping only does for GET (other methods send it as
    the body). Keys and values are encoded individually, then whole
    ``key=value`` tokens are sorted.
    """
    tokens = _raw_query_tokens(raw_query) if raw_query else []
    if isinstance(params, str):
        tokens.extend(_raw_query_tokens(params))
    elif params is not None and method == 'GET':
        tokens.extend(_query_token(str(key), str(value)) for key, value in params.items())
    return '&'.join(sorted(tokens))


def _collapse(text: str) -> str:
    text = text.strip()
    while '  ' in text:
        text = text.replace('  ', ' ')
    return text


class HeaderSet(Mapping):
    """Read-only view of normalized request headers.

    Names are lower-cased; names and values are trimmed with runs of spaces
    collapsed. Iteration is always in sorted name order.
    """

    __slots__ = ('_headers',)

    REQUIRED = ('host', 'x-amz-date')

    def __init__(self, headers: Mapping) -> None:
        normalized: Dict[str, str] = {}
        for name, value in headers.items():
            key = _collapse(name).lower()
            if key in normalized:
                raise ConstructionError(f'Header {key!r} given more than once')
            normalized[key] = _collapse(str(value))

        if not normalized:
            raise ConstructionError('Cannot sign a request without headers')
        missing = [name for name in self.REQUIRED if name not in normalized]
        if missing:
            raise ConstructionError(f"Missing required header(s): {', '.join(missing)}")

        self._headers = normalized

    def __getitem__(self, name: str) -> str:
        return self._headers[name.lower()]

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._headers))

    def __len__(self) -> int:
        return len(self._headers)

    def __repr__(self) -> str:
        return f'HeaderSet({self.signed_headers()!r})'

    def canonical_headers(self) -> str:
        return ''.join(f'{name}:{self._headers[name]}\n' for name in self)

    def signed_headers(self) -> str:
        return ';'.join(self)


def build_canonical_request(
        method: str,
        uri: str,
        query: str,
        headers: HeaderSet,
        payload_hash: str
) -> str:
    return '\n'.join([
        method,
        uri,
        query,
        headers.canonical_headers(),
        headers.signed_headers(),
        payload_hash,
    ])


# ---------------------------------------------------------------------------
# Digests
# ---------------------------------------------------------------------------


def serialize_json(params: Mapping) -> bytes:
    """Compact JSON in insertion order, the exact bytes that go on the wire."""
    try:
        return json.dumps(params, separators=(',', ':'), ensure_ascii=False).encode('utf-8')
    except (TypeError, ValueError) as e:
        raise EncodingError(f'Cannot serialize request parameters: {e}') from e


def hash_payload(method: str, body: bytes = b'') -> str:
    if method == 'GET':
        return EMPTY_SHA256
    return hashlib.sha256(body).hexdigest()


def canonical_request_digest(canonical_request: str) -> str:
    return hashlib.sha256(canonical_request.encode('utf-8')).hexdigest()


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


def _hmac_sha256(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode('utf-8'), hashlib.sha256).digest()


def derive_signing_key(secret_access_key: str, date_stamp: str, region: str, service: str) -> bytes:
    """Derive the scoped signing key. Intermediate keys stay raw bytes."""
    k_date = _hmac_sha256(('AWS4' + secret_access_key).encode('utf-8'), date_stamp)
    k_region = _hmac_sha256(k_date, region)
    k_service = _hmac_sha256(k_region, service)
    return _hmac_sha256(k_service, SCOPE_TERMINATOR)


def build_string_to_sign(context: SigningContext, canonical_request: str) -> str:
    return '\n'.join([
        ALGORITHM,
        context.amz_date,
        context.credential_scope,
        canonical_request_digest(canonical_request),
    ])


def compute_signature(signing_key: bytes, string_to_sign: str) -> str:
    return hmac.new(signing_key, string_to_sign.encode('utf-8'), hashlib.sha256).hexdigest()


def build_authorization_header(
        access_key_id: str,
        context: SigningContext,
        signed_headers: str,
        signature: str
) -> str:
    return (
        f'{ALGORITHM} Credential={access_key_id}/{context.credential_scope}, '
        f'SignedHeaders={signed_headers}, Signature={signature}'
    )


# ---------------------------------------------------------------------------
# Signer
# ---------------------------------------------------------------------------


# Always set by the signer, never taken from caller headers.
_RESERVED_HEADERS = frozenset({'host', 'x-amz-date', 'authorization', 'x-amz-security-token'})


def _merge_headers(base: Headers, extra: Optional[Headers]) -> Headers:
    merged = dict(base)
    for name, value in (extra or {}).items():
        key = _collapse(name).lower()
        if key in _RESERVED_HEADERS:
            raise ConstructionError(f'Header {key!r} is set by the signer and cannot be overridden')
        for existing in [k for k in merged if k.lower() == key]:
            del merged[existing]
        merged[name] = value
    return merged


def _target_url(url: str, query: str) -> str:
    base = url.split('#', 1)[0].split('?', 1)[0]
    return f'{base}?{query}' if query else base


class SigV4Signer:
    """Signs requests for one region and service with a fixed set of credentials.

    Holds no mutable state, so one instance can be shared between threads.
    Each call to :meth:`sign` reads the clock once and produces a fresh
    signature; retrying a request means signing it again.

    Args:
        credentials: Access key id, secret access key and session token.
        region: AWS region, e.g. ``us-east-1``.
        service: Service name, e.g. ``execute-api``.
        serializer: Turns mapping params into the body of non-GET requests.
    """

    def __init__(
            self,
            credentials: Credentials,
            region: str,
            service: Union[str, Service],
            serializer: Serializer = serialize_json
    ) -> None:
        self.credentials = credentials
        self.region = region
        self.service = _service_name(service)
        self.serializer = serializer

    def sign(
            self,
            method: str,
            url: str,
            params: Params = None,
            headers: Optional[Headers] = None,
            now: Optional[datetime] = None
    ) -> SignedRequest:
        request = RequestDescriptor(method, url, params, self.region, self.service)
        return self.sign_request(request, headers, now)

    def create_headers(
            self,
            method: str,
            url: str,
            params: Params = None,
            headers: Optional[Headers] = None,
            now: Optional[datetime] = None
    ) -> Headers:
        """Sign and return only the headers to send."""
        return dict(self.sign(method, url, params, headers, now).headers)

    def sign_request(
            self,
            request: RequestDescriptor,
            headers: Optional[Headers] = None,
            now: Optional[datetime] = None
    ) -> SignedRequest:
        context = SigningContext.create(request.region, request.service, now)
        host, path, raw_query = split_url(request.url)
        body = self._body(request)

        request_headers: Headers = {'Host': host, 'X-Amz-Date': context.amz_date}
        if request.method != 'GET':
            request_headers['Content-Type'] = JSON_CONTENT_TYPE
        request_headers = _merge_headers(request_headers, headers)
        header_set = HeaderSet(request_headers)

        query = canonical_query_string(request.method, request.params, raw_query)
        canonical_request = build_canonical_request(
            request.method,
            canonical_uri(path),
            query,
            header_set,
            hash_payload(request.method, body),
        )
        string_to_sign = build_string_to_sign(context, canonical_request)
        logger.debug('Canonical request:\n%s', canonical_request)
        logger.debug('String to sign:\n%s', string_to_sign)

        signing_key = derive_signing_key(
            self.credentials.secret_access_key,
            context.date_stamp,
            context.region,
            context.service,
        )
        signature = compute_signature(signing_key, string_to_sign)

        request_headers['Authorization'] = build_authorization_header(
            self.credentials.access_key_id,
            context,
            header_set.signed_headers(),
            signature,
        )
        if self.credentials.session_token:
            request_headers['X-Amz-Security-Token'] = self.credentials.session_token

        url = _target_url(request.url, query) if request.params_in_query else request.url
        return SignedRequest(
            method=request.method,
            url=url,
            headers=MappingProxyType(request_headers),
            body=body,
            canonical_request=canonical_request,
            string_to_sign=string_to_sign,
            signature=signature,
        )

    def _body(self, request: RequestDescriptor) -> bytes:
        if request.method == 'GET' or not isinstance(request.params, Mapping):
            return b''
        try:
            return self.serializer(request.params)
        except EncodingError:
            raise
        except (TypeError, ValueError) as e:
            raise EncodingError(f'Cannot serialize request parameters: {e}') from e
