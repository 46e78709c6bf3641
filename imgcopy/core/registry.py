"""
OCI Distribution registry client.

Implements the narrow set of registry operations the copy command needs:
manifest GET/HEAD, blob GET/HEAD, blob upload (with cross-repository mount)
and manifest PUT. Authentication follows the Docker token protocol:
anonymous, basic, static bearer token, or a bearer token obtained from the
realm named in a `WWW-Authenticate` challenge.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Generator, Protocol, runtime_checkable

import httpx

from imgcopy.core.config import CopySettings
from imgcopy.core.errors import AuthError, NotFoundError, RegistryError
from imgcopy.core.reference import ImageReference, Repository

logger = logging.getLogger(__name__)

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

INDEX_MEDIA_TYPES = frozenset({OCI_INDEX, DOCKER_MANIFEST_LIST})
MANIFEST_ACCEPT = ",".join([OCI_MANIFEST, OCI_INDEX, DOCKER_MANIFEST, DOCKER_MANIFEST_LIST])

_REPO_PATH_RE = re.compile(r"^/v2/(?P<repo>.+?)/(?:manifests|blobs)/")
_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')


@dataclass(frozen=True)
class Descriptor:
    media_type: str
    digest: str
    size: int


@dataclass(frozen=True)
class Manifest:
    media_type: str
    digest: str
    body: bytes

    @property
    def is_index(self) -> bool:
        return self.media_type in INDEX_MEDIA_TYPES

    def payload(self) -> dict[str, Any]:
        return json.loads(self.body)

    def child_digests(self) -> list[str]:
        if not self.is_index:
            return []
        return [str(entry["digest"]) for entry in self.payload().get("manifests", [])]

    def blob_digests(self) -> list[str]:
        """Config and layer digests of an image manifest."""
        if self.is_index:
            return []
        payload = self.payload()
        digests: list[str] = []
        config = payload.get("config")
        if isinstance(config, dict) and config.get("digest"):
            digests.append(str(config["digest"]))
        for layer in payload.get("layers", []):
            digests.append(str(layer["digest"]))
        return digests


@runtime_checkable
class RegistryClient(Protocol):
    """Registry operations the copy command relies on."""

    def get_manifest(self, ref: ImageReference) -> Manifest: ...

    def head_manifest(self, ref: ImageReference) -> Descriptor: ...

    def get_blob(self, repository: Repository, digest: str) -> bytes: ...

    def blob_exists(self, repository: Repository, digest: str) -> bool: ...

    def put_blob(self, repository: Repository, digest: str, data: bytes) -> None: ...

    def mount_blob(self, repository: Repository, digest: str, source: Repository) -> bool: ...

    def put_manifest(
        self, repository: Repository, reference: str, media_type: str, body: bytes
    ) -> str: ...


@dataclass(frozen=True)
class RegistryOptions:
    username: str = ""
    password: str = ""
    token: str = ""
    anon: bool = False
    insecure: bool = False
    verify_certs: bool = True
    ca_cert_path: str = ""
    timeout: float = 60.0

    @classmethod
    def from_settings(cls, settings: CopySettings) -> RegistryOptions:
        return cls(
            username=settings.REGISTRY_USERNAME,
            password=settings.REGISTRY_PASSWORD,
            token=settings.REGISTRY_TOKEN,
            anon=settings.REGISTRY_ANON,
            insecure=settings.REGISTRY_INSECURE,
            verify_certs=settings.REGISTRY_VERIFY_CERTS,
            ca_cert_path=settings.REGISTRY_CA_CERT_PATH,
            timeout=settings.REGISTRY_TIMEOUT,
        )


def compute_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


class RegistryAuth(httpx.Auth):
    """httpx auth flow answering registry authentication challenges.

    Tokens are cached per (host, repository) so later requests against the
    same repository skip the challenge round-trip.
    """

    requires_response_body = True

    def __init__(self, options: RegistryOptions) -> None:
        self.options = options
        self._headers: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        if self.options.anon:
            yield request
            return
        if self.options.token:
            request.headers["Authorization"] = f"Bearer {self.options.token}"
            yield request
            return

        key = (request.url.host, _repository_from_path(request.url.path))
        with self._lock:
            cached = self._headers.get(key)
        if cached:
            request.headers["Authorization"] = cached

        response = yield request
        if response.status_code != 401:
            return

        challenge = response.headers.get("WWW-Authenticate", "")
        scheme, _, params_raw = challenge.partition(" ")
        params = dict(_CHALLENGE_PARAM_RE.findall(params_raw))

        if scheme.lower() == "basic":
            if not self.options.username:
                return
            header = self._basic_header()
        elif scheme.lower() == "bearer" and params.get("realm"):
            token_response = yield self._token_request(request, key[1], params)
            if token_response.status_code >= 400:
                raise AuthError(
                    f"fetching token from {params['realm']}", token_response.status_code
                )
            try:
                body = token_response.json()
            except ValueError as exc:
                raise AuthError(f"token endpoint {params['realm']} returned invalid JSON") from exc
            token = (body.get("token") or body.get("access_token")) if isinstance(body, dict) else ""
            if not token:
                raise AuthError(f"token endpoint {params['realm']} returned no token")
            header = f"Bearer {token}"
        else:
            return

        with self._lock:
            self._headers[key] = header
        request.headers["Authorization"] = header
        yield request

    def _basic_header(self) -> str:
        raw = f"{self.options.username}:{self.options.password}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")

    def _token_request(
        self, request: httpx.Request, repository: str, params: dict[str, str]
    ) -> httpx.Request:
        query: dict[str, str] = {}
        if params.get("service"):
            query["service"] = params["service"]
        scope = params.get("scope")
        if not scope and repository:
            actions = "pull" if request.method in ("GET", "HEAD") else "pull,push"
            scope = f"repository:{repository}:{actions}"
        if scope:
            query["scope"] = scope

        headers = {}
        if self.options.username:
            headers["Authorization"] = self._basic_header()
        return httpx.Request("GET", params["realm"], params=query, headers=headers)


class Registry:
    """Synchronous OCI registry client backed by a shared httpx.Client."""

    def __init__(
        self,
        options: RegistryOptions | None = None,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        self.options = options or RegistryOptions()
        self._client = client or self._create_client(self.options)

    @staticmethod
    def _create_client(options: RegistryOptions) -> httpx.Client:
        verify: bool | str = options.verify_certs
        if options.verify_certs and options.ca_cert_path:
            verify = options.ca_cert_path
        return httpx.Client(
            auth=RegistryAuth(options),
            verify=verify,
            timeout=options.timeout,
            follow_redirects=True,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> Registry:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ----- manifests -----

    def get_manifest(self, ref: ImageReference) -> Manifest:
        url = self._url(ref.repository, f"manifests/{ref.identifier}")
        response = self._request("GET", url, headers={"Accept": MANIFEST_ACCEPT})
        _raise_for_status(response, f"fetching manifest {ref}")

        body = response.content
        digest = compute_digest(body)
        if ref.is_digest and digest != ref.digest:
            raise RegistryError(f"manifest {ref} hashed to {digest}")
        media_type = _media_type(response, body)
        return Manifest(media_type=media_type, digest=digest, body=body)

    def head_manifest(self, ref: ImageReference) -> Descriptor:
        url = self._url(ref.repository, f"manifests/{ref.identifier}")
        response = self._request("HEAD", url, headers={"Accept": MANIFEST_ACCEPT})
        _raise_for_status(response, f"checking manifest {ref}")

        digest = response.headers.get("Docker-Content-Digest", "") or ref.digest
        return Descriptor(
            media_type=response.headers.get("Content-Type", ""),
            digest=digest,
            size=int(response.headers.get("Content-Length", "0") or 0),
        )

    def put_manifest(
        self, repository: Repository, reference: str, media_type: str, body: bytes
    ) -> str:
        url = self._url(repository, f"manifests/{reference}")
        response = self._request(
            "PUT", url, content=body, headers={"Content-Type": media_type}
        )
        _raise_for_status(response, f"pushing manifest {repository}:{reference}")
        return response.headers.get("Docker-Content-Digest", "") or compute_digest(body)

    # ----- blobs -----

    def get_blob(self, repository: Repository, digest: str) -> bytes:
        url = self._url(repository, f"blobs/{digest}")
        response = self._request("GET", url)
        _raise_for_status(response, f"fetching blob {repository}@{digest}")
        return response.content

    def blob_exists(self, repository: Repository, digest: str) -> bool:
        url = self._url(repository, f"blobs/{digest}")
        response = self._request("HEAD", url)
        if response.status_code == 404:
            return False
        _raise_for_status(response, f"checking blob {repository}@{digest}")
        return True

    def mount_blob(self, repository: Repository, digest: str, source: Repository) -> bool:
        """Ask the registry to link `digest` from `source`; True when it did."""
        if source.registry != repository.registry:
            return False
        url = self._url(repository, "blobs/uploads/")
        response = self._request("POST", url, params={"mount": digest, "from": source.path})
        if response.status_code == 201:
            return True
        if response.status_code in (401, 403):
            # No pull access to the source repository; caller uploads instead.
            return False
        _raise_for_status(response, f"mounting blob {digest} into {repository}")
        return False

    def put_blob(self, repository: Repository, digest: str, data: bytes) -> None:
        url = self._url(repository, "blobs/uploads/")
        response = self._request("POST", url)
        _raise_for_status(response, f"starting upload to {repository}")

        location = response.headers.get("Location")
        if not location:
            raise RegistryError(f"upload to {repository} returned no Location header")
        upload_url = response.url.join(location).copy_merge_params({"digest": digest})
        response = self._request(
            "PUT",
            upload_url,
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        _raise_for_status(response, f"uploading blob {repository}@{digest}")

    # ----- internals -----

    def _url(self, repository: Repository, suffix: str) -> str:
        scheme = "http" if self.options.insecure else "https"
        return f"{scheme}://{repository.registry}/v2/{repository.path}/{suffix}"

    def _request(self, method: str, url: str | httpx.URL, **kwargs: Any) -> httpx.Response:
        logger.debug("%s %s", method, url)
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise RegistryError(f"{method} {url}: {exc}") from exc


def _repository_from_path(path: str) -> str:
    match = _REPO_PATH_RE.match(path)
    return match.group("repo") if match else ""


def _media_type(response: httpx.Response, body: bytes) -> str:
    content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
    if content_type and content_type != "application/json":
        return content_type
    try:
        payload = json.loads(body)
    except ValueError:
        return content_type
    if isinstance(payload, dict) and payload.get("mediaType"):
        return str(payload["mediaType"])
    if isinstance(payload, dict) and "manifests" in payload:
        return OCI_INDEX
    return OCI_MANIFEST


def _raise_for_status(response: httpx.Response, action: str) -> None:
    status = response.status_code
    if status < 400:
        return
    if status == 404:
        raise NotFoundError(f"{action}: not found")
    if status in (401, 403):
        raise AuthError(f"{action}: {_error_detail(response)}", status)
    raise RegistryError(f"{action}: {_error_detail(response)}", status)


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    errors = payload.get("errors") if isinstance(payload, dict) else None
    if isinstance(errors, list) and errors:
        return "; ".join(
            f"{err.get('code', 'UNKNOWN')}: {err.get('message', '')}".strip() for err in errors
        )
    return response.reason_phrase or "request failed"
