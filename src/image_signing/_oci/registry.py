# Copyright 2025 The Sigstore Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""OCI registry client using oras-py for authentication."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
import hashlib
import json
import logging
import re
import threading
from typing import Any

import oras.provider
import requests


logger = logging.getLogger(__name__)

# OCI Distribution Spec media types
OCI_MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX_MEDIA_TYPE = "application/vnd.oci.image.index.v1+json"
OCI_EMPTY_MEDIA_TYPE = "application/vnd.oci.empty.v1+json"
DOCKER_MANIFEST_MEDIA_TYPE = (
    "application/vnd.docker.distribution.manifest.v2+json"
)
DOCKER_MANIFEST_LIST_MEDIA_TYPE = (
    "application/vnd.docker.distribution.manifest.list.v2+json"
)

# Media types accepted when resolving a reference to its descriptor.
MANIFEST_MEDIA_TYPES = (
    OCI_MANIFEST_MEDIA_TYPE,
    OCI_INDEX_MEDIA_TYPE,
    DOCKER_MANIFEST_MEDIA_TYPE,
    DOCKER_MANIFEST_LIST_MEDIA_TYPE,
)

# The OCI empty descriptor content, used as config of artifact manifests.
EMPTY_CONFIG_BYTES = b"{}"

_DIGEST_PATTERN = re.compile(r"^(sha256:[a-f0-9]{64}|sha512:[a-f0-9]{128})$")


def compute_digest(content: bytes) -> str:
    """Calculate the sha256 digest of some content, as `sha256:<hex>`."""
    return f"sha256:{hashlib.sha256(content).hexdigest()}"


@dataclass(frozen=True)
class Descriptor:
    """OCI content descriptor.

    See: https://github.com/opencontainers/image-spec/blob/main/descriptor.md

    Attributes:
        media_type: The media type of the referenced content.
        digest: The digest of the referenced content.
        size: The size in bytes of the referenced content.
        annotations: Optional arbitrary metadata.
    """

    media_type: str
    digest: str
    size: int
    annotations: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        result: dict[str, Any] = {
            "mediaType": self.media_type,
            "digest": self.digest,
            "size": self.size,
        }
        if self.annotations:
            result["annotations"] = self.annotations
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Descriptor:
        """Build a descriptor from its JSON representation."""
        try:
            return cls(
                media_type=data["mediaType"],
                digest=data["digest"],
                size=int(data["size"]),
                annotations=data.get("annotations"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid OCI descriptor {data!r}: {e}") from e


@dataclass
class OCIManifest:
    """OCI image manifest.

    See: https://github.com/opencontainers/image-spec/blob/main/manifest.md

    Attributes:
        config: The config descriptor.
        layers: List of layer descriptors.
        artifact_type: Optional artifact type for OCI 1.1 artifacts.
        subject: Optional subject descriptor for OCI 1.1 referrers.
        annotations: Optional arbitrary metadata.
    """

    config: Descriptor
    layers: list[Descriptor] = field(default_factory=list)
    artifact_type: str | None = None
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        result: dict[str, Any] = {
            "schemaVersion": 2,
            "mediaType": OCI_MANIFEST_MEDIA_TYPE,
            "config": self.config.to_dict(),
            "layers": [layer.to_dict() for layer in self.layers],
        }
        if self.artifact_type:
            result["artifactType"] = self.artifact_type
        if self.subject:
            result["subject"] = self.subject.to_dict()
        if self.annotations:
            result["annotations"] = self.annotations
        return result

    def to_bytes(self) -> bytes:
        """The canonical encoding pushed to the registry."""
        return json.dumps(self.to_dict(), separators=(",", ":")).encode()

    def compute_digest(self) -> str:
        """Calculate the sha256 digest of this manifest."""
        return compute_digest(self.to_bytes())


@dataclass(frozen=True)
class ImageReference:
    """Parsed OCI image reference.

    Format: registry/repository:tag or registry/repository@sha256:digest
    """

    registry: str
    repository: str
    tag: str | None
    digest: str | None

    @classmethod
    def parse(cls, reference: str) -> ImageReference:
        """Parse an image reference string."""
        if "/" not in reference:
            raise ValueError(f"Invalid reference '{reference}': missing /")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)
            if not _DIGEST_PATTERN.match(digest):
                raise ValueError(f"Invalid digest format: {digest}")

        tag = None
        if ":" in reference and not digest:
            parts = reference.rsplit(":", 1)
            if "/" not in parts[1]:
                reference, tag = parts

        parts = reference.split("/", 1)
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(f"Invalid image reference '{reference}'")

        registry, repository = parts[0], parts[1]

        if not tag and not digest:
            raise ValueError(
                f"Image reference must have :tag or @digest: {reference}"
            )

        return cls(registry, repository, tag, digest)

    def __str__(self) -> str:
        result = f"{self.registry}/{self.repository}"
        if self.digest:
            result += f"@{self.digest}"
        elif self.tag:
            result += f":{self.tag}"
        return result

    @property
    def reference(self) -> str:
        if self.digest:
            return self.digest
        return self.tag or "latest"

    def with_digest(self, digest: str) -> ImageReference:
        return replace(self, tag=None, digest=digest)


class OrasClient:
    """OCI registry client using oras-py for authentication."""

    def __init__(self, *, insecure: bool = False, tls_verify: bool = True):
        self._insecure = insecure
        self._tls_verify = tls_verify
        self._registry_cache: dict[str, oras.provider.Registry] = {}
        self._registry_cache_lock = threading.Lock()

    def _auth_registry(
        self, image_ref: ImageReference
    ) -> oras.provider.Registry:
        """Get an authenticated oras Registry instance.

        Caches authenticated registries by hostname to avoid repeated
        authentication overhead when performing multiple operations. Safe to
        call from several threads at once.
        """
        hostname = image_ref.registry
        with self._registry_cache_lock:
            if hostname in self._registry_cache:
                return self._registry_cache[hostname]

            reg = oras.provider.Registry(
                hostname=hostname,
                insecure=self._insecure,
                tls_verify=self._tls_verify,
            )
            reg.auth.load_configs(reg.get_container(str(image_ref)))
            self._registry_cache[hostname] = reg
            return reg

    def _base_url(self, image_ref: ImageReference) -> str:
        """Get the base URL for a registry."""
        registry = image_ref.registry
        if registry in ("docker.io", "index.docker.io"):
            registry = "registry-1.docker.io"
        return f"{'http' if self._insecure else 'https'}://{registry}"

    def _manifest_url(self, image_ref: ImageReference) -> str:
        base = self._base_url(image_ref)
        repo = image_ref.repository
        return f"{base}/v2/{repo}/manifests/{image_ref.reference}"

    def get_descriptor(self, image_ref: ImageReference) -> Descriptor:
        """Resolve an image reference to the descriptor of its manifest.

        The descriptor is read from the headers of a HEAD request. If the
        registry omits any of them, the raw manifest is fetched instead and
        the digest and size are computed from its bytes.

        Raises:
            requests.HTTPError: The registry rejected the request.
            ValueError: The registry returned a manifest with a different
              digest than the one in the reference.
        """
        url = self._manifest_url(image_ref)
        headers = {"Accept": ", ".join(MANIFEST_MEDIA_TYPES)}
        reg = self._auth_registry(image_ref)

        logger.debug("Resolving descriptor for %s", image_ref)
        response = reg.do_request(url, "HEAD", headers=headers)
        response.raise_for_status()
        media_type = _header_value(response, "Content-Type")
        digest = _header_value(response, "Docker-Content-Digest")
        size = _header_value(response, "Content-Length")

        if not (media_type and digest and size):
            response = reg.do_request(url, "GET", headers=headers)
            response.raise_for_status()
            content = response.content
            digest = compute_digest(content)
            size = len(content)
            media_type = _header_value(response, "Content-Type") or json.loads(
                content
            ).get("mediaType")
            if not media_type:
                raise ValueError(f"Manifest for {image_ref} has no media type")

        if image_ref.digest and digest != image_ref.digest:
            raise ValueError(
                f"Registry returned digest {digest} for {image_ref}"
            )

        return Descriptor(media_type=media_type, digest=digest, size=int(size))

    def push_blob(
        self, image_ref: ImageReference, blob_bytes: bytes, media_type: str
    ) -> str:
        """Push a blob to the registry."""
        digest = compute_digest(blob_bytes)
        base_url = self._base_url(image_ref)
        reg = self._auth_registry(image_ref)

        check_url = f"{base_url}/v2/{image_ref.repository}/blobs/{digest}"
        try:
            if reg.do_request(check_url, "HEAD").status_code == 200:
                logger.debug("Blob %s already exists", digest)
                return digest
        except requests.HTTPError:
            pass

        upload_url = f"{base_url}/v2/{image_ref.repository}/blobs/uploads/"
        response = reg.do_request(upload_url, "POST")
        response.raise_for_status()
        location = response.headers.get("Location")
        if not location:
            raise ValueError("Registry did not return upload location")
        if location.startswith("/"):
            location = f"{base_url}{location}"
        sep = "&" if "?" in location else "?"
        location = f"{location}{sep}digest={digest}"

        headers = {"Content-Type": media_type}
        response = reg.do_request(
            location, "PUT", data=blob_bytes, headers=headers
        )
        response.raise_for_status()
        return digest

    def push_manifest(
        self,
        image_ref: ImageReference,
        manifest: OCIManifest,
    ) -> str:
        """Push a manifest to the registry, returning its digest."""
        manifest_bytes = manifest.to_bytes()
        digest = compute_digest(manifest_bytes)
        headers = {"Content-Type": OCI_MANIFEST_MEDIA_TYPE}
        response = self._auth_registry(image_ref).do_request(
            self._manifest_url(image_ref),
            "PUT",
            data=manifest_bytes,
            headers=headers,
        )
        response.raise_for_status()
        return digest

    def push_referrer(
        self,
        image_ref: ImageReference,
        subject: Descriptor,
        artifact_type: str,
        blob_bytes: bytes,
        blob_media_type: str,
        annotations: dict[str, str] | None = None,
    ) -> str:
        """Push an artifact attached to `subject` (OCI 1.1 Referrers API).

        The artifact has `blob_bytes` as its single layer and the OCI empty
        descriptor as its config.

        Returns:
            The digest of the pushed artifact manifest.
        """
        layer_digest = self.push_blob(image_ref, blob_bytes, blob_media_type)
        config_digest = self.push_blob(
            image_ref, EMPTY_CONFIG_BYTES, OCI_EMPTY_MEDIA_TYPE
        )

        manifest = OCIManifest(
            artifact_type=artifact_type,
            config=Descriptor(
                media_type=OCI_EMPTY_MEDIA_TYPE,
                digest=config_digest,
                size=len(EMPTY_CONFIG_BYTES),
            ),
            layers=[
                Descriptor(
                    media_type=blob_media_type,
                    digest=layer_digest,
                    size=len(blob_bytes),
                )
            ],
            subject=Descriptor(
                media_type=subject.media_type,
                digest=subject.digest,
                size=subject.size,
            ),
            annotations=annotations,
        )

        return self.push_manifest(
            image_ref.with_digest(manifest.compute_digest()), manifest
        )


def _header_value(response, name: str) -> str | None:
    value = response.headers.get(name)
    if isinstance(value, str) and value:
        # Content-Type may carry parameters, e.g. "; charset=utf-8".
        return value.split(";", 1)[0].strip()
    return None
