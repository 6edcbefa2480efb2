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

"""Notary v2 signature attachment through the OCI 1.1 Referrers API.

A signature is pushed as an artifact whose subject is the signed image:

- artifact type `application/vnd.cncf.notary.signature`;
- a single `application/cose` layer holding the COSE_Sign1 envelope;
- the certificate chain thumbprints as a manifest annotation.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import requests

from image_signing import errors
from image_signing._oci import registry as oci_registry
from image_signing._signing import parallel


if TYPE_CHECKING:
    from image_signing._signing.types import SignedPayload


logger = logging.getLogger(__name__)

NOTARY_SIGNATURE_ARTIFACT_TYPE = "application/vnd.cncf.notary.signature"
COSE_MEDIA_TYPE = "application/cose"

# Certificate chain thumbprints annotation of Notary v2 signatures.
CERTIFICATE_CHAIN_ANNOTATION = "io.cncf.notary.x509chain.thumbprint#S256"


def _registry_error(action: str, reference: str, e: Exception) -> Exception:
    """Maps a registry error to an `UpstreamError` with a helpful message."""
    response = getattr(e, "response", None)
    status = response.status_code if response is not None else None
    if status == 401:
        return errors.UpstreamError(
            f"Authentication failed when {action} '{reference}'. Check your "
            "registry credentials in ~/.docker/config.json or "
            "${XDG_RUNTIME_DIR}/containers/auth.json."
        )
    if status == 404:
        return errors.UpstreamError(
            f"Image not found when {action} '{reference}'. "
            "Verify the image exists and you have access."
        )
    return errors.UpstreamError(f"Failed {action} '{reference}': {e}")


class NotaryAttachment:
    """Resolves image descriptors and attaches Notary v2 signatures."""

    def __init__(self, client: oci_registry.OrasClient | None = None):
        self._client = client or oci_registry.OrasClient()

    def get_descriptor(
        self,
        reference: str,
        cancel_event: threading.Event | None = None,
    ) -> oci_registry.Descriptor:
        """Resolves a full image reference to its descriptor."""
        parallel.check_cancelled(cancel_event)
        try:
            image_ref = oci_registry.ImageReference.parse(reference)
        except ValueError as e:
            raise errors.UpstreamError(
                f"Invalid image reference '{reference}': {e}"
            ) from e

        try:
            return self._client.get_descriptor(image_ref)
        except requests.HTTPError as e:
            raise _registry_error("resolving", reference, e) from e

    def push_signature(
        self,
        subject: oci_registry.Descriptor,
        signed_payload: SignedPayload,
        cancel_event: threading.Event | None = None,
    ) -> str:
        """Pushes a signed payload as a referrer artifact of `subject`.

        The artifact is pushed to the repository named by the image name of
        the signed payload, which must therefore be a full reference.

        Returns:
            The digest of the signature artifact.
        """
        parallel.check_cancelled(cancel_event)
        reference = signed_payload.image_name
        try:
            image_ref = oci_registry.ImageReference.parse(reference)
        except ValueError as e:
            raise errors.UpstreamError(
                f"Cannot push signature for '{reference}': {e}"
            ) from e

        with open(signed_payload.signed_payload_path, "rb") as f:
            envelope = f.read()

        logger.info("Pushing signature for %s", reference)
        try:
            digest = self._client.push_referrer(
                image_ref,
                subject,
                NOTARY_SIGNATURE_ARTIFACT_TYPE,
                envelope,
                COSE_MEDIA_TYPE,
                annotations={
                    CERTIFICATE_CHAIN_ANNOTATION: (
                        signed_payload.certificate_chain
                    )
                },
            )
        except requests.HTTPError as e:
            raise _registry_error("pushing signature to", reference, e) from e

        logger.info("Signature pushed: %s", digest)
        return digest
