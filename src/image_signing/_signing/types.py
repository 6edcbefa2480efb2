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

"""Data types passed between the stages of the signing pipeline.

Every value here is created fresh for a signing run and never mutated.
"""

import dataclasses
import json
import pathlib
import threading
from typing import Any, Optional, Protocol

from image_signing._oci import registry


@dataclasses.dataclass(frozen=True)
class Payload:
    """Unsigned Notary v2 signing payload.

    The external signing tool treats the serialized payload as opaque input
    and wraps it in a COSE_Sign1 envelope.

    Attributes:
        target_artifact: Descriptor of the image being signed.
    """

    target_artifact: registry.Descriptor

    def to_dict(self) -> dict[str, Any]:
        return {"targetArtifact": self.target_artifact.to_dict()}

    def to_json(self) -> str:
        """Serializes the payload to indented JSON."""
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "Payload":
        data = json.loads(text)
        return cls(registry.Descriptor.from_dict(data["targetArtifact"]))


@dataclasses.dataclass(frozen=True)
class SigningRequest:
    """A request to sign one image.

    Attributes:
        image_name: A digest reference, either bare or `repo@digest`.
        descriptor: The resolved descriptor of the image.
        payload: The payload to sign, targeting `descriptor`.
    """

    image_name: str
    descriptor: registry.Descriptor
    payload: Payload

    def __post_init__(self):
        if self.payload.target_artifact.digest != self.descriptor.digest:
            raise ValueError(
                f"Payload for {self.image_name} targets "
                f"{self.payload.target_artifact.digest}, expected "
                f"{self.descriptor.digest}"
            )


@dataclasses.dataclass(frozen=True)
class WrittenPayload:
    """A signing request together with the file its payload was written to."""

    request: SigningRequest
    path: pathlib.Path


@dataclasses.dataclass(frozen=True)
class SignedPayload:
    """A payload signed by the external signing tool.

    Attributes:
        image_name: The image name from the originating request.
        descriptor: The descriptor of the signed image (the subject).
        signed_payload_path: The file holding the COSE_Sign1 envelope.
        certificate_chain: JSON array of the SHA-256 thumbprints of the
          certificates in the envelope, leaf first.
    """

    image_name: str
    descriptor: registry.Descriptor
    signed_payload_path: pathlib.Path
    certificate_chain: str


@dataclasses.dataclass(frozen=True)
class SigningResult:
    """A signature pushed to the registry.

    Attributes:
        image_name: The signed image.
        signature_digest: The digest of the signature artifact.
    """

    image_name: str
    signature_digest: str


class DescriptorResolver(Protocol):
    """Resolves image references to OCI content descriptors."""

    def get_descriptor(
        self,
        reference: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> registry.Descriptor:
        """Returns the descriptor of the manifest `reference` points to."""
        ...


class SignaturePublisher(Protocol):
    """Pushes signatures to the registry as referrer artifacts."""

    def push_signature(
        self,
        subject: registry.Descriptor,
        signed_payload: SignedPayload,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """Attaches the signature to `subject`, returning its digest."""
        ...
