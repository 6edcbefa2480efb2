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

"""High level API for signing container images.

Images are signed with the default registry client and signing tool:

```python
signing_config = image_signing.config.SigningConfig(
    staging_directory="artifacts", sign_type="real"
)
results = image_signing.signing.Config(signing_config).sign_images(
    ["mcr.microsoft.com/dotnet/runtime@sha256:..."], signing_key_code=100
)
for result in results:
    print(result.image_name, result.signature_digest)
```

All images listed in an image info file, moved to another registry:

```python
image_signing.signing.Config(signing_config).use_registry(
    insecure=True
).sign_image_info(
    "image-info.json",
    signing_key_code=100,
    registry_override=image_info.RegistryOverride(registry="localhost:5000"),
)
```

Registry authentication uses existing Docker/Podman credentials from
`~/.docker/config.json` or `${XDG_RUNTIME_DIR}/containers/auth.json`.
"""

from collections.abc import Iterable, Mapping
import logging
import sys
import threading
from typing import Optional

from image_signing import config
from image_signing._oci import attachment as oci_attachment
from image_signing._oci import image_info
from image_signing._oci import registry as oci_registry
from image_signing._signing import bulk
from image_signing._signing import esrp
from image_signing._signing import request_builder
from image_signing._signing import types


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


logger = logging.getLogger(__name__)

SigningResult = types.SigningResult


class Config:
    """Configuration to use when signing images.

    Descriptors are resolved and signatures pushed with the oras based
    registry client, and payloads are signed by running the ESRP signing
    tool, unless replaced through the `use_*` methods.
    """

    def __init__(self, signing_config: config.SigningConfig):
        """Initializes the default configuration for signing.

        Args:
            signing_config: Settings shared by all stages of a signing run.
        """
        self._signing_config = signing_config
        self._resolver: Optional[types.DescriptorResolver] = None
        self._publisher: Optional[types.SignaturePublisher] = None
        self._executor: Optional[esrp.Executor] = None
        self._environ: Optional[Mapping[str, str]] = None

    def use_registry(
        self, *, insecure: bool = False, tls_verify: bool = True
    ) -> Self:
        """Configures the oras registry client used for all registry calls.

        Args:
            insecure: Use plain HTTP to talk to the registry.
            tls_verify: Verify the TLS certificates of the registry.

        Returns:
            The new signing configuration.
        """
        attachment = oci_attachment.NotaryAttachment(
            oci_registry.OrasClient(insecure=insecure, tls_verify=tls_verify)
        )
        self._resolver = attachment
        self._publisher = attachment
        return self

    def use_registry_collaborators(
        self,
        *,
        resolver: types.DescriptorResolver,
        publisher: types.SignaturePublisher,
    ) -> Self:
        """Resolves descriptors and pushes signatures with custom objects.

        Returns:
            The new signing configuration.
        """
        self._resolver = resolver
        self._publisher = publisher
        return self

    def use_executor(self, executor: esrp.Executor) -> Self:
        """Runs the signing tool through `executor`.

        Returns:
            The new signing configuration.
        """
        self._executor = executor
        return self

    def use_environment(self, environ: Mapping[str, str]) -> Self:
        """Reads the signing tool settings from `environ`.

        Returns:
            The new signing configuration.
        """
        self._environ = environ
        return self

    def _ensure_registry(self):
        # lazy initialize the registry client to avoid reading credentials
        if self._resolver is None or self._publisher is None:
            self.use_registry()

    def bulk_signer(self) -> bulk.BulkImageSigner:
        """Builds the signer for batches of resolved signing requests."""
        self._ensure_registry()
        signer = esrp.EsrpSigner(
            self._signing_config,
            executor=self._executor,
            environ=self._environ,
        )
        return bulk.BulkImageSigner(
            self._signing_config, signer, self._publisher
        )

    def build_requests(
        self,
        references: Iterable[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> list[types.SigningRequest]:
        """Resolves the descriptors of `references` into signing requests."""
        self._ensure_registry()
        builder = request_builder.SigningRequestBuilder(
            self._resolver, max_workers=self._signing_config.max_workers
        )
        return builder.build(references, cancel_event)

    def sign_images(
        self,
        references: Iterable[str],
        signing_key_code: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[types.SigningResult]:
        """Signs images and attaches the signatures to them.

        Args:
            references: Digest references of the images to sign, e.g.
              `registry.io/repo@sha256:...`. A reference listed twice is
              signed twice.
            signing_key_code: Selects the certificate used for signing.
            cancel_event: Optional event to cancel the signing run.

        Returns:
            One result per reference, in no particular order.

        Raises:
            SigningError: Any stage of the signing run failed. No partial
              results are returned.
        """
        references = list(references)
        if not references:
            return []

        logger.info("Signing %d digests.", len(references))
        requests = self.build_requests(references, cancel_event)
        return self.bulk_signer().sign_images(
            requests, signing_key_code, cancel_event
        )

    def sign_image_info(
        self,
        image_info_path: config.PathLike,
        signing_key_code: int,
        *,
        registry_override: image_info.RegistryOverride = (
            image_info.RegistryOverride()
        ),
        cancel_event: Optional[threading.Event] = None,
    ) -> list[types.SigningResult]:
        """Signs all platform images and manifest lists of an image info file.

        Args:
            image_info_path: Path to the image info file.
            signing_key_code: Selects the certificate used for signing.
            registry_override: Moves the listed images to another registry.
            cancel_event: Optional event to cancel the signing run.

        Returns:
            One result per listed digest, in no particular order.
        """
        info = image_info.ImageInfo.from_file(image_info_path)
        platform_references = info.platform_references(registry_override)
        manifest_list_references = info.manifest_list_references(
            registry_override
        )
        logger.info(
            "Found %d platform images and %d manifest lists.",
            len(platform_references),
            len(manifest_list_references),
        )
        return self.sign_images(
            platform_references + manifest_list_references,
            signing_key_code,
            cancel_event,
        )
