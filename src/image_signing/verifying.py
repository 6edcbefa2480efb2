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

"""High level API for verifying the signatures of container images.

Signatures are verified by the notation CLI, which must be on the `PATH`:

```python
image_signing.verifying.Config().verify_images(
    ["mcr.microsoft.com/dotnet/runtime@sha256:..."]
)
```

The root CA and the trust policy of a trust store can be imported first:

```python
image_signing.verifying.Config().use_trust_store(
    "test", trust_materials_path="trust"
).verify_image_info("image-info.json")
```

Every image is verified, and all failures are reported together in one
`errors.VerificationError`.

Registry authentication uses the existing Docker credentials, as read by
notation.
"""

from collections.abc import Iterable
import logging
import sys
import threading
from typing import Optional

from image_signing import config
from image_signing._oci import image_info
from image_signing._signing import esrp
from image_signing._signing import notation


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


logger = logging.getLogger(__name__)


class Config:
    """Configuration to use when verifying image signatures."""

    def __init__(self, *, max_workers: Optional[int] = None):
        """Initializes the default configuration for verification.

        Args:
            max_workers: Maximum number of images verified in parallel.
        """
        self._max_workers = max_workers
        self._executor: Optional[esrp.Executor] = None
        self._trust_store: Optional[str] = None
        self._trust_materials_path: config.PathLike = "."

    def use_executor(self, executor: esrp.Executor) -> Self:
        """Runs the notation CLI through `executor`.

        Returns:
            The new verification configuration.
        """
        self._executor = executor
        return self

    def use_trust_store(
        self, name: str, *, trust_materials_path: config.PathLike = "."
    ) -> Self:
        """Imports the trust materials of trust store `name` before verifying.

        Args:
            name: The trust store name, e.g. `test` or `prod`.
            trust_materials_path: Directory holding `certs/<name>/root-ca.crt`
              and `policies/<name>.json`.

        Returns:
            The new verification configuration.
        """
        self._trust_store = name
        self._trust_materials_path = trust_materials_path
        return self

    def verify_images(
        self,
        references: Iterable[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> list[str]:
        """Verifies the signatures of images.

        Args:
            references: Digest references of the images to verify.
            cancel_event: Optional event to cancel the verification.

        Returns:
            The verified references.

        Raises:
            ConfigurationError: The trust materials are missing.
            ExternalToolError: The trust materials could not be imported.
            VerificationError: At least one image failed verification.
        """
        references = list(references)
        if not references:
            logger.info("No images to verify.")
            return []

        verifier = notation.NotationVerifier(
            executor=self._executor, max_workers=self._max_workers
        )
        if self._trust_store is not None:
            verifier.add_trust(self._trust_store, self._trust_materials_path)
        return verifier.verify_all(references, cancel_event)

    def verify_image_info(
        self,
        image_info_path: config.PathLike,
        *,
        registry_override: image_info.RegistryOverride = (
            image_info.RegistryOverride()
        ),
        cancel_event: Optional[threading.Event] = None,
    ) -> list[str]:
        """Verifies all platform images and manifest lists of an image info.

        Returns:
            The verified references.
        """
        info = image_info.ImageInfo.from_file(image_info_path)
        return self.verify_images(
            info.all_references(registry_override), cancel_event
        )
