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

"""Builds signing requests by resolving image descriptors."""

from collections.abc import Iterable
import concurrent.futures
import logging
import threading
from typing import Optional

from image_signing import errors
from image_signing._oci import registry
from image_signing._signing import parallel
from image_signing._signing import types


logger = logging.getLogger(__name__)


def construct_signing_request(
    image_name: str, descriptor: registry.Descriptor
) -> types.SigningRequest:
    """Builds the request to sign the image described by `descriptor`."""
    target = registry.Descriptor(
        media_type=descriptor.media_type,
        digest=descriptor.digest,
        size=descriptor.size,
    )
    return types.SigningRequest(
        image_name=image_name,
        descriptor=descriptor,
        payload=types.Payload(target_artifact=target),
    )


class SigningRequestBuilder:
    """Turns image references into signing requests.

    Every reference is resolved to its descriptor through the registry, in
    parallel. The same reference given twice results in two requests.
    """

    def __init__(
        self,
        resolver: types.DescriptorResolver,
        *,
        max_workers: Optional[int] = None,
    ):
        """Initializes the builder.

        Args:
            resolver: Resolves references to descriptors.
            max_workers: Maximum number of descriptors to resolve in
              parallel. Default is to defer to the `concurrent.futures`
              library.
        """
        self._resolver = resolver
        self._max_workers = max_workers

    def build(
        self,
        references: Iterable[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> list[types.SigningRequest]:
        """Builds one signing request per reference.

        The order of the requests is not guaranteed to match `references`.

        Raises:
            UpstreamError: A descriptor could not be resolved. Resolution of
              the remaining references is cancelled.
        """
        references = list(references)
        if not references:
            return []

        logger.info("Generating %d signing requests.", len(references))
        return parallel.run_all(
            self._create_request,
            references,
            max_workers=self._max_workers,
            cancel_event=cancel_event,
        )

    def _create_request(
        self, reference: str, cancel_event: threading.Event
    ) -> types.SigningRequest:
        logger.info("Fetching descriptor for %s", reference)
        try:
            descriptor = self._resolver.get_descriptor(reference, cancel_event)
        except (errors.SigningError, concurrent.futures.CancelledError):
            raise
        except Exception as e:
            raise errors.UpstreamError(
                f"Failed to resolve descriptor for '{reference}': {e}"
            ) from e
        return construct_signing_request(reference, descriptor)
