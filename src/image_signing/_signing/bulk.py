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

"""Signs batches of images and pushes the signatures to the registry."""

from collections.abc import Iterable
import concurrent.futures
import logging
import threading
from typing import Optional

from image_signing import config
from image_signing import errors
from image_signing._signing import cose
from image_signing._signing import esrp
from image_signing._signing import parallel
from image_signing._signing import payload_writer
from image_signing._signing import types


logger = logging.getLogger(__name__)


class BulkImageSigner:
    """Signs a batch of images as a single unit.

    A run writes the payloads of all requests, signs them with one call to
    the signing tool, reads the certificate chain of every signed payload and
    pushes every signature to the registry. Any failure aborts the whole run
    and no partial results are returned.
    """

    def __init__(
        self,
        signing_config: config.SigningConfig,
        signer: esrp.EsrpSigner,
        publisher: types.SignaturePublisher,
    ):
        """Initializes the bulk signer.

        Args:
            signing_config: Configuration of the signing run.
            signer: Signs the payload files in place.
            publisher: Pushes the signatures to the registry.
        """
        self._config = signing_config
        self._signer = signer
        self._publisher = publisher

    def sign_images(
        self,
        requests: Iterable[types.SigningRequest],
        signing_key_code: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[types.SigningResult]:
        """Signs all images and attaches the signatures to them.

        Args:
            requests: One request per image to sign. Requests are not
              de-duplicated.
            signing_key_code: Selects the certificate used for signing.
            cancel_event: Optional cancellation event. It is checked before
              each stage and each parallel unit of work starts.

        Returns:
            One result per request, in no particular order.

        Raises:
            ConfigurationError: The staging directory or the signing tool is
              not configured.
            ExternalToolError: The signing tool failed.
            FormatError: A signed payload is not a valid envelope.
            UpstreamError: Pushing a signature failed.
            concurrent.futures.CancelledError: The run was cancelled.
        """
        request_list = list(requests)
        if not request_list:
            return []

        logger.info("Signing %d images...", len(request_list))

        signed_payloads = self.sign_payloads(
            request_list, signing_key_code, cancel_event
        )

        logger.info(
            "Pushing %d signatures to registry.", len(signed_payloads)
        )
        results = parallel.run_all(
            self._push_signature,
            signed_payloads,
            max_workers=self._config.max_workers,
            cancel_event=cancel_event,
        )

        logger.info("Successfully signed %d images.", len(results))
        return results

    def sign_payloads(
        self,
        requests: list[types.SigningRequest],
        signing_key_code: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[types.SignedPayload]:
        """Writes, signs and inspects the payloads of all requests."""
        if not requests:
            logger.warning("No signing requests provided for signing.")
            return []

        self._signer.check_environment()
        written = payload_writer.write_payloads(requests, self._config)

        self._signer.sign_files(
            [payload.path for payload in written],
            signing_key_code,
            cancel_event,
        )

        # The certificate chain is read from every envelope, not once per run.
        return parallel.run_all(
            self._read_signed_payload,
            written,
            max_workers=self._config.max_workers,
            cancel_event=cancel_event,
        )

    def _read_signed_payload(
        self, written: types.WrittenPayload, cancel_event: threading.Event
    ) -> types.SignedPayload:
        del cancel_event  # unused
        return types.SignedPayload(
            image_name=written.request.image_name,
            descriptor=written.request.descriptor,
            signed_payload_path=written.path,
            certificate_chain=cose.calculate_certificate_chain_thumbprints(
                written.path
            ),
        )

    def _push_signature(
        self, signed_payload: types.SignedPayload, cancel_event: threading.Event
    ) -> types.SigningResult:
        try:
            signature_digest = self._publisher.push_signature(
                signed_payload.descriptor, signed_payload, cancel_event
            )
        except (errors.SigningError, concurrent.futures.CancelledError):
            raise
        except Exception as e:
            raise errors.UpstreamError(
                f"Failed to push signature for '{signed_payload.image_name}' "
                f"({signed_payload.descriptor.digest}): {e}"
            ) from e

        return types.SigningResult(
            image_name=signed_payload.image_name,
            signature_digest=signature_digest,
        )
