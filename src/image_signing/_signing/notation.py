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

"""Verifies image signatures with the notation CLI.

Trust materials are laid out per trust store:

    <trust materials>/certs/<store>/root-ca.crt
    <trust materials>/policies/<store>.json
"""

from collections.abc import Iterable
import concurrent.futures
import logging
import pathlib
import threading
from typing import Optional

from image_signing import config
from image_signing import errors
from image_signing._signing import esrp
from image_signing._signing import parallel


logger = logging.getLogger(__name__)

NOTATION_COMMAND = "notation"

ROOT_CA_CERTIFICATE_NAME = "root-ca.crt"


class NotationVerifier:
    """Verifies the signatures attached to images."""

    def __init__(
        self,
        *,
        executor: Optional[esrp.Executor] = None,
        max_workers: Optional[int] = None,
    ):
        """Initializes the verifier.

        Args:
            executor: Runs the notation CLI. Default runs it as a subprocess.
            max_workers: Maximum number of images verified in parallel.
        """
        self._executor = executor or esrp.SubprocessExecutor()
        self._max_workers = max_workers

    def add_trust(
        self, trust_store: str, trust_materials_path: config.PathLike
    ) -> None:
        """Imports the root CA and the trust policy of `trust_store`.

        Raises:
            ConfigurationError: The certificate or the policy is missing.
            ExternalToolError: notation rejected them.
        """
        base = pathlib.Path(trust_materials_path)

        certificate = base / "certs" / trust_store / ROOT_CA_CERTIFICATE_NAME
        if not certificate.is_file():
            raise errors.ConfigurationError(
                f"Root CA certificate not found at '{certificate}'. "
                f"Ensure the trust store name '{trust_store}' is valid."
            )
        policy = base / "policies" / f"{trust_store}.json"
        if not policy.is_file():
            raise errors.ConfigurationError(
                f"Trust policy not found at '{policy}'. "
                f"Ensure the trust store name '{trust_store}' is valid."
            )

        logger.info(
            "Adding root CA certificate from '%s' to trust store '%s'...",
            certificate,
            trust_store,
        )
        self._executor.run(
            NOTATION_COMMAND,
            [
                "cert",
                "add",
                "--type",
                "ca",
                "--store",
                trust_store,
                str(certificate),
            ],
            error_message="Adding the root CA certificate failed",
        )

        logger.info("Importing trust policy from '%s'...", policy)
        self._executor.run(
            NOTATION_COMMAND,
            ["policy", "import", "--force", str(policy)],
            error_message="Importing the trust policy failed",
        )

    def verify(
        self, reference: str, cancel_event: Optional[threading.Event] = None
    ) -> None:
        """Verifies the signature of a single image.

        Raises:
            ExternalToolError: The signature is missing or not trusted.
        """
        parallel.check_cancelled(cancel_event)
        logger.info("Verifying: %s", reference)
        self._executor.run(
            NOTATION_COMMAND,
            ["verify", reference],
            error_message=f"Signature verification failed for '{reference}'",
        )
        logger.info("OK: %s", reference)

    def verify_all(
        self,
        references: Iterable[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> list[str]:
        """Verifies every image, even after a failure.

        Returns:
            The verified references, in the given order.

        Raises:
            VerificationError: At least one image failed. Lists every
              failure.
            concurrent.futures.CancelledError: `cancel_event` was set.
        """
        references = list(references)
        if not references:
            return []

        logger.info(
            "Verifying signatures for %d image(s)...", len(references)
        )

        def _verify(item, stage_event):
            index, reference = item
            try:
                self.verify(reference, stage_event)
            except concurrent.futures.CancelledError:
                raise
            except Exception as e:
                logger.error("Failed: %s", reference)
                return index, reference, e
            return index, reference, None

        outcomes = parallel.run_all(
            _verify,
            enumerate(references),
            max_workers=self._max_workers,
            cancel_event=cancel_event,
        )
        failures = [
            (reference, error)
            for _, reference, error in sorted(outcomes, key=lambda o: o[0])
            if error is not None
        ]
        if failures:
            logger.error(
                "Signature verification failed for %d image(s)", len(failures)
            )
            for reference, error in failures:
                logger.error("%s: %s", reference, error)
            raise errors.VerificationError(
                f"Signature verification failed for {len(failures)} of "
                f"{len(references)} image(s).",
                failures,
            )

        logger.info(
            "Successfully verified signatures for %d image(s).",
            len(references),
        )
        return references
