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

"""Writes unsigned payloads to the staging directory."""

from collections.abc import Iterable
import logging
import pathlib

from image_signing import config
from image_signing import errors
from image_signing._signing import types


logger = logging.getLogger(__name__)

PAYLOAD_FILE_SUFFIX = ".payload"


def payload_filename(digest: str) -> str:
    """Converts a digest like "sha256:abc" to a filename "sha256-abc.payload".

    Digests are unique per payload, so are the filenames.
    """
    return digest.replace(":", "-") + PAYLOAD_FILE_SUFFIX


def write_payloads(
    requests: Iterable[types.SigningRequest],
    signing_config: config.SigningConfig,
) -> list[types.WrittenPayload]:
    """Writes the payload of every request to its own file.

    Files are written sequentially, payloads are small. Files are left on
    disk, the signing tool replaces their contents with the signatures.

    Args:
        requests: The signing requests.
        signing_config: Configuration holding the staging directory.

    Returns:
        The requests paired with their payload files, in input order.

    Raises:
        ConfigurationError: The staging directory is not configured.
    """
    payload_directory = signing_config.payload_directory
    if payload_directory is None:
        raise errors.ConfigurationError(
            "The staging directory is not set. Configure it with "
            "--staging-dir or IMAGE_SIGNING_STAGING_DIRECTORY."
        )

    requests = list(requests)
    payload_directory.mkdir(parents=True, exist_ok=True)
    logger.info(
        "Writing %d payloads to %s", len(requests), payload_directory.resolve()
    )

    written = []
    for request in requests:
        filename = payload_filename(request.payload.target_artifact.digest)
        path = pathlib.Path(payload_directory, filename)
        path.write_text(request.payload.to_json(), encoding="utf-8")
        written.append(types.WrittenPayload(request=request, path=path))
        logger.info("Wrote payload for %s to %s", request.image_name, filename)

    return written
