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

"""Certificate chain thumbprints of COSE_Sign1 signature envelopes.

A COSE_Sign1 envelope (RFC 8152) is a CBOR array tagged with 18:

    [protected header: bstr, unprotected header: map, payload: bstr,
     signature: bstr]

The certificates used for the signature are in the x5chain header (key 33,
RFC 9360) of the unprotected header map, either as a single DER byte string
or as an array of them, leaf first.

Only the unprotected header is interpreted. The protected header, the payload
and the signature are never looked at.
"""

from collections.abc import Mapping
import hashlib
import json
import logging
import os
from typing import Any, Union

import cbor2

from image_signing import errors


logger = logging.getLogger(__name__)

COSE_SIGN1_TAG = 18
COSE_X5CHAIN_KEY = 33

PathLike = Union[str, bytes, os.PathLike]

# Arrays inside tags decode as tuples with recent versions of cbor2.
_ARRAY_TYPES = (list, tuple)


def _describe(value: Any) -> str:
    if isinstance(value, cbor2.CBORTag):
        return f"tag {value.tag}"
    return type(value).__name__


def _read_x5chain(unprotected: Any) -> list[bytes]:
    """Reads the certificates from the x5chain entry of the header map."""
    if not isinstance(unprotected, Mapping):
        raise errors.FormatError(
            "Expected the COSE_Sign1 unprotected header to be a map, got "
            f"{_describe(unprotected)}."
        )

    certificates = []
    for key, value in unprotected.items():
        # Header keys are integers or text strings (RFC 8152, section 3.1).
        # Only the integer key of x5chain is of interest.
        if isinstance(key, str):
            continue
        if isinstance(key, bool) or not isinstance(key, int):
            raise errors.FormatError(
                f"Unexpected COSE header key type: {_describe(key)}."
            )
        if key != COSE_X5CHAIN_KEY:
            continue

        if isinstance(value, bytes):
            certificates.append(value)
        elif isinstance(value, _ARRAY_TYPES):
            for certificate in value:
                if not isinstance(certificate, bytes):
                    raise errors.FormatError(
                        "Unexpected x5chain certificate type: "
                        f"{_describe(certificate)}."
                    )
                certificates.append(certificate)
        else:
            raise errors.FormatError(
                f"Unexpected x5chain value type: {_describe(value)}."
            )

    if not certificates:
        raise errors.FormatError("x5chain not found in unprotected header.")

    return certificates


def read_certificate_chain(envelope: bytes) -> list[bytes]:
    """Returns the DER certificates of a COSE_Sign1 envelope, in order.

    Raises:
        FormatError: The envelope is not a COSE_Sign1 structure with an
          x5chain header.
    """
    try:
        decoded = cbor2.loads(envelope)
    except (cbor2.CBORDecodeError, ValueError) as e:
        raise errors.FormatError(f"Invalid CBOR data: {e}") from e

    if not isinstance(decoded, cbor2.CBORTag):
        raise errors.FormatError(
            f"Expected COSE_Sign1 tag ({COSE_SIGN1_TAG}), got "
            f"{_describe(decoded)}."
        )
    if decoded.tag != COSE_SIGN1_TAG:
        raise errors.FormatError(
            f"Expected COSE_Sign1 tag ({COSE_SIGN1_TAG}), got {decoded.tag}."
        )

    structure = decoded.value
    if not isinstance(structure, _ARRAY_TYPES) or len(structure) < 2:
        raise errors.FormatError("Invalid COSE_Sign1 structure.")

    return _read_x5chain(structure[1])


def compute_thumbprint(certificate: bytes) -> str:
    """Computes the SHA-256 thumbprint of a certificate, as lower-case hex."""
    return hashlib.sha256(certificate).hexdigest()


def calculate_certificate_chain_thumbprints(
    signed_payload_path: PathLike,
) -> str:
    """Calculates the thumbprints of the certificates in a signed envelope.

    Args:
        signed_payload_path: Path to the COSE_Sign1 envelope.

    Returns:
        A JSON array of the hex-encoded SHA-256 thumbprints, in the order the
        certificates appear in the envelope, e.g. `["abc...","def..."]`.

    Raises:
        FormatError: The file does not hold a COSE_Sign1 envelope with an
          x5chain header. The message names the file.
    """
    with open(signed_payload_path, "rb") as f:
        envelope = f.read()

    try:
        certificates = read_certificate_chain(envelope)
    except errors.FormatError as e:
        raise errors.FormatError(
            f"{os.fsdecode(signed_payload_path)}: {e}"
        ) from e

    thumbprints = [compute_thumbprint(cert) for cert in certificates]
    logger.debug(
        "Found %d certificates in %s",
        len(thumbprints),
        os.fsdecode(signed_payload_path),
    )
    return json.dumps(thumbprints, separators=(",", ":"))
