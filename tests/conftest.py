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

"""Test fixtures to share between tests. Not part of the public API."""

from collections.abc import Sequence
import json
import pathlib
import threading

import cbor2
import pytest

from image_signing import errors
from image_signing._oci import registry
from image_signing._signing import esrp


MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"

# Environment in which the signing tool can be found.
SIGNING_ENVIRON = {
    esrp.MBSIGN_APPFOLDER_ENV: "/opt/mbsign",
    esrp.VSENGESRPSSL_ENV: "base64cert",
}


def cose_sign1(unprotected, *, tag: int = 18, extra=None) -> bytes:
    """Encodes a COSE_Sign1 envelope with the given unprotected header."""
    structure = [b"", unprotected, b"\x01\x02", b"\xff\xfe"]
    if extra is not None:
        structure = extra
    return cbor2.dumps(cbor2.CBORTag(tag, structure))


def cose_with_certificates(
    certificates: Sequence[bytes],
    *,
    single: bool = False,
    text_key: bool = False,
) -> bytes:
    """Encodes a COSE_Sign1 envelope with an x5chain header.

    Args:
        certificates: The certificates of the chain.
        single: Encode the only certificate as a byte string, not an array.
        text_key: Add a text string header key before the x5chain key.
    """
    unprotected = {}
    if text_key:
        unprotected["some-custom-key"] = "some-value"
    if single:
        (unprotected[33],) = certificates
    else:
        unprotected[33] = list(certificates)
    return cose_sign1(unprotected)


def file_certificate(path: pathlib.Path) -> bytes:
    """The leaf certificate used for `path` by a per file `FakeExecutor`."""
    return f"leaf for {path.name}".encode()


class FakeExecutor:
    """Stands in for the signing tool, signing every listed file in place."""

    def __init__(
        self,
        certificates: Sequence[bytes] = (b"\x01\x02\x03",),
        *,
        error: Exception | None = None,
        envelope: bytes | None = None,
        per_file_certificates: bool = False,
    ):
        self.certificates = list(certificates)
        self.error = error
        self.envelope = envelope
        # Signs each file with a certificate named after the file.
        self.per_file_certificates = per_file_certificates
        self.calls = []
        self.sign_lists = []

    def run(self, command, args, *, error_message):
        self.calls.append((command, list(args), error_message))
        (filelist,) = [a for a in args if a.startswith("/filelist:")]
        sign_list_path = pathlib.Path(filelist.removeprefix("/filelist:"))
        sign_list = json.loads(sign_list_path.read_text())
        self.sign_lists.append((sign_list_path, sign_list))

        if self.error is not None:
            raise self.error

        envelope = self.envelope or cose_with_certificates(self.certificates)
        for record in sign_list["SignFileRecordList"]:
            for entry in record["SignFileList"]:
                destination = pathlib.Path(entry["DstPath"])
                if self.per_file_certificates:
                    envelope = cose_with_certificates(
                        [file_certificate(destination), b"root"]
                    )
                destination.write_bytes(envelope)


class FakeRegistry:
    """Resolves descriptors and records pushed signatures in memory."""

    def __init__(self, *, failing: Sequence[str] = (), size: int = 1234):
        self.failing = set(failing)
        self.size = size
        self.resolved = []
        self.pushed = []
        self.signature_digests = {}
        self._lock = threading.Lock()

    def get_descriptor(self, reference, cancel_event=None):
        with self._lock:
            self.resolved.append(reference)
        if reference in self.failing:
            raise RuntimeError(f"registry unavailable for {reference}")
        return registry.Descriptor(
            media_type=MANIFEST_MEDIA_TYPE,
            digest=reference.rsplit("@", 1)[-1],
            size=self.size,
        )

    def push_signature(self, subject, signed_payload, cancel_event=None):
        with self._lock:
            self.pushed.append((subject, signed_payload))
        if signed_payload.image_name in self.failing:
            raise RuntimeError(f"push rejected for {signed_payload.image_name}")
        return self.signature_digests.get(
            signed_payload.image_name, f"sha256:sig-{subject.digest[7:]}"
        )


@pytest.fixture
def signing_environ():
    return dict(SIGNING_ENVIRON)


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
def failing_executor():
    return FakeExecutor(
        error=errors.ExternalToolError("ESRP signing failed (exit code 1)")
    )
