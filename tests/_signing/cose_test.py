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

import hashlib
import json
import types
from unittest import mock

import cbor2
from conftest import cose_sign1
from conftest import cose_with_certificates
import pytest

from image_signing import errors
from image_signing._signing import cose


LEAF = b"leaf certificate"
INTERMEDIATE = b"intermediate certificate"
ROOT = b"root certificate"


def _thumbprint(certificate):
    return hashlib.sha256(certificate).hexdigest()


def _write(tmp_path, envelope):
    path = tmp_path / "signed.payload"
    path.write_bytes(envelope)
    return path


class TestCalculateCertificateChainThumbprints:
    def test_chain_in_order(self, tmp_path):
        path = _write(
            tmp_path, cose_with_certificates([LEAF, INTERMEDIATE, ROOT])
        )

        result = cose.calculate_certificate_chain_thumbprints(path)

        assert json.loads(result) == [
            _thumbprint(LEAF),
            _thumbprint(INTERMEDIATE),
            _thumbprint(ROOT),
        ]

    def test_compact_json(self, tmp_path):
        path = _write(tmp_path, cose_with_certificates([LEAF, ROOT]))

        result = cose.calculate_certificate_chain_thumbprints(path)

        assert result == f'["{_thumbprint(LEAF)}","{_thumbprint(ROOT)}"]'

    def test_single_certificate(self, tmp_path):
        path = _write(tmp_path, cose_with_certificates([LEAF], single=True))

        result = cose.calculate_certificate_chain_thumbprints(path)

        assert json.loads(result) == [_thumbprint(LEAF)]

    def test_text_header_keys_are_skipped(self, tmp_path):
        path = _write(
            tmp_path, cose_with_certificates([LEAF, ROOT], text_key=True)
        )

        result = cose.calculate_certificate_chain_thumbprints(path)

        assert json.loads(result) == [_thumbprint(LEAF), _thumbprint(ROOT)]

    def test_thumbprints_are_lower_case_hex(self, tmp_path):
        path = _write(tmp_path, cose_with_certificates([b"\x01\x02\x03"]))

        (thumbprint,) = json.loads(
            cose.calculate_certificate_chain_thumbprints(path)
        )

        assert thumbprint == _thumbprint(b"\x01\x02\x03")
        assert len(thumbprint) == 64
        assert thumbprint == thumbprint.lower()

    def test_missing_x5chain(self, tmp_path):
        path = _write(tmp_path, cose_sign1({1: -7, "kid": "key"}))

        with pytest.raises(errors.FormatError, match="x5chain not found"):
            cose.calculate_certificate_chain_thumbprints(path)

    def test_error_names_file(self, tmp_path):
        path = _write(tmp_path, cose_sign1({}))

        with pytest.raises(errors.FormatError, match="signed.payload"):
            cose.calculate_certificate_chain_thumbprints(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            cose.calculate_certificate_chain_thumbprints(
                tmp_path / "missing.payload"
            )


class TestReadCertificateChain:
    def test_wrong_tag(self):
        envelope = cose_sign1({33: [LEAF]}, tag=98)

        with pytest.raises(errors.FormatError, match=r"tag \(18\), got 98"):
            cose.read_certificate_chain(envelope)

    def test_untagged_array(self):
        envelope = cbor2.dumps([b"", {33: [LEAF]}, b"", b""])

        with pytest.raises(errors.FormatError, match="got list"):
            cose.read_certificate_chain(envelope)

    def test_short_structure(self):
        envelope = cose_sign1(None, extra=[b""])

        with pytest.raises(errors.FormatError, match="Invalid COSE_Sign1"):
            cose.read_certificate_chain(envelope)

    def test_header_not_a_map(self):
        envelope = cose_sign1([LEAF])

        with pytest.raises(errors.FormatError, match="to be a map"):
            cose.read_certificate_chain(envelope)

    def test_invalid_x5chain_value(self):
        envelope = cose_sign1({33: "not a certificate"})

        with pytest.raises(errors.FormatError, match="x5chain value type"):
            cose.read_certificate_chain(envelope)

    def test_invalid_certificate_in_array(self):
        envelope = cose_sign1({33: [LEAF, 42]})

        with pytest.raises(errors.FormatError, match="certificate type"):
            cose.read_certificate_chain(envelope)

    def test_invalid_header_key(self):
        envelope = cose_sign1({b"key": LEAF, 33: [LEAF]})

        with pytest.raises(errors.FormatError, match="header key type"):
            cose.read_certificate_chain(envelope)

    def test_invalid_cbor(self):
        with pytest.raises(errors.FormatError, match="Invalid CBOR"):
            cose.read_certificate_chain(b"\x82\x01")

    def test_empty_input(self):
        with pytest.raises(errors.FormatError):
            cose.read_certificate_chain(b"")

    def test_immutable_decoded_values(self):
        decoded = cbor2.CBORTag(
            18,
            (b"", types.MappingProxyType({33: (LEAF, ROOT)}), b"", b""),
        )

        with mock.patch.object(cbor2, "loads", return_value=decoded):
            certificates = cose.read_certificate_chain(b"envelope")

        assert certificates == [LEAF, ROOT]

    def test_installed_decoder_output(self):
        envelope = cose_with_certificates([LEAF, INTERMEDIATE, ROOT])
        decoded = cbor2.loads(envelope)

        assert cose.read_certificate_chain(envelope) == [
            LEAF,
            INTERMEDIATE,
            ROOT,
        ]
        assert list(decoded.value[1][33]) == [LEAF, INTERMEDIATE, ROOT]

    def test_header_array_is_not_a_map(self):
        decoded = cbor2.CBORTag(18, (b"", (LEAF,), b"", b""))

        with mock.patch.object(cbor2, "loads", return_value=decoded):
            with pytest.raises(errors.FormatError, match="got tuple"):
                cose.read_certificate_chain(b"envelope")
