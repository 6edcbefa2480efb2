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

import json

import pytest

from image_signing import config
from image_signing import errors
from image_signing._oci import registry
from image_signing._signing import payload_writer
from image_signing._signing import request_builder
from image_signing._signing import types


MANIFEST = "application/vnd.oci.image.manifest.v1+json"


def _request(digest, image_name=None, size=1234):
    descriptor = registry.Descriptor(MANIFEST, digest, size, {"a": "b"})
    return request_builder.construct_signing_request(
        image_name or f"mcr.microsoft.com/repo@{digest}", descriptor
    )


class TestPayloadFilename:
    def test_colon_replaced(self):
        assert (
            payload_writer.payload_filename("sha256:abc")
            == "sha256-abc.payload"
        )


class TestWritePayloads:
    def test_writes_one_file_per_request(self, tmp_path):
        requests = [_request("sha256:abc123"), _request("sha256:def456")]
        signing_config = config.SigningConfig(staging_directory=tmp_path)

        written = payload_writer.write_payloads(requests, signing_config)

        payload_directory = tmp_path / "signing-payloads"
        assert [w.path for w in written] == [
            payload_directory / "sha256-abc123.payload",
            payload_directory / "sha256-def456.payload",
        ]
        assert [w.request for w in written] == requests

    def test_payload_contents(self, tmp_path):
        signing_config = config.SigningConfig(staging_directory=tmp_path)

        (written,) = payload_writer.write_payloads(
            [_request("sha256:abc123")], signing_config
        )

        assert json.loads(written.path.read_text()) == {
            "targetArtifact": {
                "mediaType": MANIFEST,
                "digest": "sha256:abc123",
                "size": 1234,
            }
        }

    def test_payload_directory_created(self, tmp_path):
        staging = tmp_path / "artifacts" / "staging"
        signing_config = config.SigningConfig(staging_directory=staging)

        payload_writer.write_payloads([_request("sha256:abc")], signing_config)

        assert (staging / "signing-payloads" / "sha256-abc.payload").is_file()

    def test_staging_directory_not_set(self):
        with pytest.raises(
            errors.ConfigurationError, match="staging directory is not set"
        ):
            payload_writer.write_payloads(
                [_request("sha256:abc")], config.SigningConfig()
            )

    def test_no_requests(self, tmp_path):
        signing_config = config.SigningConfig(staging_directory=tmp_path)
        assert payload_writer.write_payloads([], signing_config) == []


class TestTypes:
    def test_payload_round_trip(self):
        request = _request("sha256:abc")
        payload = types.Payload.from_json(request.payload.to_json())
        assert payload == request.payload

    def test_payload_drops_descriptor_annotations(self):
        request = _request("sha256:abc")
        assert request.descriptor.annotations == {"a": "b"}
        assert request.payload.target_artifact.annotations is None

    def test_request_digest_must_match_payload(self):
        descriptor = registry.Descriptor(MANIFEST, "sha256:abc", 1)
        other = registry.Descriptor(MANIFEST, "sha256:def", 1)
        with pytest.raises(ValueError, match="targets sha256:def"):
            types.SigningRequest(
                "repo@sha256:abc", descriptor, types.Payload(other)
            )
