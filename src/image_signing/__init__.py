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

"""Bulk container image signing with Notary v2 signatures.

The package signs OCI images (platform manifests and manifest lists) through
an external code signing authority and attaches the signatures to the images
as OCI 1.1 referrer artifacts.

The pipeline has the following stages:

- resolve every image reference to its OCI content descriptor;
- write one unsigned Notary v2 payload per descriptor to a staging directory;
- sign all payloads in place with a single invocation of the external signing
  tool (the payloads become COSE_Sign1 envelopes);
- extract the certificate chain thumbprints from every signed envelope;
- push every signature to the registry, with the signed image as its subject.

Signing a list of image references with a default registry client:

```python
import image_signing

config = image_signing.config.SigningConfig(staging_directory="/tmp/staging")
results = image_signing.signing.Config(config).sign_images(
    ["registry.io/repo@sha256:..."], signing_key_code=100
)
```

The external signing tool is located through the `MBSIGN_APPFOLDER`
environment variable.

Signatures attached this way can be verified afterwards with the notation CLI,
through `image_signing.verifying`.
"""

from image_signing import config
from image_signing import errors
from image_signing import signing
from image_signing import verifying


__version__ = "0.1.0"

__all__ = ["config", "errors", "signing", "verifying"]
