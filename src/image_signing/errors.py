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

"""Errors raised while signing images or verifying their signatures.

Every error aborts the signing run that raised it. Retries, if any, belong to
the registry client, not to the signing pipeline.

Verification checks every image and reports all failures in one
`VerificationError`.
"""


class SigningError(Exception):
    """Base class for all errors raised by the signing pipeline."""


class ConfigurationError(SigningError):
    """Required configuration is missing.

    Raised for an unset staging directory or a missing environment variable
    needed by the external signing tool.
    """


class FormatError(SigningError):
    """A signed envelope does not have the expected COSE_Sign1 structure."""


class ExternalToolError(SigningError):
    """The external signing tool could not be run or exited with an error."""


class UpstreamError(SigningError):
    """Resolving a descriptor or publishing a signature failed."""


class VerificationError(SigningError):
    """The signature of one or more images could not be verified.

    Attributes:
        failures: The references that failed, with the error of each.
    """

    def __init__(self, message: str, failures=()):
        super().__init__(message)
        self.failures = list(failures)
