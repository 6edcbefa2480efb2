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

"""Configuration for the signing pipeline."""

import dataclasses
import os
import pathlib
from typing import Optional, Union


PathLike = Union[str, bytes, os.PathLike]

DEFAULT_SIGN_TYPE = "test"

# Payloads are written below the staging directory, in this subdirectory.
SIGNING_PAYLOADS_SUBDIRECTORY = "signing-payloads"


@dataclasses.dataclass(frozen=True)
class SigningConfig:
    """Settings shared by all stages of a signing run.

    Built once at startup and passed to every component, instead of having
    the components read settings on their own.

    Attributes:
        staging_directory: Directory under which the payload files are
          written. Signing fails with a configuration error if unset.
        sign_type: Sign type passed to the external signing tool.
        max_workers: Maximum number of parallel workers for the fan-out
          stages. Default is to defer to the `concurrent.futures` library.
        temp_directory: Directory for the signing tool's file list. Default
          is the system temporary directory.
    """

    staging_directory: Optional[pathlib.Path] = None
    sign_type: str = DEFAULT_SIGN_TYPE
    max_workers: Optional[int] = None
    temp_directory: Optional[pathlib.Path] = None

    def __post_init__(self):
        # Accept plain strings for the paths, store `pathlib.Path` objects.
        # An empty string means the setting is absent.
        for name in ("staging_directory", "temp_directory"):
            value = getattr(self, name)
            if value is None or isinstance(value, pathlib.Path):
                continue
            value = os.fsdecode(value)
            object.__setattr__(
                self, name, pathlib.Path(value) if value else None
            )
        if not self.sign_type:
            object.__setattr__(self, "sign_type", DEFAULT_SIGN_TYPE)
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(
                f"max_workers must be a positive number, got {self.max_workers}"
            )

    @property
    def payload_directory(self) -> Optional[pathlib.Path]:
        """The directory holding the payload files, if configured."""
        if self.staging_directory is None:
            return None
        return self.staging_directory / SIGNING_PAYLOADS_SUBDIRECTORY
