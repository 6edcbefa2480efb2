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

"""Image references listed in image info files.

An image info file describes built images, grouped by repository:

```json
{
  "repos": [
    {
      "repo": "dotnet/runtime",
      "images": [
        {
          "platforms": [{"digest": "mcr.io/dotnet/runtime@sha256:..."}],
          "manifest": {"digest": "mcr.io/dotnet/runtime@sha256:..."}
        }
      ]
    }
  ]
}
```

Platform digests identify platform specific manifests and manifest digests
identify manifest lists. Both are fully qualified digest references.
"""

from collections.abc import Iterator
import dataclasses
import json
import os
from typing import Any, Union


PathLike = Union[str, bytes, os.PathLike]


@dataclasses.dataclass(frozen=True)
class RegistryOverride:
    """Moves image references to another registry and repository prefix.

    For example, with registry `myacr.io` and prefix `staging`:

        mcr.microsoft.com/dotnet/runtime@sha256:abc
        -> myacr.io/staging/dotnet/runtime@sha256:abc
    """

    registry: str = ""
    repo_prefix: str = ""

    def __bool__(self) -> bool:
        return bool(self.registry or self.repo_prefix)

    def apply(self, reference: str, repo_name: str) -> str:
        """Rewrites a fully qualified digest reference of `repo_name`."""
        if not self:
            return reference

        if "@" not in reference:
            raise ValueError(f"Not a digest reference: '{reference}'")
        digest = reference.split("@", 1)[1]
        original_registry = reference.split("/", 1)[0]

        registry = (self.registry or original_registry).strip("/")
        parts = [registry]
        repo_prefix = self.repo_prefix.strip("/")
        if repo_prefix:
            parts.append(repo_prefix)
        parts.append(repo_name)
        return "/".join(parts) + f"@{digest}"


class ImageInfo:
    """The contents of an image info file."""

    def __init__(self, data: dict[str, Any]):
        if not isinstance(data, dict) or not isinstance(
            data.get("repos", []), list
        ):
            raise ValueError("Invalid image info: expected a 'repos' list")
        self._data = data

    @classmethod
    def from_json(cls, text: str) -> "ImageInfo":
        return cls(json.loads(text))

    @classmethod
    def from_file(cls, path: PathLike) -> "ImageInfo":
        with open(path, encoding="utf-8") as f:
            return cls(json.load(f))

    def _images(self) -> Iterator[tuple[str, dict[str, Any]]]:
        for repo in self._data.get("repos", []):
            for image in repo.get("images", []):
                yield repo.get("repo", ""), image

    def platform_references(
        self, override: RegistryOverride = RegistryOverride()
    ) -> list[str]:
        """References of all platform specific images with a digest."""
        references = []
        for repo_name, image in self._images():
            for platform in image.get("platforms", []):
                digest = platform.get("digest")
                if digest:
                    references.append(override.apply(digest, repo_name))
        return references

    def manifest_list_references(
        self, override: RegistryOverride = RegistryOverride()
    ) -> list[str]:
        """References of all manifest lists with a digest."""
        references = []
        for repo_name, image in self._images():
            manifest = image.get("manifest")
            if manifest and manifest.get("digest"):
                references.append(override.apply(manifest["digest"], repo_name))
        return references

    def all_references(
        self, override: RegistryOverride = RegistryOverride()
    ) -> list[str]:
        """Platform references followed by manifest list references.

        References are not de-duplicated.
        """
        return self.platform_references(
            override
        ) + self.manifest_list_references(override)
