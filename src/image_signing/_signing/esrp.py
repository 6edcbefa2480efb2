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

"""Signs files in place with the external ESRP signing tool.

The tool (`DDSignFiles.dll`, installed by the MicroBuild signing plugin) reads
a file list naming the files to sign and the certificate to sign them with,
and overwrites every file with its COSE_Sign1 signature envelope.

All files of a signing run are signed by a single invocation of the tool.
"""

from collections.abc import Iterable, Mapping, Sequence
import json
import logging
import os
import pathlib
import subprocess
import sys
import tempfile
import threading
from typing import Optional, Protocol
import uuid

from image_signing import config
from image_signing import errors
from image_signing._signing import parallel


logger = logging.getLogger(__name__)

# Set by the MicroBuild plugin, points to the signing tool location.
MBSIGN_APPFOLDER_ENV = "MBSIGN_APPFOLDER"

# Base64-encoded SSL certificate for ESRP authentication. Required outside
# Windows, where there is no certificate store. Without it the tool retries
# authentication until it times out.
VSENGESRPSSL_ENV = "VSENGESRPSSL"

DDSIGNFILES_DLL_NAME = "DDSignFiles.dll"

SIGNING_FAILED_MESSAGE = "ESRP signing failed"


class Executor(Protocol):
    """Runs external processes."""

    def run(
        self, command: str, args: Sequence[str], *, error_message: str
    ) -> None:
        """Runs `command` with `args` until it exits.

        Raises:
            ExternalToolError: The process could not be started or exited
              with a non-zero code. The message starts with `error_message`.
        """
        ...


class SubprocessExecutor:
    """Runs external processes with `subprocess`."""

    def run(
        self, command: str, args: Sequence[str], *, error_message: str
    ) -> None:
        cmd = [command, *args]
        logger.debug("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, check=False
            )
        except OSError as e:
            raise errors.ExternalToolError(f"{error_message}: {e}") from e

        if result.stdout:
            logger.debug(result.stdout)
        if result.returncode != 0:
            raise errors.ExternalToolError(
                f"{error_message} (exit code {result.returncode}): "
                f"{result.stderr.strip()}"
            )


def generate_sign_list(
    file_paths: Iterable[pathlib.Path], signing_key_code: int
) -> dict:
    """Generates the file list read by the signing tool.

    Every file is both source and destination, as files are signed in place.
    """
    sign_files = [
        {"SrcPath": str(path), "DstPath": str(path)} for path in file_paths
    ]
    return {
        "SignFileRecordList": [
            {"Certs": str(signing_key_code), "SignFileList": sign_files}
        ]
    }


class EsrpSigner:
    """Signs files in place through the ESRP signing tool."""

    def __init__(
        self,
        signing_config: config.SigningConfig,
        *,
        executor: Optional[Executor] = None,
        environ: Optional[Mapping[str, str]] = None,
        platform: str = sys.platform,
    ):
        """Initializes the signer.

        Args:
            signing_config: Configuration holding the sign type and the
              directory for the temporary file list.
            executor: Runs the signing tool. Default runs it as a subprocess.
            environ: The environment to read the tool settings from. Default
              is the process environment.
            platform: The host platform, as in `sys.platform`.
        """
        self._config = signing_config
        self._executor = executor or SubprocessExecutor()
        self._environ = os.environ if environ is None else environ
        self._platform = platform

    def _required_env(self, name: str, reason: str) -> str:
        value = self._environ.get(name)
        if not value:
            raise errors.ConfigurationError(
                f"{name} environment variable is not set. {reason}"
            )
        return value

    def check_environment(self) -> str:
        """Checks that the signing tool can be found and can authenticate.

        Returns:
            The folder holding the signing tool.

        Raises:
            ConfigurationError: A required environment variable is not set.
        """
        app_folder = self._required_env(
            MBSIGN_APPFOLDER_ENV,
            "Was the MicroBuild signing plugin installed?",
        )
        if not self._platform.startswith("win"):
            self._required_env(
                VSENGESRPSSL_ENV,
                "Outside Windows the signing tool requires it for ESRP "
                "authentication. Ensure the MicroBuild signing plugin "
                "environment variables are forwarded to the container.",
            )
        return app_folder

    def sign_files(
        self,
        file_paths: Iterable[pathlib.Path],
        signing_key_code: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Signs all files with a single invocation of the signing tool.

        On success every file holds a COSE_Sign1 envelope. The envelopes are
        not validated here.

        The temporary file list is deleted on every exit path. The signing
        tool itself cannot be cancelled once started.

        Raises:
            ConfigurationError: The tool environment variables are not set.
            ExternalToolError: The signing tool failed.
            concurrent.futures.CancelledError: `cancel_event` was set before
              the tool started.
        """
        files = [pathlib.Path(path) for path in file_paths]
        if not files:
            logger.info("No files to sign.")
            return

        sign_type = self._config.sign_type
        logger.info(
            "Signing %d files with certificate %d (signType: %s)",
            len(files),
            signing_key_code,
            sign_type,
        )

        app_folder = self.check_environment()

        temp_directory = self._config.temp_directory or pathlib.Path(
            tempfile.gettempdir()
        )
        sign_list_path = temp_directory / f"SignList_{uuid.uuid4()}.json"
        try:
            sign_list = generate_sign_list(files, signing_key_code)
            sign_list_path.write_text(
                json.dumps(sign_list, indent=2), encoding="utf-8"
            )

            parallel.check_cancelled(cancel_event)
            dll_path = pathlib.Path(app_folder, DDSIGNFILES_DLL_NAME)
            self._executor.run(
                "dotnet",
                [
                    "--roll-forward",
                    "major",
                    str(dll_path),
                    "--",
                    f"/filelist:{sign_list_path}",
                    f"/signType:{sign_type}",
                ],
                error_message=SIGNING_FAILED_MESSAGE,
            )
            logger.info("ESRP signing completed successfully.")
        finally:
            sign_list_path.unlink(missing_ok=True)
