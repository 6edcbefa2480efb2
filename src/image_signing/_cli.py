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

"""The main entry-point for the image_signing package."""

from collections.abc import Sequence
import logging
import pathlib
import sys
from typing import Optional

import click

import image_signing
from image_signing import config
from image_signing._oci import image_info
from image_signing._signing import cose


# Decorator for the option selecting the image info file to sign.
_image_info_option = click.option(
    "--image-info",
    "image_info_path",
    type=pathlib.Path,
    metavar="IMAGE_INFO_PATH",
    default=None,
    help="Image info file listing the platform images and manifest lists "
    "to sign.",
)

# Decorator for the option selecting the signing certificate.
_key_code_option = click.option(
    "--key-code",
    type=int,
    required=True,
    envvar="IMAGE_SIGNING_KEY_CODE",
    help="Key code of the certificate to sign with.",
)

# Decorator for the option setting the staging directory for payloads.
_staging_dir_option = click.option(
    "--staging-dir",
    type=pathlib.Path,
    metavar="STAGING_DIR",
    envvar="IMAGE_SIGNING_STAGING_DIRECTORY",
    default=None,
    help="Directory to write the signing payloads to. Payloads are written "
    f"to the `{config.SIGNING_PAYLOADS_SUBDIRECTORY}` subdirectory.",
)

# Decorator for the option setting the sign type of the signing tool.
_sign_type_option = click.option(
    "--sign-type",
    type=str,
    envvar="IMAGE_SIGNING_SIGN_TYPE",
    default=config.DEFAULT_SIGN_TYPE,
    show_default=True,
    help="Sign type passed to the signing tool.",
)

# Decorator for the option bounding the parallel registry calls.
_max_workers_option = click.option(
    "--max-workers",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum number of parallel registry operations.",
)

# Decorators for the options moving images to another registry.
_registry_option = click.option(
    "--registry",
    type=str,
    default="",
    help="Registry to use instead of the one in the image info file.",
)
_repo_prefix_option = click.option(
    "--repo-prefix",
    type=str,
    default="",
    help="Prefix to add to the repositories of the image info file.",
)

# Decorator for the option to talk plain HTTP to the registry.
_insecure_option = click.option(
    "--insecure",
    is_flag=True,
    help="Use plain HTTP to talk to the registry.",
)


def _collect_references(
    references: Sequence[str],
    image_info_path: Optional[pathlib.Path],
    registry: str,
    repo_prefix: str,
) -> list[str]:
    """Returns `references` followed by the images of the image info file.

    A missing image info file only contributes no images.
    """
    all_references = list(references)
    if image_info_path is None:
        return all_references
    if not image_info_path.exists():
        logging.warning(
            "Image info file %s not found. Skipping its images.",
            image_info_path,
        )
        return all_references

    override = image_info.RegistryOverride(
        registry=registry, repo_prefix=repo_prefix
    )
    try:
        info = image_info.ImageInfo.from_file(image_info_path)
        all_references.extend(info.all_references(override))
    except Exception as err:
        click.echo(f"Reading image info failed with error: {err}", err=True)
        sys.exit(1)
    return all_references


@click.group(
    context_settings=dict(
        help_option_names=["-h", "--help"],
        token_normalize_func=lambda x: x.replace("_", "-"),
    ),
)
@click.version_option(image_signing.__version__, "--version")
@click.option(
    "--log-level",
    type=click.Choice(
        ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
    ),
    default="INFO",
    show_default=True,
    metavar="LEVEL",
    envvar="IMAGE_SIGNING_LOG_LEVEL",
    help="Set the logging level. This can also be set via the "
    "IMAGE_SIGNING_LOG_LEVEL env var.",
)
def main(log_level: str) -> None:
    """Container image signing with Notary v2 signatures.

    Use each subcommand's `--help` option for details on each mode.
    """
    logging.basicConfig(
        format="%(message)s", level=getattr(logging, log_level.upper())
    )


@main.command(name="sign")
@click.argument("references", nargs=-1, metavar="[REFERENCE]...")
@_image_info_option
@_key_code_option
@_staging_dir_option
@_sign_type_option
@_max_workers_option
@_registry_option
@_repo_prefix_option
@_insecure_option
@click.option(
    "--dry-run",
    is_flag=True,
    help="List the images that would be signed, without signing them.",
)
def _sign(
    references: Sequence[str],
    image_info_path: Optional[pathlib.Path],
    key_code: int,
    staging_dir: Optional[pathlib.Path],
    sign_type: str,
    max_workers: Optional[int],
    registry: str,
    repo_prefix: str,
    insecure: bool,
    dry_run: bool,
) -> None:
    """Sign container images and attach the signatures to them.

    The images to sign are the REFERENCE arguments, given as digest
    references (`registry.io/repo@sha256:...`), followed by every platform
    image and manifest list listed in the `--image-info` file.

    Payloads are signed by the ESRP signing tool, found through the
    MBSIGN_APPFOLDER environment variable. Signatures are pushed as OCI 1.1
    referrers of the signed images.
    """
    all_references = _collect_references(
        references, image_info_path, registry, repo_prefix
    )
    if not all_references:
        click.echo("No images to sign.")
        return

    if dry_run:
        click.echo("Dry run enabled. Skipping image signing of:")
        for reference in all_references:
            click.echo(f"  {reference}")
        return

    signing_config = config.SigningConfig(
        staging_directory=staging_dir,
        sign_type=sign_type,
        max_workers=max_workers,
    )
    try:
        results = (
            image_signing.signing.Config(signing_config)
            .use_registry(insecure=insecure)
            .sign_images(all_references, key_code)
        )
    except Exception as err:
        click.echo(f"Signing failed with error: {err}", err=True)
        sys.exit(1)

    click.echo(f"Successfully signed {len(results)} image(s).")
    for result in results:
        click.echo(
            f"{result.image_name}: signature digest {result.signature_digest}"
        )


@main.command(name="verify")
@click.argument("references", nargs=-1, metavar="[REFERENCE]...")
@_image_info_option
@_max_workers_option
@_registry_option
@_repo_prefix_option
@click.option(
    "--trust-store",
    type=str,
    envvar="IMAGE_SIGNING_TRUST_STORE",
    default=None,
    help="Trust store whose root CA and trust policy are imported into "
    "notation before verifying.",
)
@click.option(
    "--trust-materials",
    "trust_materials_path",
    type=pathlib.Path,
    metavar="TRUST_MATERIALS_PATH",
    default=pathlib.Path("."),
    help="Directory holding `certs/<store>/root-ca.crt` and "
    "`policies/<store>.json`.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="List the images that would be verified, without verifying them.",
)
def _verify(
    references: Sequence[str],
    image_info_path: Optional[pathlib.Path],
    max_workers: Optional[int],
    registry: str,
    repo_prefix: str,
    trust_store: Optional[str],
    trust_materials_path: pathlib.Path,
    dry_run: bool,
) -> None:
    """Verify the signatures attached to container images.

    The images are selected as for `sign`. Every image is verified with
    `notation verify`, and all failures are reported together.
    """
    all_references = _collect_references(
        references, image_info_path, registry, repo_prefix
    )
    if not all_references:
        click.echo("No images to verify.")
        return

    if dry_run:
        click.echo("Dry run enabled. Skipping verification of:")
        for reference in all_references:
            click.echo(f"  {reference}")
        return

    verifying_config = image_signing.verifying.Config(max_workers=max_workers)
    if trust_store is not None:
        verifying_config.use_trust_store(
            trust_store, trust_materials_path=trust_materials_path
        )
    try:
        verified = verifying_config.verify_images(all_references)
    except Exception as err:
        click.echo(f"Verification failed: {err}", err=True)
        sys.exit(1)

    click.echo(
        f"Successfully verified signatures for {len(verified)} image(s)."
    )


@main.command(name="certificate-chain")
@click.argument("signed_file", type=pathlib.Path, metavar="SIGNED_FILE")
def _certificate_chain(signed_file: pathlib.Path) -> None:
    """Print the certificate chain thumbprints of a signed payload.

    SIGNED_FILE must hold a COSE_Sign1 envelope produced by the signing tool.
    The output is a JSON array of SHA-256 thumbprints, leaf first.
    """
    try:
        thumbprints = cose.calculate_certificate_chain_thumbprints(signed_file)
    except Exception as err:
        click.echo(
            f"Reading certificate chain failed with error: {err}", err=True
        )
        sys.exit(1)
    click.echo(thumbprints)
