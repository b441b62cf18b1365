"""Manifest loading with validation.

SECURITY: Files are size-checked before they are read and parsed with
``yaml.safe_load_all``. Input validation is performed at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_MANIFEST_FILE_SIZE_BYTES
from .models import API_GROUP_VERSION, KIND_AWS_ACCOUNT, KIND_USER, AwsAccount, User

logger = logging.getLogger(__name__)

MANIFEST_MODELS: dict[str, type[AwsAccount] | type[User]] = {
    KIND_AWS_ACCOUNT: AwsAccount,
    KIND_USER: User,
}


class ManifestLoadError(Exception):
    """Raised when a manifest cannot be loaded or fails validation."""

    pass


def format_validation_error(error: ValidationError) -> str:
    """Render pydantic errors as one ``loc: msg`` line each."""
    lines = []
    for detail in error.errors():
        loc = ".".join(str(x) for x in detail["loc"])
        lines.append(f"  - {loc}: {detail['msg']}")
    return "\n".join(lines)


def parse_manifest(data: Any, source: str = "<input>") -> AwsAccount | User:
    """Validate one decoded manifest document.

    Raises:
        ManifestLoadError: If the document is not a mapping, names an
            unsupported apiVersion or kind, or fails model validation.
    """
    if not isinstance(data, dict):
        raise ManifestLoadError(f"Manifest must be a YAML mapping: {source}")

    api_version = data.get("apiVersion")
    if api_version != API_GROUP_VERSION:
        raise ManifestLoadError(
            f"Unsupported apiVersion {api_version!r} in {source}; expected {API_GROUP_VERSION}"
        )

    kind = data.get("kind")
    model = MANIFEST_MODELS.get(kind)  # type: ignore[arg-type]
    if model is None:
        raise ManifestLoadError(
            f"Unsupported kind {kind!r} in {source}; expected one of {list(MANIFEST_MODELS)}"
        )

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ManifestLoadError(
            f"Validation failed for {kind} in {source}:\n{format_validation_error(e)}"
        ) from e


def load_manifests(path: Path) -> list[AwsAccount | User]:
    """Load every AwsAccount and User document from a YAML file.

    Empty documents (a trailing ``---``) are skipped.

    Raises:
        ManifestLoadError: If the file is missing, too large, not valid YAML,
            or any document fails validation.
    """
    if not path.exists():
        raise ManifestLoadError(f"Manifest file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ManifestLoadError(f"Failed to stat manifest file {path}: {e}") from e

    if file_size > MAX_MANIFEST_FILE_SIZE_BYTES:
        raise ManifestLoadError(
            f"Manifest file exceeds maximum size of {MAX_MANIFEST_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestLoadError(f"Failed to read manifest file {path}: {e}") from e

    try:
        documents = [doc for doc in yaml.safe_load_all(content) if doc is not None]
    except yaml.YAMLError as e:
        raise ManifestLoadError(f"Invalid YAML in {path}: {e}") from e

    if not documents:
        raise ManifestLoadError(f"Manifest file contains no documents: {path}")

    records = [parse_manifest(doc, str(path)) for doc in documents]
    logger.info("Loaded manifests", extra={"path": str(path), "count": len(records)})
    return records
