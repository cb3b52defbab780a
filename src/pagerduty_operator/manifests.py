"""Manifest loading with validation.

Reads multi-document YAML files into the typed models of ``models.py``.
Secrets follow Kubernetes conventions: ``data`` is base64 encoded and
``stringData`` is plain text; both are stored decoded.

SECURITY: All file operations enforce size limits. Input validation is
performed at the boundary.
"""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_MANIFEST_FILE_SIZE_BYTES
from .models import KubeObject, ObjectKind, get_kind_class

logger = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml")


class ManifestLoadError(Exception):
    """Raised when manifest loading or validation fails."""

    pass


def _decode_secret_data(document: dict[str, Any], source: str) -> dict[str, Any]:
    data: dict[str, str] = {}
    for key, value in (document.get("data") or {}).items():
        try:
            data[key] = base64.b64decode(str(value), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ManifestLoadError(f"Secret data key '{key}' is not valid base64 in {source}") from e
    for key, value in (document.get("stringData") or {}).items():
        data[key] = str(value)

    decoded = {k: v for k, v in document.items() if k != "stringData"}
    decoded["data"] = data
    return decoded


def parse_manifest(document: dict[str, Any], source: str = "<memory>") -> KubeObject:
    """Validate one manifest document into its model.

    Raises:
        ManifestLoadError: If the kind is unknown or validation fails.
    """
    kind = document.get("kind")
    if not isinstance(kind, str):
        raise ManifestLoadError(f"Manifest without a kind in {source}")

    try:
        kind_class = get_kind_class(kind)
    except ValueError as e:
        raise ManifestLoadError(f"{e} ({source})") from e

    if kind == ObjectKind.SECRET.value:
        document = _decode_secret_data(document, source)

    try:
        return kind_class.model_validate(document)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise ManifestLoadError(f"Validation failed for {kind} in {source}:\n{error_list}") from e


def load_manifest_file(path: Path) -> list[KubeObject]:
    """Load every document of a YAML file.

    Raises:
        ManifestLoadError: If the file cannot be read or a document is invalid.
    """
    if not path.is_file():
        raise ManifestLoadError(f"Manifest file not found: {path}")

    # SECURITY: Check file size before reading
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
        documents = list(yaml.safe_load_all(content))
    except yaml.YAMLError as e:
        raise ManifestLoadError(f"Invalid YAML in {path}: {e}") from e

    objects: list[KubeObject] = []
    for index, document in enumerate(documents):
        if document is None:
            continue
        if not isinstance(document, dict):
            raise ManifestLoadError(f"Document {index} in {path} must be a YAML mapping")
        objects.append(parse_manifest(document, f"{path}#{index}"))

    logger.info("Loaded manifests", extra={"path": str(path), "objects": len(objects)})
    return objects


def load_manifests(path: Path) -> list[KubeObject]:
    """Load a manifest file, or every *.yaml / *.yml file of a directory.

    Raises:
        ManifestLoadError: If the path does not exist or any file is invalid.
    """
    if path.is_dir():
        files = sorted(p for p in path.iterdir() if p.suffix in MANIFEST_SUFFIXES and p.is_file())
        objects: list[KubeObject] = []
        for file in files:
            objects.extend(load_manifest_file(file))
        return objects

    if not path.exists():
        raise ManifestLoadError(f"Manifest path not found: {path}")

    return load_manifest_file(path)
