"""Decoding and validation of generated artifacts posted by the worker."""
from __future__ import annotations

import base64
import binascii
import io
from dataclasses import dataclass
from typing import Any, Mapping

from PIL import Image, UnidentifiedImageError

from avatar_studio.core.errors import ValidationFailed

SUCCESS_STATUSES = {"succeeded", "completed"}


@dataclass(slots=True)
class DecodedArtifact:
    data: bytes
    width: int
    height: int
    format: str

    @property
    def content_type(self) -> str:
        return f"image/{self.format.lower()}"

    @property
    def extension(self) -> str:
        return "jpg" if self.format.upper() == "JPEG" else self.format.lower()


def result_status(result: Mapping[str, Any]) -> str:
    return str(result.get("status") or result.get("state") or "succeeded").strip().lower()


def collect_artifacts(result: Mapping[str, Any]) -> list[Any]:
    """Gather artifact references from the fields workers commonly use."""

    nested = result.get("result")
    candidates = (
        result.get("images"),
        result.get("output"),
        nested.get("images") if isinstance(nested, Mapping) else None,
    )
    for value in candidates:
        if isinstance(value, list) and value:
            return value
        if isinstance(value, str) and value:
            return [value]
    return []


def _artifact_text(reference: Any) -> str:
    if isinstance(reference, str):
        return reference
    if isinstance(reference, Mapping):
        data = reference.get("data") or reference.get("base64") or ""
        return data if isinstance(data, str) else ""
    return ""


def decode_artifact(reference: Any) -> DecodedArtifact:
    """Decode a base64 (or data URL) artifact and check it is a real image."""

    text = _artifact_text(reference).strip()
    if "," in text and text.startswith("data:"):
        text = text.split(",", 1)[1]
    if not text:
        raise ValidationFailed("empty artifact")
    try:
        data = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationFailed("artifact is not valid base64") from exc

    try:
        with Image.open(io.BytesIO(data)) as image:
            image.verify()
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
            fmt = image.format or "PNG"
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as exc:
        raise ValidationFailed("artifact is not a readable image") from exc

    return DecodedArtifact(data=data, width=width, height=height, format=fmt)
