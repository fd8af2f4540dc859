"""Google Cloud Vision text detection for captured pages."""

from __future__ import annotations

import io
import logging
from typing import Any, Iterable, List, Tuple

from google.api_core import exceptions as google_exceptions  # type: ignore[import]
from google.cloud import vision  # type: ignore[import]
from PIL import Image, UnidentifiedImageError

from .errors import ConfigurationError, NoTextDetectedError, TransientServiceError
from .types import Annotation

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30.0


def image_size(image_bytes: bytes) -> Tuple[int, int]:
    """Pixel ``(width, height)`` of an encoded image."""
    try:
        with Image.open(io.BytesIO(image_bytes)) as im:
            return im.size
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"Unreadable image: {exc}") from exc


def annotations_from_response(response: Any) -> List[Annotation]:
    """Word-level annotations, skipping the leading full-page entry."""
    text_annotations: List[Any] = list(getattr(response, "text_annotations", []) or [])
    if len(text_annotations) < 2:
        raise NoTextDetectedError("No text detected in image.")

    annotations: List[Annotation] = []
    for index, entry in enumerate(text_annotations[1:]):
        bounding_poly: Any = getattr(entry, "bounding_poly", None)
        vertices: Iterable[Any] = getattr(bounding_poly, "vertices", []) or []
        poly = [(int(getattr(v, "x", 0) or 0), int(getattr(v, "y", 0) or 0)) for v in vertices]
        annotations.append({"index": index, "text": str(getattr(entry, "description", "")), "poly": poly})
    return annotations


class VisionOCR:
    def __init__(self, api_key: str | None, client: Any | None = None, language_hint: str | None = "ja") -> None:
        self._api_key = api_key
        self._client = client
        self._language_hint = language_hint

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError("GOOGLE_VISION_API_KEY is not set")
            self._client = vision.ImageAnnotatorClient(client_options={"api_key": self._api_key})
        return self._client

    def detect(self, image_bytes: bytes) -> List[Annotation]:
        client = self._get_client()
        image = vision.Image(content=image_bytes)
        image_context: Any | None = None
        if self._language_hint:
            image_context = vision.ImageContext(language_hints=[self._language_hint])
        try:
            response: Any = client.document_text_detection(
                image=image, image_context=image_context, timeout=REQUEST_TIMEOUT_SECONDS
            )
        except google_exceptions.GoogleAPIError as exc:
            raise TransientServiceError(f"Vision API error: {exc}") from exc

        error: Any = getattr(response, "error", None)
        message = getattr(error, "message", "") if error is not None else ""
        if message:
            raise TransientServiceError(f"Vision API error: {message}")

        annotations = annotations_from_response(response)
        logger.info("Vision OCR returned %s word annotations", len(annotations))
        return annotations


__all__ = ["VisionOCR", "annotations_from_response", "image_size"]
