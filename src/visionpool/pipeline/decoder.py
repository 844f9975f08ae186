from typing import Dict, Optional, Tuple
import io
import logging
import warnings

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..config import DecoderConfig
from ..errors import DecodeError, ErrorKind
from .types import DecodedImage

logger = logging.getLogger(__name__)

# declared content type -> Pillow format name
SUPPORTED_TYPES: Dict[str, str] = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/bmp": "BMP",
    "image/webp": "WEBP",
    "image/tiff": "TIFF",
}

TYPE_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/x-png": "image/png",
    "image/x-ms-bmp": "image/bmp",
    "image/x-bmp": "image/bmp",
}


def normalize_content_type(declared_type: Optional[str]) -> str:
    if not declared_type:
        return ""
    base = declared_type.split(";", 1)[0].strip().lower()
    return TYPE_ALIASES.get(base, base)


def sniff_format(payload: bytes) -> Optional[str]:
    """Pillow format name from magic bytes, or None if unrecognised."""
    if payload.startswith(b"\x89PNG\r\n\x1a\n"):
        return "PNG"
    if payload.startswith(b"\xff\xd8\xff"):
        return "JPEG"
    if payload.startswith(b"BM"):
        return "BMP"
    if len(payload) >= 12 and payload[:4] == b"RIFF" and payload[8:12] == b"WEBP":
        return "WEBP"
    if payload[:4] in (b"II*\x00", b"MM\x00*"):
        return "TIFF"
    return None


class ImageDecoder:
    """
    Turns request bytes into a DecodedImage.

    All size checks run against the byte length and the parsed header, so an
    oversized image is rejected before any pixel buffer is allocated.
    """

    def __init__(self, config: Optional[DecoderConfig] = None):
        self.config = config or DecoderConfig()

    def decode(self, payload: bytes, declared_type: Optional[str]) -> DecodedImage:
        if not payload:
            raise DecodeError(ErrorKind.MALFORMED, "Empty payload")

        if len(payload) > self.config.max_payload_bytes:
            raise DecodeError(
                ErrorKind.TOO_LARGE,
                f"Payload of {len(payload)} bytes exceeds limit of {self.config.max_payload_bytes}",
                size=len(payload),
                limit=self.config.max_payload_bytes,
            )

        content_type = normalize_content_type(declared_type)
        expected_format = SUPPORTED_TYPES.get(content_type)
        if expected_format is None:
            raise DecodeError(ErrorKind.UNSUPPORTED, f"Unsupported content type: {declared_type!r}")

        sniffed = sniff_format(payload)
        if sniffed != expected_format:
            raise DecodeError(
                ErrorKind.MALFORMED,
                f"Payload does not look like {content_type} (detected {sniffed or 'unknown'})",
            )

        image = self._open_header(payload, expected_format)
        try:
            self._check_dimensions(image.size)
            pixels = self._materialize(image)
        finally:
            image.close()

        return DecodedImage(pixels, source_format=expected_format)

    def _open_header(self, payload: bytes, expected_format: str) -> Image.Image:
        # Image.open only parses the header; pixel data is read on load()
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("error", Image.DecompressionBombWarning)
                image = Image.open(io.BytesIO(payload), formats=[expected_format])
        except (Image.DecompressionBombError, Image.DecompressionBombWarning) as e:
            raise DecodeError(ErrorKind.TOO_LARGE, f"Image rejected as decompression bomb: {e}") from e
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            raise DecodeError(ErrorKind.MALFORMED, f"Could not parse {expected_format} header: {e}") from e
        return image

    def _check_dimensions(self, size: Tuple[int, int]) -> None:
        width, height = size
        if width <= 0 or height <= 0:
            raise DecodeError(ErrorKind.MALFORMED, f"Invalid image dimensions {width}x{height}")
        if width > self.config.max_dimension or height > self.config.max_dimension:
            raise DecodeError(
                ErrorKind.TOO_LARGE,
                f"Image {width}x{height} exceeds max dimension {self.config.max_dimension}",
                width=width,
                height=height,
            )
        if width * height > self.config.max_pixels:
            raise DecodeError(
                ErrorKind.TOO_LARGE,
                f"Image {width}x{height} exceeds max pixel count {self.config.max_pixels}",
                width=width,
                height=height,
            )

    def _materialize(self, image: Image.Image) -> np.ndarray:
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("error", Image.DecompressionBombWarning)
                image.load()
                rgb = image if image.mode == "RGB" else image.convert("RGB")
                pixels = np.array(rgb, dtype=np.uint8)
        except (Image.DecompressionBombError, Image.DecompressionBombWarning) as e:
            raise DecodeError(ErrorKind.TOO_LARGE, f"Image rejected as decompression bomb: {e}") from e
        except (OSError, SyntaxError, ValueError) as e:
            raise DecodeError(ErrorKind.MALFORMED, f"Could not decode pixel data: {e}") from e

        if pixels.ndim != 3 or pixels.shape[2] != 3:
            raise DecodeError(ErrorKind.MALFORMED, f"Unexpected decoded shape {pixels.shape}")
        logger.debug(f"decoded {image.format} {pixels.shape[1]}x{pixels.shape[0]}")
        return pixels
