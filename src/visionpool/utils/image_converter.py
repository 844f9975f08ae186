import base64
import io

import numpy as np
from PIL import Image


def to_png_bytes(image_data: np.ndarray) -> bytes:
    if image_data.dtype != np.uint8:
        raise ValueError(f"Expected uint8 array, got {image_data.dtype}")
    if not (image_data.ndim == 2 or (image_data.ndim == 3 and image_data.shape[2] == 3)):
        raise ValueError(f"Unsupported array shape: {image_data.shape}")

    buffer = io.BytesIO()
    Image.fromarray(image_data).save(buffer, format='PNG')  #L for 2-d, RGB for HxWx3
    return buffer.getvalue()


def to_base64(image_data: np.ndarray) -> str:
    return base64.b64encode(to_png_bytes(image_data)).decode('utf-8')
