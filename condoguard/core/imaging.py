import base64
from typing import Union

import cv2
import numpy as np

from condoguard.core.errors import ValidationError

ImageSource = Union[bytes, bytearray, np.ndarray, str]


def decode_image(image: ImageSource) -> np.ndarray:
    """Decodificar bytes (JPEG/PNG) o data URI a una matriz BGR"""
    if isinstance(image, np.ndarray):
        frame = image
    else:
        if isinstance(image, str):
            if not image.startswith("data:image/") or ";base64," not in image:
                raise ValidationError("La imagen debe ser un data URI base64")
            try:
                image = base64.b64decode(image.split(",", 1)[1], validate=True)
            except ValueError as e:
                raise ValidationError("Data URI con base64 inválido") from e
        if not image:
            raise ValidationError("Imagen vacía")
        frame = cv2.imdecode(np.frombuffer(bytes(image), dtype=np.uint8), cv2.IMREAD_COLOR)

    if frame is None or frame.size == 0 or frame.ndim not in (2, 3):
        raise ValidationError("No se pudo decodificar la imagen")
    return frame


def image_to_data_uri(image: ImageSource, max_side: int = 1024, jpeg_quality: int = 85) -> str:
    """Normalizar una imagen a JPEG reducido y devolverla como data URI"""
    frame = decode_image(image)

    height, width = frame.shape[:2]
    longest = max(height, width)
    if longest > max_side:
        scale = max_side / longest
        frame = cv2.resize(frame, (max(1, int(width * scale)), max(1, int(height * scale))),
                           interpolation=cv2.INTER_AREA)

    ret, buffer = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, jpeg_quality])
    if not ret:
        raise ValidationError("No se pudo codificar la imagen")

    return "data:image/jpeg;base64," + base64.b64encode(buffer.tobytes()).decode("ascii")
