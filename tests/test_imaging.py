import unittest
import base64
import cv2
import numpy as np
from condoguard.core.errors import ValidationError
from condoguard.core.imaging import decode_image, image_to_data_uri

class TestImaging(unittest.TestCase):
    """Tests para la normalización de imágenes"""

    def setUp(self):
        self.frame = np.full((300, 600, 3), 127, dtype=np.uint8)

    def _decode_uri(self, data_uri):
        raw = base64.b64decode(data_uri.split(",", 1)[1])
        return cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_COLOR)

    def test_downscale_keeps_aspect_ratio(self):
        data_uri = image_to_data_uri(self.frame, max_side=200)

        self.assertTrue(data_uri.startswith("data:image/jpeg;base64,"))
        self.assertEqual(self._decode_uri(data_uri).shape[:2], (100, 200))

    def test_small_image_not_upscaled(self):
        data_uri = image_to_data_uri(self.frame, max_side=1024)
        self.assertEqual(self._decode_uri(data_uri).shape[:2], (300, 600))

    def test_accepts_encoded_bytes_and_data_uri(self):
        ret, buffer = cv2.imencode('.png', self.frame)
        self.assertTrue(ret)

        from_bytes = decode_image(buffer.tobytes())
        self.assertEqual(from_bytes.shape, (300, 600, 3))

        data_uri = image_to_data_uri(buffer.tobytes())
        self.assertEqual(decode_image(data_uri).shape, (300, 600, 3))

    def test_invalid_inputs(self):
        for image in (b"", b"basura", "http://example.com/foto.jpg", "data:image/png;base64,@@@",
                      np.zeros((0, 0, 3), dtype=np.uint8)):
            with self.subTest(image=image if not isinstance(image, np.ndarray) else "ndarray vacío"):
                with self.assertRaises(ValidationError):
                    decode_image(image)

if __name__ == '__main__':
    unittest.main()
