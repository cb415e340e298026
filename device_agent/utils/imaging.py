import base64
from io import BytesIO
from typing import Optional

from PIL import Image

from ..core.config import SCREENSHOT_MAX_SIZE
from ..core.types import Bounds


def load_screencap(data: bytes, crop: Optional[Bounds] = None) -> Image.Image:
    """Decode raw screencap bytes. adb and Playwright both hand back PNG,
    usually with an alpha channel the model does not need."""
    if not data:
        raise ValueError("empty screenshot")
    img = Image.open(BytesIO(data))
    img.load()
    if crop is not None and crop.area > 0:
        img = img.crop((crop.left, crop.top, crop.right, crop.bottom))
    if img.mode != "RGB":
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.getchannel("A") if "A" in img.getbands() else None)
        img = background
    return img


def image_to_data_url(data: bytes, max_size: int = SCREENSHOT_MAX_SIZE, crop: Optional[Bounds] = None) -> str:
    img = load_screencap(data, crop)
    # Phone screens are tall; bound the long edge only.
    img.thumbnail((max_size, max_size), Image.LANCZOS)

    buf = BytesIO()
    img.save(buf, format="JPEG", quality=75)
    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode("ascii")
