import base64
import binascii
import io
import logging
import re
from enum import IntEnum
from typing import List, Optional, Tuple

import torch
from PIL import Image, UnidentifiedImageError
from transformers import TrOCRProcessor, VisionEncoderDecoderModel

from errors import OcrFailure

logger = logging.getLogger(__name__)

DEVICE = "cuda" if torch.cuda.is_available() else "cpu"

_DATA_URL = re.compile(r"^data:(image/(?:png|jpeg|jpg|webp));base64,(.+)$", re.I | re.S)


class PageSegMode(IntEnum):
    SINGLE_BLOCK = 6   # one uniform block of text, usually right for labels
    SPARSE_TEXT = 11   # scattered text, read band by band


def normalize_psm(value) -> PageSegMode:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return PageSegMode.SINGLE_BLOCK
    if n == PageSegMode.SPARSE_TEXT:
        return PageSegMode.SPARSE_TEXT
    return PageSegMode.SINGLE_BLOCK


def parse_image_data_url(image_data_url) -> bytes:
    if not isinstance(image_data_url, str):
        raise OcrFailure("Invalid imageDataUrl. Expected a base64 data URL.", status=400)
    m = _DATA_URL.match(image_data_url.strip())
    if not m:
        raise OcrFailure("Invalid imageDataUrl. Expected a base64 data URL.", status=400)
    try:
        raw = base64.b64decode(m.group(2), validate=False)
    except (binascii.Error, ValueError):
        raw = b""
    if not raw:
        raise OcrFailure("Invalid imageDataUrl. Expected a base64 data URL.", status=400)
    return raw


# =========================
# Sparse mode: split into horizontal ink bands
# =========================
def text_bands(img: Image.Image, min_height: int = 6, merge_gap: int = 4, pad: int = 4) -> List[Tuple[int, int]]:
    gray = img.convert("L")
    w, h = gray.size
    pixels = torch.frombuffer(bytearray(gray.tobytes()), dtype=torch.uint8).view(h, w).float()
    if pixels.mean() < 128:
        pixels = 255 - pixels  # light text on dark background
    threshold = pixels.mean() * 0.75
    ink_per_row = (pixels < threshold).sum(dim=1)
    has_ink = (ink_per_row > max(1, int(w * 0.01))).tolist()

    bands: List[List[int]] = []
    for y, inked in enumerate(has_ink):
        if not inked:
            continue
        if bands and y - bands[-1][1] <= merge_gap:
            bands[-1][1] = y
        else:
            bands.append([y, y])

    return [
        (max(0, top - pad), min(h, bottom + 1 + pad))
        for top, bottom in bands
        if bottom - top + 1 >= min_height
    ]


class OcrEngine:
    """TrOCR reader, loaded on first use."""

    def __init__(self, model_id: str, enabled: bool = True):
        self.model_id = model_id
        self.enabled = enabled
        self._model: Optional[Tuple[TrOCRProcessor, VisionEncoderDecoderModel]] = None

    def load(self) -> Tuple[TrOCRProcessor, VisionEncoderDecoderModel]:
        if self._model is None:
            proc = TrOCRProcessor.from_pretrained(self.model_id)
            mdl = VisionEncoderDecoderModel.from_pretrained(self.model_id).to(DEVICE).eval()
            self._model = (proc, mdl)
        return self._model

    @torch.inference_mode()
    def _read(self, img: Image.Image) -> str:
        proc, mdl = self.load()
        pixel_values = proc(images=img, return_tensors="pt").pixel_values.to(DEVICE)
        ids = mdl.generate(pixel_values, max_new_tokens=256, num_beams=1, do_sample=False)
        return proc.batch_decode(ids, skip_special_tokens=True)[0].strip()

    def recognize(self, image_bytes: bytes, psm: PageSegMode = PageSegMode.SINGLE_BLOCK) -> str:
        if not self.enabled:
            raise OcrFailure("OCR is disabled")
        try:
            img = Image.open(io.BytesIO(image_bytes)).convert("RGB")
        except (UnidentifiedImageError, OSError) as e:
            raise OcrFailure("Unreadable image", status=400) from e

        try:
            if psm is PageSegMode.SPARSE_TEXT:
                bands = text_bands(img) or [(0, img.height)]
                lines = [self._read(img.crop((0, top, img.width, bottom))) for top, bottom in bands]
                text = "\n".join(line for line in lines if line)
            else:
                text = self._read(img)
        except Exception as e:
            logger.exception("OCR failed")
            raise OcrFailure("OCR failed") from e
        return text.strip()
