import io
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from app.core.config import settings

logger = logging.getLogger("app.scan")

Encoder = Callable[[Image.Image, int, float], bytes]

PAYLOAD_TOO_LARGE = "payload_too_large"
SOURCE_UNREADABLE = "source_unreadable"


def jpeg_encoder(img: Image.Image, max_side: int, quality: float) -> bytes:
    """Downscale (never upscale) to max_side on the longest edge and encode as JPEG."""
    work = img.copy()
    if max(work.size) > max_side:
        work.thumbnail((max_side, max_side), Image.Resampling.LANCZOS)
    buf = io.BytesIO()
    work.save(buf, format="JPEG", quality=max(1, min(95, int(round(quality * 100)))), optimize=True)
    return buf.getvalue()


def _open_image(raw: bytes) -> tuple[Optional[Image.Image], Optional[str]]:
    if not raw:
        return None, "empty_source"
    try:
        img = Image.open(io.BytesIO(raw))
        img = ImageOps.exif_transpose(img)
        return img.convert("RGB"), None
    except (UnidentifiedImageError, OSError, ValueError) as e:
        return None, str(e)


@dataclass(frozen=True)
class SizerPass:
    max_side: int
    quality: float
    size_bytes: int


@dataclass(frozen=True)
class SizerResult:
    ok: bool
    payload: bytes = b""
    width: int = 0
    height: int = 0
    size_bytes: int = 0
    passes: list[SizerPass] = field(default_factory=list)
    reason: Optional[str] = None


class ImageSizer:
    """Two-pass JPEG compression with a hard payload ceiling.

    pass 1 -> (pass 2 if pass 1 is over the threshold) -> ok | payload_too_large.
    There is never a third pass.
    """

    def __init__(
        self,
        encoder: Encoder = jpeg_encoder,
        *,
        pass1_max_side: int = settings.SCAN_PASS1_MAX_SIDE,
        pass1_quality: float = settings.SCAN_PASS1_QUALITY,
        pass2_max_side: int = settings.SCAN_PASS2_MAX_SIDE,
        pass2_quality: float = settings.SCAN_PASS2_QUALITY,
        second_pass_threshold: int = settings.SCAN_SECOND_PASS_THRESHOLD_BYTES,
        max_payload: int = settings.SCAN_MAX_PAYLOAD_BYTES,
    ):
        self.encoder = encoder
        self.pass1 = (pass1_max_side, pass1_quality)
        self.pass2 = (pass2_max_side, pass2_quality)
        self.second_pass_threshold = second_pass_threshold
        self.max_payload = max_payload

    def fit(self, raw: bytes) -> SizerResult:
        img, err = _open_image(raw)
        if img is None:
            logger.info("scan:sizer unreadable source err=%s", err)
            return SizerResult(ok=False, reason=SOURCE_UNREADABLE)

        passes: list[SizerPass] = []
        payload = self._encode(img, *self.pass1, passes)
        if len(payload) > self.second_pass_threshold:
            payload = self._encode(img, *self.pass2, passes)

        if len(payload) > self.max_payload:
            logger.info("scan:sizer payload too large size=%s passes=%s", len(payload), len(passes))
            return SizerResult(ok=False, size_bytes=len(payload), passes=passes, reason=PAYLOAD_TOO_LARGE)

        max_side = passes[-1].max_side
        width, height = _fitted_size(img.size, max_side)
        return SizerResult(ok=True, payload=payload, width=width, height=height, size_bytes=len(payload), passes=passes)

    def _encode(self, img: Image.Image, max_side: int, quality: float, passes: list[SizerPass]) -> bytes:
        payload = self.encoder(img, max_side, quality)
        passes.append(SizerPass(max_side=max_side, quality=quality, size_bytes=len(payload)))
        return payload


def _fitted_size(size: tuple[int, int], max_side: int) -> tuple[int, int]:
    w, h = size
    longest = max(w, h)
    if longest <= max_side:
        return w, h
    scale = max_side / float(longest)
    return max(1, round(w * scale)), max(1, round(h * scale))
