"""
Compositing renderer.

Paints a type-specific replacement over every detection marked for
redaction: blur-and-mark for visual identifiers, a metadata indicator strip
for stripped GPS data, and a seamless synthetic value for text.
"""

from datetime import datetime
from functools import lru_cache
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from .config import (
    BOX_SCALE,
    METADATA_CATEGORIES,
    OBSCURE_CATEGORIES,
    Detection,
    DetectionCategory,
    RendererConfig,
)
from .logger import LoggerMixin
from .synthetic_data import SyntheticDataGenerator

PixelBox = Tuple[int, int, int, int]
ImageInput = Union[np.ndarray, bytes, str, Path]

# Accent outline per obscured category (RGB)
ACCENT_COLORS: Dict[DetectionCategory, Tuple[int, int, int]] = {
    DetectionCategory.FACE: (139, 92, 246),
    DetectionCategory.REFLECTION_EXPOSURE: (236, 72, 153),
    DetectionCategory.BACKGROUND_SCREEN: (59, 130, 246),
    DetectionCategory.LICENSE_PLATE: (245, 158, 11),
    DetectionCategory.BARCODE: (20, 184, 166),
    DetectionCategory.QR_CODE: (16, 185, 129),
    DetectionCategory.SENSITIVE_DOCUMENT: (239, 68, 68),
}
DEFAULT_ACCENT = (139, 92, 246)

FONT_CANDIDATES = {
    "sans": [
        "DejaVuSans-Bold.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "arialbd.ttf", "Arial Bold.ttf",
        "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
    ],
    "mono": [
        "DejaVuSansMono-Bold.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSansMono-Bold.ttf",
        "courbd.ttf", "Courier New Bold.ttf",
        "/System/Library/Fonts/Supplemental/Courier New Bold.ttf",
    ],
}


@lru_cache(maxsize=256)
def get_font(size: int, style: str = "sans"):
    """Best available TrueType font at the given pixel size."""
    size = max(1, int(size))
    for font_name in FONT_CANDIDATES.get(style, FONT_CANDIDATES["sans"]):
        try:
            return ImageFont.truetype(font_name, size)
        except (OSError, IOError):
            continue
    return ImageFont.load_default(size=size)


def to_pixel_box(
    box: Tuple[float, float, float, float],
    width: int,
    height: int,
    padding: int = 0
) -> Optional[PixelBox]:
    """
    Map a normalized (0-1000) box onto a width x height buffer.

    The box is expanded by `padding` pixels on every side and clamped to the
    buffer. Returns None when nothing of the box is left.
    """
    x1 = int(np.floor(box[0] / BOX_SCALE * width)) - padding
    y1 = int(np.floor(box[1] / BOX_SCALE * height)) - padding
    x2 = int(np.ceil(box[2] / BOX_SCALE * width)) + padding
    y2 = int(np.ceil(box[3] / BOX_SCALE * height)) + padding

    x1, x2 = max(0, x1), min(width, x2)
    y1, y2 = max(0, y1), min(height, y2)

    if x2 <= x1 or y2 <= y1:
        return None
    return (x1, y1, x2, y2)


def contrasting_ink(color_bgr: Tuple[int, int, int]) -> Tuple[int, int, int]:
    """Black or white (RGB) ink, whichever contrasts with the fill color."""
    b, g, r = color_bgr
    luminance = 0.299 * r + 0.587 * g + 0.114 * b
    return (0, 0, 0) if luminance > 128 else (255, 255, 255)


class CompositingRenderer(LoggerMixin):
    """
    Produces the protected image buffer from detections and decisions.

    The renderer keeps no state between calls apart from its random sources;
    set `noise_seed` and `synthetic_seed` in the config for reproducible output.
    """

    def __init__(self, config: Optional[RendererConfig] = None):
        self.config = config or RendererConfig()
        self.synthetic_generator = SyntheticDataGenerator(seed=self.config.synthetic_seed)
        self._rng = np.random.default_rng(self.config.noise_seed)

    def render(
        self,
        image: np.ndarray,
        detections: List[Detection],
        decisions: Mapping[str, bool]
    ) -> np.ndarray:
        """
        Apply every redaction to a copy of a BGR image.

        Args:
            image: Source buffer (BGR, BGRA or grayscale)
            detections: Current detections
            decisions: Decision map; only detections mapped to True are painted

        Returns:
            New BGR buffer; the input is not modified
        """
        result = self._as_bgr(image)
        height, width = result.shape[:2]
        padding = self.config.padding_pixels

        region_boxes: Dict[str, PixelBox] = {}
        for detection in detections:
            if detection.category in METADATA_CATEGORIES:
                continue
            bbox = to_pixel_box(detection.box, width, height, padding)
            if bbox is not None:
                region_boxes[detection.id] = bbox

        strip_metadata = False
        painted = 0
        for detection in detections:
            if not decisions.get(detection.id, False):
                continue

            if detection.category in METADATA_CATEGORIES:
                strip_metadata = True
                continue

            bbox = region_boxes.get(detection.id)
            if bbox is None:
                self.log_warning(f"Skipping {detection.category.value} {detection.id}: box outside image")
                continue

            if detection.category in OBSCURE_CATEGORIES:
                self._obscure_and_mark(result, detection, bbox)
            else:
                self._seamless_replace(result, detection, bbox)
            painted += 1

        if strip_metadata:
            self._paint_metadata_indicator(result, list(region_boxes.values()))

        self.log_info(f"Rendered {painted} region redactions (metadata strip: {strip_metadata})")
        return result

    def redact_image(
        self,
        image: ImageInput,
        detections: List[Detection],
        decisions: Mapping[str, bool],
        output_path: Optional[Union[str, Path]] = None
    ) -> Tuple[Optional[np.ndarray], Dict[str, Any]]:
        """
        Load, render and optionally save.

        If the image cannot be loaded nothing is rendered or written, and the
        returned buffer is None so the caller keeps its original.
        """
        image_array = self.load_image(image)
        if image_array is None:
            return None, {"error": "image could not be loaded", "redacted_regions": 0}

        redacted = self.render(image_array, detections, decisions)

        if output_path:
            self.save_image(redacted, output_path)

        metadata = {
            "total_detections": len(detections),
            "redacted_regions": sum(1 for d in detections if decisions.get(d.id, False)),
            "original_shape": image_array.shape,
            "timestamp": datetime.now().isoformat(),
        }
        return redacted, metadata

    def load_image(self, image: ImageInput) -> Optional[np.ndarray]:
        """Load an image as a BGR array; returns None if it cannot be read."""
        if isinstance(image, np.ndarray):
            return self._as_bgr(image)

        try:
            if isinstance(image, (bytes, bytearray)):
                pil_image = Image.open(BytesIO(image))
            else:
                pil_image = Image.open(Path(image))
            pil_image = pil_image.convert('RGB')
            return cv2.cvtColor(np.array(pil_image), cv2.COLOR_RGB2BGR)
        except Exception as e:
            self.log_error(f"Failed to load image: {e}")
            return None

    def save_image(self, image_array: np.ndarray, output_path: Union[str, Path]) -> None:
        """Save a BGR array to file."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        Image.fromarray(cv2.cvtColor(image_array, cv2.COLOR_BGR2RGB)).save(output_path)
        self.log_info(f"Saved redacted image to {output_path}")

    @staticmethod
    def encode_png(image_array: np.ndarray) -> bytes:
        """PNG bytes of a BGR array (no metadata is carried over)."""
        ok, encoded = cv2.imencode(".png", image_array)
        if not ok:
            raise ValueError("PNG encoding failed")
        return encoded.tobytes()

    def create_redaction_mask(
        self,
        image_shape: Tuple[int, ...],
        detections: List[Detection],
        decisions: Mapping[str, bool]
    ) -> np.ndarray:
        """
        Binary mask of the padded regions the renderer is allowed to touch.

        Returns:
            uint8 mask, 255 inside redacted regions and 0 elsewhere
        """
        height, width = image_shape[:2]
        mask = np.zeros((height, width), dtype=np.uint8)

        for detection in detections:
            if not decisions.get(detection.id, False) or detection.category in METADATA_CATEGORIES:
                continue
            bbox = to_pixel_box(detection.box, width, height, self.config.padding_pixels)
            if bbox is None:
                continue
            x1, y1, x2, y2 = bbox
            mask[y1:y2, x1:x2] = 255

        return mask

    @staticmethod
    def _as_bgr(image: np.ndarray) -> np.ndarray:
        if image.ndim == 2:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        if image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
        return image.copy()

    # Obscure-and-mark

    def _blur_kernel(self, width: int, height: int) -> Tuple[int, int]:
        k = self.config.blur_kernel_size
        if k % 2 == 0:
            k += 1

        def fit(limit: int) -> int:
            limit = limit if limit % 2 == 1 else limit - 1
            return max(1, min(k, limit))

        return fit(width), fit(height)

    def _obscure_and_mark(self, image: np.ndarray, detection: Detection, bbox: PixelBox) -> None:
        """Blur, darken, outline and label a visual identifier in place."""
        x1, y1, x2, y2 = bbox
        region = image[y1:y2, x1:x2]
        h, w = region.shape[:2]

        blurred = cv2.GaussianBlur(region, self._blur_kernel(w, h), self.config.blur_sigma)
        alpha = self.config.overlay_alpha
        darkened = cv2.addWeighted(np.zeros_like(blurred), alpha, blurred, 1.0 - alpha, 0)

        canvas = Image.fromarray(cv2.cvtColor(darkened, cv2.COLOR_BGR2RGB)).convert("RGBA")
        layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)
        accent = ACCENT_COLORS.get(detection.category, DEFAULT_ACCENT)

        if detection.category is DetectionCategory.FACE:
            rx, ry = w / 3, h / 2.5
            draw.ellipse(
                [w / 2 - rx, h / 2 - ry, w / 2 + rx, h / 2 + ry],
                outline=accent + (77,),
                width=1,
            )

        draw.rectangle([0, 0, w - 1, h - 1], outline=accent + (255,), width=2)

        # Label lives on the region canvas, so it cannot spill outside the box
        font_size = int(min(h * 0.25, w * 0.15, self.config.label_max_font_size))
        if font_size >= 4:
            font = get_font(font_size, "sans")
            left, top, right, bottom = draw.textbbox((0, 0), self.config.label_text, font=font)
            tx = (w - (right - left)) / 2 - left
            ty = (h - (bottom - top)) / 2 - top
            draw.text((tx, ty), self.config.label_text, fill=accent + (128,), font=font)

        composed = Image.alpha_composite(canvas, layer).convert("RGB")
        image[y1:y2, x1:x2] = cv2.cvtColor(np.array(composed), cv2.COLOR_RGB2BGR)

    # Metadata indicator

    def _paint_metadata_indicator(self, image: np.ndarray, protected_boxes: List[PixelBox]) -> None:
        """Blend the indicator strip along the top edge, skipping detection regions."""
        strip_height = min(self.config.indicator_height, image.shape[0])
        if strip_height <= 0:
            return

        mask = np.ones((strip_height, image.shape[1]), dtype=bool)
        for x1, y1, x2, y2 in protected_boxes:
            if y1 < strip_height:
                mask[y1:min(y2, strip_height), x1:x2] = False

        alpha = self.config.indicator_alpha
        color_bgr = np.array(self.config.indicator_color[::-1], dtype=np.float32)
        strip = image[:strip_height].astype(np.float32)
        blended = strip * (1.0 - alpha) + color_bgr * alpha
        strip[mask] = blended[mask]
        image[:strip_height] = np.clip(np.rint(strip), 0, 255).astype(np.uint8)

    # Seamless value replacement

    def _sample_surrounding_color(self, image: np.ndarray, bbox: PixelBox) -> Tuple[int, int, int]:
        """Average BGR color of the ring of pixels just outside the region."""
        x1, y1, x2, y2 = bbox
        margin = self.config.sample_margin
        height, width = image.shape[:2]
        sx1, sy1 = max(0, x1 - margin), max(0, y1 - margin)
        sx2, sy2 = min(width, x2 + margin), min(height, y2 + margin)

        window = image[sy1:sy2, sx1:sx2]
        ring_mask = np.ones(window.shape[:2], dtype=bool)
        ring_mask[y1 - sy1:y2 - sy1, x1 - sx1:x2 - sx1] = False
        samples = window[ring_mask]

        if samples.size == 0:
            # Region covers the whole buffer; fall back to its own mean
            samples = image[y1:y2, x1:x2].reshape(-1, image.shape[2])

        mean = samples.astype(np.float64).mean(axis=0)
        return tuple(int(round(c)) for c in mean[:3])

    def _textured_fill(self, shape: Tuple[int, ...], color_bgr: Tuple[int, int, int]) -> np.ndarray:
        amplitude = self.config.noise_amplitude
        fill = np.empty(shape, dtype=np.int16)
        fill[:] = color_bgr
        if amplitude > 0:
            grain = self._rng.integers(-amplitude, amplitude + 1, size=shape[:2], dtype=np.int16)
            fill += grain[..., None]
        return np.clip(fill, 0, 255).astype(np.uint8)

    def _fit_font(self, draw: ImageDraw.ImageDraw, text: str, max_width: int, start_size: int, style: str):
        """Largest font not above start_size whose rendering of text fits max_width."""
        low, high = 4, max(4, int(start_size))
        best = get_font(low, style)
        while low <= high:
            size = (low + high) // 2
            font = get_font(size, style)
            left, _, right, _ = draw.textbbox((0, 0), text, font=font)
            if right - left <= max_width:
                best = font
                low = size + 1
            else:
                high = size - 1
        return best

    def _seamless_replace(self, image: np.ndarray, detection: Detection, bbox: PixelBox) -> None:
        """Refill the region with its surroundings and paint a synthetic value."""
        x1, y1, x2, y2 = bbox
        h, w = y2 - y1, x2 - x1

        base_color = self._sample_surrounding_color(image, bbox)
        fill = self._textured_fill((h, w, 3), base_color)
        ink = contrasting_ink(base_color)
        synthetic_text = self.synthetic_generator.generate_replacement(detection.category)

        canvas = Image.fromarray(cv2.cvtColor(fill, cv2.COLOR_BGR2RGB)).convert("RGBA")
        if detection.category is DetectionCategory.CREDIT_CARD:
            canvas = self._draw_embossed_text(canvas, synthetic_text, ink)
        else:
            canvas = self._draw_flat_text(canvas, synthetic_text, ink)

        image[y1:y2, x1:x2] = cv2.cvtColor(np.array(canvas.convert("RGB")), cv2.COLOR_RGB2BGR)
        self.log_debug(f"Replaced {detection.category.value} {detection.id} with synthetic value")

    def _draw_flat_text(self, canvas: Image.Image, text: str, ink: Tuple[int, int, int]) -> Image.Image:
        w, h = canvas.size
        layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)

        font = self._fit_font(draw, text, max(1, w - 8), max(12, int(h * 0.75)), "mono")
        _, top, _, bottom = draw.textbbox((0, 0), text, font=font)
        draw.text((4, (h - (bottom - top)) / 2 - top), text, fill=ink + (255,), font=font)
        draw.rectangle([0, 0, w - 1, h - 1], outline=DEFAULT_ACCENT + (51,), width=1)

        return Image.alpha_composite(canvas, layer)

    def _draw_embossed_text(self, canvas: Image.Image, text: str, ink: Tuple[int, int, int]) -> Image.Image:
        """Card-style digits: sheen, punched shadow, gradient glyphs, raised highlight."""
        w, h = canvas.size

        # Diagonal metallic sheen
        yy, xx = np.mgrid[0:h, 0:w]
        t = (xx / max(w - 1, 1) + yy / max(h - 1, 1)) / 2
        sheen_alpha = np.interp(t, [0.0, 0.4, 0.6, 1.0], [0.2, 0.0, 0.0, 0.1]) * 255
        sheen = np.zeros((h, w, 4), dtype=np.uint8)
        sheen[..., :3] = 255
        sheen[..., 3] = sheen_alpha.astype(np.uint8)
        canvas = Image.alpha_composite(canvas, Image.fromarray(sheen))

        probe = ImageDraw.Draw(canvas)
        font = self._fit_font(probe, text, max(1, w - 10), int(h * 0.82), "mono")
        _, top, _, bottom = probe.textbbox((0, 0), text, font=font)
        baseline_y = (h - (bottom - top)) / 2 - top

        shadow = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        ImageDraw.Draw(shadow).text((5, baseline_y + 1), text, fill=(0, 0, 0, 128), font=font)
        canvas = Image.alpha_composite(canvas, shadow)

        if ink == (255, 255, 255):
            top_color, bottom_color = (255, 255, 255), (209, 209, 209)
        else:
            top_color, bottom_color = (51, 51, 51), (0, 0, 0)
        ramp = np.linspace(0.0, 1.0, h)[:, None, None]
        gradient = (np.array(top_color) * (1 - ramp) + np.array(bottom_color) * ramp).astype(np.uint8)
        gradient = np.repeat(gradient, w, axis=1)

        glyph_mask = Image.new("L", canvas.size, 0)
        ImageDraw.Draw(glyph_mask).text((4, baseline_y), text, fill=255, font=font)
        glyphs = Image.fromarray(gradient).convert("RGBA")
        glyphs.putalpha(glyph_mask)
        canvas = Image.alpha_composite(canvas, glyphs)

        highlight_alpha = 102 if ink == (255, 255, 255) else 26
        highlight = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        ImageDraw.Draw(highlight).text(
            (4, baseline_y), text, fill=(255, 255, 255, 0), font=font,
            stroke_width=1, stroke_fill=(255, 255, 255, highlight_alpha),
        )
        return Image.alpha_composite(canvas, highlight)
