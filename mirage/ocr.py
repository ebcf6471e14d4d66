"""
OCR wrapper supporting Tesseract and EasyOCR fallback.

Text extraction is a collaborator of the swarm's text-reader agent; the core
never runs OCR on its own.
"""

from io import BytesIO
from pathlib import Path
from typing import List, Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image

from .config import OCRConfig
from .logger import LoggerMixin

ImageInput = Union[np.ndarray, bytes, str, Path]


class OCRResult:
    """Result from OCR operation."""

    def __init__(self, text: str, bbox: Tuple[int, int, int, int], confidence: float):
        """
        Initialize OCR result.

        Args:
            text: Extracted text
            bbox: Bounding box as (x1, y1, x2, y2) in pixels
            confidence: Confidence score (0.0 to 1.0)
        """
        self.text = text.strip()
        self.bbox = bbox
        self.confidence = confidence

    def __repr__(self) -> str:
        return f"OCRResult(text='{self.text[:20]}...', bbox={self.bbox}, conf={self.confidence:.2f})"


class OCREngine(LoggerMixin):
    """Base class for OCR engines."""

    name = "base"

    def __init__(self, config: OCRConfig):
        self.config = config

    def extract_text(self, image: ImageInput) -> List[OCRResult]:
        raise NotImplementedError("Subclasses must implement extract_text")

    def _load_image(self, image: ImageInput) -> np.ndarray:
        """Load image as a BGR numpy array."""
        if isinstance(image, np.ndarray):
            return image

        if isinstance(image, (bytes, bytearray)):
            pil_image = Image.open(BytesIO(image))
        else:
            image_path = Path(image)
            if not image_path.exists():
                raise FileNotFoundError(f"Image file not found: {image_path}")
            pil_image = Image.open(image_path)

        if pil_image.mode != 'RGB':
            pil_image = pil_image.convert('RGB')
        return cv2.cvtColor(np.array(pil_image), cv2.COLOR_RGB2BGR)

    def _preprocess_for_ocr(self, image: np.ndarray) -> np.ndarray:
        """Contrast-enhance and sharpen an image before recognition."""
        try:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if image.ndim == 3 else image

            clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
            enhanced = clahe.apply(gray)
            denoised = cv2.GaussianBlur(enhanced, (3, 3), 0)

            kernel = np.array([[-1, -1, -1],
                               [-1, 9, -1],
                               [-1, -1, -1]])
            sharpened = cv2.filter2D(denoised, -1, kernel)
            return cv2.cvtColor(sharpened, cv2.COLOR_GRAY2BGR)

        except Exception as e:
            self.log_warning(f"Preprocessing failed, using original image: {e}")
            return image


class TesseractEngine(OCREngine):
    """Tesseract OCR implementation."""

    name = "tesseract"

    def __init__(self, config: OCRConfig):
        super().__init__(config)
        self._check_tesseract()

    def _check_tesseract(self) -> None:
        """Fail early if the tesseract binary is missing."""
        import pytesseract

        version = pytesseract.get_tesseract_version()
        self.log_info(f"Tesseract {version} is available")

    def extract_text(self, image: ImageInput) -> List[OCRResult]:
        import pytesseract

        image_array = self._load_image(image)
        if self.config.enhance_preprocessing:
            image_array = self._preprocess_for_ocr(image_array)

        if image_array.ndim == 3:
            pil_image = Image.fromarray(cv2.cvtColor(image_array, cv2.COLOR_BGR2RGB))
        else:
            pil_image = Image.fromarray(image_array)

        data = pytesseract.image_to_data(
            pil_image,
            config=self.config.tesseract_config,
            output_type=pytesseract.Output.DICT
        )

        ocr_results = []
        for i in range(len(data['text'])):
            text = data['text'][i].strip()
            confidence = float(data['conf'][i]) / 100.0

            if not text or confidence < self.config.confidence_threshold:
                continue

            x, y, w, h = data['left'][i], data['top'][i], data['width'][i], data['height'][i]
            ocr_results.append(OCRResult(text=text, bbox=(x, y, x + w, y + h), confidence=confidence))

        self.log_info(f"Tesseract extracted {len(ocr_results)} text regions")
        return ocr_results


class EasyOCREngine(OCREngine):
    """EasyOCR implementation (optional extra)."""

    name = "easyocr"

    def __init__(self, config: OCRConfig):
        super().__init__(config)
        import easyocr

        self.reader = easyocr.Reader(self.config.languages, gpu=False, verbose=False)
        self.log_info(f"EasyOCR initialized with languages: {self.config.languages}")

    def extract_text(self, image: ImageInput) -> List[OCRResult]:
        image_array = self._load_image(image)
        if self.config.enhance_preprocessing:
            image_array = self._preprocess_for_ocr(image_array)

        image_rgb = cv2.cvtColor(image_array, cv2.COLOR_BGR2RGB) if image_array.ndim == 3 else image_array
        results = self.reader.readtext(image_rgb)

        ocr_results = []
        for bbox_points, text, confidence in results:
            if confidence < self.config.confidence_threshold:
                continue
            points = np.array(bbox_points)
            x1, y1 = points.min(axis=0).astype(int)
            x2, y2 = points.max(axis=0).astype(int)
            ocr_results.append(OCRResult(
                text=text, bbox=(int(x1), int(y1), int(x2), int(y2)), confidence=float(confidence)
            ))

        self.log_info(f"EasyOCR extracted {len(ocr_results)} text regions")
        return ocr_results


ENGINES = {
    "tesseract": TesseractEngine,
    "easyocr": EasyOCREngine,
}


class OCRManager(LoggerMixin):
    """
    Main OCR manager that handles engine selection and fallback.
    """

    def __init__(
        self,
        config: Optional[OCRConfig] = None,
        primary_engine: Optional[OCREngine] = None,
        fallback_engine: Optional[OCREngine] = None
    ):
        self.config = config or OCRConfig()
        self.primary_engine = primary_engine
        self.fallback_engine = fallback_engine
        if primary_engine is None and fallback_engine is None:
            self._initialize_engines()

    def _create(self, engine_name: str) -> Optional[OCREngine]:
        engine_cls = ENGINES.get(engine_name)
        if engine_cls is None:
            self.log_warning(f"Unknown OCR engine: {engine_name}")
            return None
        try:
            return engine_cls(self.config)
        except Exception as e:
            self.log_warning(f"Failed to initialize {engine_name}: {e}")
            return None

    def _initialize_engines(self) -> None:
        self.primary_engine = self._create(self.config.primary_engine)
        if self.config.fallback_engine and self.config.fallback_engine != self.config.primary_engine:
            self.fallback_engine = self._create(self.config.fallback_engine)

        if self.primary_engine is None and self.fallback_engine is None:
            raise RuntimeError(
                f"No OCR engines available (tried {self.config.primary_engine}, "
                f"{self.config.fallback_engine}). Install pytesseract+tesseract or easyocr."
            )
        self.log_info(f"OCR engines available: {self.get_available_engines()}")

    def extract_text(self, image: ImageInput) -> Tuple[List[OCRResult], str]:
        """
        Extract text from image using available engines.

        Returns:
            Tuple of (OCR results, engine name used)
        """
        if self.primary_engine is not None:
            try:
                return self.primary_engine.extract_text(image), self.primary_engine.name
            except Exception as e:
                self.log_warning(f"Primary engine {self.primary_engine.name} failed: {e}")

        if self.fallback_engine is not None:
            try:
                return self.fallback_engine.extract_text(image), self.fallback_engine.name
            except Exception as e:
                self.log_error(f"Fallback engine {self.fallback_engine.name} failed: {e}")

        raise RuntimeError("All OCR engines failed")

    def extract_plain_text(self, image: ImageInput) -> str:
        """All recognized text joined by spaces, in reading order of the engine."""
        results, _ = self.extract_text(image)
        return " ".join(r.text for r in results if r.text)

    def get_available_engines(self) -> List[str]:
        return [e.name for e in (self.primary_engine, self.fallback_engine) if e is not None]
