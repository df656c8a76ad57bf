"""
segmentation.py - Splitting scanned pages into stencil and background layers.

Used for pages that are not bilevel already:
- Indexed pages with few colors: one mask per color
- Everything else: black text thresholded into a mask, the remaining
  picture inpainted and resampled into a background layer

Masks are uint8 arrays, 255 = painted, 0 = clear.
"""

import logging
from typing import List, Optional, Tuple

import numpy as np
import cv2
from PIL import Image

logger = logging.getLogger(__name__)

COLOR_CHROMA_THRESHOLD = 15     # Minimum chroma to be considered "color"
COLOR_PIXEL_THRESHOLD = 0.005   # 0.5% of pixels must have color

WHITE = (255, 255, 255)

Rgb = Tuple[int, int, int]


def to_array(img: Image.Image) -> np.ndarray:
    """RGB or grayscale array of an image, alpha composited over white."""
    if img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info):
        img = img.convert("RGBA")
        base = Image.new("RGB", img.size, WHITE)
        base.paste(img, mask=img.getchannel("A"))
        img = base
    elif img.mode == "1" or img.mode.startswith("I") or img.mode == "F":
        img = img.convert("L")
    elif img.mode != "L":
        img = img.convert("RGB")
    return np.array(img)


def to_gray(image: np.ndarray) -> np.ndarray:
    if len(image.shape) == 3:
        return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
    return image


def detect_color(image: np.ndarray, text_mask: Optional[np.ndarray] = None) -> bool:
    """
    Whether the part of the page left for the background carries color.

    Pixels under text_mask go to the stencil and are not counted. At least
    COLOR_PIXEL_THRESHOLD of the remaining pixels must have a LAB chroma
    above COLOR_CHROMA_THRESHOLD.
    """
    if len(image.shape) != 3 or image.shape[2] != 3:
        return False

    lab = cv2.cvtColor(image, cv2.COLOR_RGB2LAB)

    # a and b are centered at 128 in OpenCV's 8-bit LAB
    a = lab[:, :, 1].astype(np.float32) - 128
    b = lab[:, :, 2].astype(np.float32) - 128
    chromatic = np.sqrt(a**2 + b**2) > COLOR_CHROMA_THRESHOLD

    paper = np.ones(chromatic.shape, dtype=bool) if text_mask is None else text_mask == 0
    total = np.count_nonzero(paper)
    if total == 0:
        return False

    color_ratio = np.count_nonzero(chromatic & paper) / total
    is_color = color_ratio > COLOR_PIXEL_THRESHOLD
    logger.debug(f"Color detection: {color_ratio*100:.2f}% chromatic background pixels, is_color={is_color}")
    return is_color


def threshold_mask(gray: np.ndarray, threshold: int) -> np.ndarray:
    """Pixels at or below threshold become the text mask."""
    _, mask = cv2.threshold(gray, threshold, 255, cv2.THRESH_BINARY_INV)
    return mask


def create_background(image: np.ndarray, foreground_mask: np.ndarray) -> np.ndarray:
    """
    Fill the masked text areas with surrounding colors.

    Light smoothing afterwards keeps lossy background codecs from ringing
    around the filled areas.
    """
    if not np.any(foreground_mask):
        return image

    # Dilate mask slightly to ensure text edges are covered
    kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (3, 3))
    dilated_mask = cv2.dilate(foreground_mask, kernel, iterations=1)

    background = cv2.inpaint(image, dilated_mask, 3, cv2.INPAINT_TELEA)
    return cv2.bilateralFilter(background, 5, 50, 50)


def resample(image: np.ndarray, src_dpi: int, dst_dpi: int) -> np.ndarray:
    """Scale an image from src_dpi to dst_dpi."""
    if src_dpi <= 0 or src_dpi == dst_dpi:
        return image
    height, width = image.shape[:2]
    scale = dst_dpi / src_dpi
    size = (max(1, round(width * scale)), max(1, round(height * scale)))
    interpolation = cv2.INTER_AREA if scale < 1 else cv2.INTER_CUBIC
    logger.debug(f"Resampling {width}x{height} from {src_dpi} to {dst_dpi} dpi")
    return cv2.resize(image, size, interpolation=interpolation)


def _palette_alpha(img: Image.Image, ncolors: int) -> Optional[List[int]]:
    trans = img.info.get("transparency")
    if trans is None:
        return None
    if isinstance(trans, int):
        return [0 if i == trans else 255 for i in range(ncolors)]
    alpha = list(trans)[:ncolors]
    return alpha + [255] * (ncolors - len(alpha))


def split_indexed(img: Image.Image, max_colors: int) -> Optional[List[Tuple[Rgb, np.ndarray]]]:
    """
    One (color, mask) pair per palette color in use.

    White is treated as the paper and gets no mask; in an image with
    transparency, the fully transparent entries play that role instead.
    Returns None if the image uses more than max_colors palette entries.
    """
    if img.mode != "P":
        return None

    indices = np.asarray(img)
    used = [int(i) for i in np.unique(indices)]
    if len(used) > max_colors:
        logger.debug(f"Indexed image uses {len(used)} colors, more than {max_colors}")
        return None

    palette = img.getpalette() or []
    ncolors = len(palette) // 3
    alpha = _palette_alpha(img, ncolors)

    layers = []
    for idx in used:
        rgb = tuple(palette[idx * 3:idx * 3 + 3]) if idx < ncolors else (0, 0, 0)
        if alpha is not None:
            if idx < ncolors and alpha[idx] == 0:
                continue
        elif rgb == WHITE:
            continue
        mask = np.where(indices == idx, 255, 0).astype(np.uint8)
        layers.append((rgb, mask))
    return layers


def mask_to_image(mask: np.ndarray, dpi: Tuple[int, int]) -> Image.Image:
    """Bilevel image with the painted pixels black."""
    img = Image.fromarray(np.where(mask > 0, 0, 255).astype(np.uint8)).convert("1", dither=Image.Dither.NONE)
    img.info["dpi"] = dpi
    return img
