"""
Image Operations (Pillow)

Resizing, canvas composition, cover-fitting and colour matching used by
the matting and fusion workflows. Everything here is synchronous and
CPU bound; services run it through asyncio.to_thread.
"""

import io
from collections import Counter
from typing import Optional, Tuple

from PIL import Image, ImageChops, ImageCms, ImageOps, UnidentifiedImageError

from photofusion.core.exceptions import ImageProcessingError

RGB = Tuple[int, int, int]

_SRGB_PROFILE = ImageCms.createProfile("sRGB")
_LAB_PROFILE = ImageCms.createProfile("LAB")
_RGB_TO_LAB = ImageCms.buildTransform(_SRGB_PROFILE, _LAB_PROFILE, "RGB", "LAB")
_LAB_TO_RGB = ImageCms.buildTransform(_LAB_PROFILE, _SRGB_PROFILE, "LAB", "RGB")


# =============================================================================
# Decoding / Encoding
# =============================================================================

def open_image(data: bytes) -> Image.Image:
    """Decode bytes into a fully loaded Pillow image."""
    if not data:
        raise ImageProcessingError("Empty image data")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageProcessingError(f"Could not decode image: {e}") from e
    return img


def image_size(data: bytes) -> Tuple[int, int]:
    return open_image(data).size


def to_png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def ensure_png(data: bytes) -> bytes:
    """Re-encode any decodable image as PNG; PNG input is returned untouched."""
    img = open_image(data)
    if img.format == "PNG":
        return data
    return to_png_bytes(img)


# =============================================================================
# Geometry
# =============================================================================

def resize_inside(img: Image.Image, max_edge: int) -> Image.Image:
    """Downscale so neither side exceeds max_edge. Never enlarges."""
    if max(img.size) <= max_edge:
        return img
    resized = img.copy()
    resized.thumbnail((max_edge, max_edge), Image.Resampling.LANCZOS)
    return resized


def fit_inside(img: Image.Image, width: int, height: int) -> Image.Image:
    """Scale (up or down) to the largest size that fits in width x height."""
    w, h = img.size
    scale = min(width / w, height / h)
    new_size = (max(1, round(w * scale)), max(1, round(h * scale)))
    if new_size == img.size:
        return img
    return img.resize(new_size, Image.Resampling.LANCZOS)


def centered_offset(inner: Tuple[int, int], outer: Tuple[int, int]) -> Tuple[int, int]:
    return (outer[0] - inner[0]) // 2, (outer[1] - inner[1]) // 2


def cover_fit(img: Image.Image, width: int, height: int) -> Image.Image:
    """Scale to cover width x height, then center-crop the overflow."""
    return ImageOps.fit(
        img,
        (width, height),
        method=Image.Resampling.LANCZOS,
        centering=(0.5, 0.5)
    )


def round_to_multiple(n: float, multiple: int = 64) -> int:
    """Nearest multiple (halves round up), never below one multiple."""
    return max(multiple, int(n / multiple + 0.5) * multiple)


def parse_aspect_ratio(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """
    Parse "16:9" (or "16x9") into (16, 9).

    None, "", "auto" and "original" mean: keep the cutout's own ratio.
    Raises ValueError for anything else that is not two positive integers.
    """
    if value is None:
        return None
    text = value.strip().lower()
    if text in ("", "auto", "original"):
        return None

    parts = text.replace("x", ":").split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid aspect ratio '{value}'")
    try:
        rw, rh = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid aspect ratio '{value}'") from None
    if rw <= 0 or rh <= 0:
        raise ValueError(f"Invalid aspect ratio '{value}'")
    return rw, rh


def target_size(
    width: int,
    height: int,
    aspect_ratio: Optional[Tuple[int, int]]
) -> Tuple[int, int]:
    """Keep the long edge, derive the other edge from the ratio."""
    if aspect_ratio is None:
        return width, height
    rw, rh = aspect_ratio
    long_edge = max(width, height)
    if rw >= rh:
        return long_edge, max(1, round(long_edge * rh / rw))
    return max(1, round(long_edge * rw / rh)), long_edge


# =============================================================================
# Composition
# =============================================================================

def compose_on_transparent_canvas(cutout: Image.Image, width: int, height: int) -> Image.Image:
    """Place the cutout, scaled to fit and centered, on a transparent canvas."""
    canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    fitted = fit_inside(cutout.convert("RGBA"), width, height)
    canvas.alpha_composite(fitted, dest=centered_offset(fitted.size, canvas.size))
    return canvas


def composite_over(
    background: Image.Image,
    foreground: Image.Image,
    position: Tuple[int, int] = (0, 0)
) -> Image.Image:
    canvas = background.convert("RGBA")
    canvas.alpha_composite(foreground.convert("RGBA"), dest=position)
    return canvas


# =============================================================================
# Colour Matching
# =============================================================================

def dominant_color(img: Image.Image, sample_edge: int = 256) -> RGB:
    """
    Most frequent colour, using 16 levels per channel and returning the
    bin centre. Fully transparent pixels are ignored.
    """
    sample = img.convert("RGBA")
    sample.thumbnail((sample_edge, sample_edge))
    data = sample.tobytes()

    counts = Counter(
        (r >> 4, g >> 4, b >> 4)
        for r, g, b, a in zip(data[0::4], data[1::4], data[2::4], data[3::4])
        if a
    )
    if not counts:
        return (0, 0, 0)

    (r, g, b), _ = counts.most_common(1)[0]
    return (r * 16 + 8, g * 16 + 8, b * 16 + 8)


def tint(img: Image.Image, color: RGB, strength: float = 1.0) -> Image.Image:
    """
    Keep each pixel's lightness and replace its chroma with the chroma of
    `color` (in LAB). Alpha is unchanged. strength < 1 mixes the tinted
    result back with the original.
    """
    rgba = img.convert("RGBA")
    alpha = rgba.getchannel("A")
    rgb = rgba.convert("RGB")

    lightness = ImageCms.applyTransform(rgb, _RGB_TO_LAB).getchannel("L")
    swatch = ImageCms.applyTransform(Image.new("RGB", (1, 1), tuple(color)), _RGB_TO_LAB)
    _, a, b = swatch.getpixel((0, 0))

    lab = Image.merge("LAB", (
        lightness,
        Image.new("L", rgb.size, a),
        Image.new("L", rgb.size, b),
    ))
    tinted = ImageCms.applyTransform(lab, _LAB_TO_RGB)

    if strength < 1.0:
        tinted = Image.blend(rgb, tinted, max(0.0, strength))

    tinted = tinted.convert("RGBA")
    tinted.putalpha(alpha)
    return tinted


def soft_light(foreground: Image.Image, backdrop: Image.Image, opacity: float = 0.5) -> Image.Image:
    """
    Soft-light blend the foreground with the backdrop behind it (same size),
    mixed in at `opacity`. Alpha is unchanged.
    """
    rgba = foreground.convert("RGBA")
    alpha = rgba.getchannel("A")
    base = rgba.convert("RGB")

    if backdrop.size != base.size:
        raise ImageProcessingError(
            f"Backdrop size {backdrop.size} does not match foreground size {base.size}"
        )

    blended = ImageChops.soft_light(base, backdrop.convert("RGB"))
    mixed = Image.blend(base, blended, max(0.0, min(1.0, opacity)))
    mixed = mixed.convert("RGBA")
    mixed.putalpha(alpha)
    return mixed
