"""Pillow-backed reference host.

These are the host operations the bridge dispatches to. The bridge treats
every image as an opaque handle; only this module knows they are
``PIL.Image.Image`` instances.
"""

from pathlib import Path
from typing import Any, Dict, Optional

from PIL import Image, ImageFilter, ImageOps

from harness_jsolex.bridge.dispatch import OperationRegistry
from harness_jsolex.bridge.emission import EmissionSink
from harness_jsolex.bridge.session import ScriptSession
from harness_jsolex.bridge.user_functions import UserFunctionTable
from harness_jsolex.core.config import BridgeConfig

HANDLE_TYPES = (Image.Image,)


class HostError(Exception):
    pass


def _require_image(img: Any) -> Image.Image:
    if not isinstance(img, Image.Image):
        raise HostError(f"Expected an image, got {type(img).__name__}")
    return img


def _filterable(img: Image.Image) -> Image.Image:
    if img.mode in {"L", "RGB"}:
        return img
    if img.mode == "RGBA":
        return img.convert("RGB")
    return img.convert("L")


def load(path: str) -> Image.Image:
    """Load an image file."""
    p = Path(path)
    if not p.exists():
        raise HostError(f"File not found: {path}")
    with Image.open(p) as src:
        return src.copy()


def save(img: Any, path: str) -> None:
    """Save an image, format chosen from the file extension."""
    image = _require_image(img)
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    image.save(output)


def sharpen(img: Any, amount: float = 1.0, radius: float = 2.0) -> Image.Image:
    """Unsharp mask; ``amount`` 1.0 is 100 percent."""
    image = _filterable(_require_image(img))
    # UnsharpMask only takes an integer percent
    percent = int(round(float(amount) * 100))
    return image.filter(ImageFilter.UnsharpMask(radius=float(radius), percent=percent, threshold=3))


def rescale(img: Any, scale: float = 1.0) -> Image.Image:
    """Resize by a factor, keeping the aspect ratio."""
    image = _require_image(img)
    factor = float(scale)
    if factor <= 0:
        raise HostError("scale must be > 0")
    size = (max(1, round(image.width * factor)), max(1, round(image.height * factor)))
    return image.resize(size, resample=Image.Resampling.LANCZOS)


def clahe(img: Any, clip: float = 2.0, tiles: int = 8) -> Image.Image:
    """Local contrast equalization, implemented as per-tile autocontrast."""
    image = _filterable(_require_image(img))
    tile_count = int(tiles)
    if tile_count <= 0:
        raise HostError("tiles must be > 0")
    cutoff = max(0.0, min(49.0, float(clip)))
    out = image.copy()
    tile_w = max(1, -(-image.width // tile_count))
    tile_h = max(1, -(-image.height // tile_count))
    for top in range(0, image.height, tile_h):
        for left in range(0, image.width, tile_w):
            box = (left, top, min(left + tile_w, image.width), min(top + tile_h, image.height))
            out.paste(ImageOps.autocontrast(image.crop(box), cutoff=cutoff), box)
    return out


def width(img: Any) -> int:
    return _require_image(img).width


def height(img: Any) -> int:
    return _require_image(img).height


def autocrop(img: Any, threshold: int = 0) -> Image.Image:
    image = _require_image(img)
    limit = int(threshold)
    mask = image.convert("L").point(lambda v: 255 if v > limit else 0)
    bbox = mask.getbbox()
    return image.crop(bbox) if bbox else image.copy()


def invert(img: Any) -> Image.Image:
    return ImageOps.invert(_filterable(_require_image(img)))


def grayscale(img: Any) -> Image.Image:
    return ImageOps.grayscale(_require_image(img))


def flip(img: Any, axis: str = "horizontal") -> Image.Image:
    image = _require_image(img)
    normalized = str(axis).strip().lower()
    if normalized == "horizontal":
        return ImageOps.mirror(image)
    if normalized == "vertical":
        return ImageOps.flip(image)
    raise HostError("axis must be horizontal or vertical")


def blur(img: Any, radius: float = 2.0) -> Image.Image:
    return _require_image(img).filter(ImageFilter.GaussianBlur(radius=float(radius)))


def builtin_operations() -> OperationRegistry:
    registry = OperationRegistry()
    for func in (load, save, sharpen, rescale, clahe, width, height):
        registry.register(func.__name__, func)
    return registry.freeze()


def pipeline_steps() -> OperationRegistry:
    registry = OperationRegistry()
    registry.register("AUTOCROP", autocrop)
    registry.register("INVERT", invert)
    registry.register("GRAYSCALE", grayscale)
    registry.register("FLIP", flip)
    registry.register("BLUR", blur)
    return registry.freeze()


def describe_handle(img: Any) -> Dict[str, Any]:
    if isinstance(img, Image.Image):
        return {"width": img.width, "height": img.height, "mode": img.mode}
    return {}


def create_session(
    config: Optional[BridgeConfig] = None,
    sink: Optional[EmissionSink] = None,
    user_functions: Optional[UserFunctionTable] = None,
    variables: Optional[Dict[str, Any]] = None,
) -> ScriptSession:
    return ScriptSession(
        builtin_operations(),
        pipeline_steps(),
        user_functions,
        handle_types=HANDLE_TYPES,
        variables=variables,
        config=config,
        sink=sink,
    )
