"""
Decoding normal maps and encoding height maps, normal maps and diagnostic figures.
"""
import logging
import os

import numpy as np
import matplotlib as mpl
mpl.use("Agg")
import matplotlib.pyplot as plt
from PIL import Image, UnidentifiedImageError

from heightgen.errors import ImageShapeError
from heightgen.height_map import HeightMap
from heightgen.height_to_normal import pack_normal_map
from heightgen.image_ops import normalize_vectors

logger = logging.getLogger(__name__)

NPY_EXT = ".npy"
SIXTEEN_BIT_EXTS = (".png",)


def _ext(path) -> str:
    return os.path.splitext(str(path))[1].lower()


def unpack_normals(pixels: np.ndarray) -> np.ndarray:
    """Unit normals from stored colours; the encoding is chosen by dtype.

    uint8 -> (v - 128) / 127, uint16 -> (v - 32768) / 32767, float -> 2v - 1.
    Only the first three channels are used.
    """
    pixels = np.asarray(pixels)
    if pixels.ndim != 3 or pixels.shape[2] < 3:
        logger.error("Normal map needs at least 3 channels, got shape %s", pixels.shape)
        raise ImageShapeError(f"normal map needs at least 3 channels, got shape {pixels.shape}")
    rgb = pixels[..., :3]
    if rgb.dtype == np.uint8:
        n = (rgb.astype(np.float64) - 128.0) / 127.0
    elif rgb.dtype == np.uint16:
        n = (rgb.astype(np.float64) - 32768.0) / 32767.0
    elif np.issubdtype(rgb.dtype, np.floating):
        n = 2.0 * rgb.astype(np.float64) - 1.0
    else:
        raise ValueError(f"unsupported normal map pixel type {rgb.dtype}")
    return normalize_vectors(n)


def load_normal_map(path, flip_y: bool = False, flip_x: bool = False) -> np.ndarray:
    """Read a normal map into (H, W, 3) unit vectors, +X right, +Y down, +Z out.

    ``flip_y`` converts a Y-up (OpenGL style) map; ``flip_x`` negates X.
    Raster formats go through Pillow (which decodes 16-bit colour PNGs to 8 bits);
    ``.npy`` arrays keep their dtype.
    """
    if _ext(path) == NPY_EXT:
        pixels = np.load(path)
    else:
        try:
            img = Image.open(path)
        except UnidentifiedImageError as e:
            logger.error("%s is not a readable image: %s", path, e)
            raise ImageShapeError(f"{path} is not a readable image") from e
        with img:
            if img.mode in ("P", "PA"):
                img = img.convert("RGBA")
            if len(img.getbands()) < 3:
                logger.error("%s is single channel (%s), not a normal map", path, img.mode)
                raise ImageShapeError(f"{path} is single channel ({img.mode}), not a normal map")
            if img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGB")
            pixels = np.asarray(img)
    normals = unpack_normals(pixels)
    if flip_y:
        normals[..., 1] *= -1
    if flip_x:
        normals[..., 0] *= -1
    return normals


def _to_uint(data: np.ndarray, bits: int) -> np.ndarray:
    top = (1 << bits) - 1
    dtype = np.uint16 if bits == 16 else np.uint8
    return np.round(np.clip(data, 0.0, 1.0) * top).astype(dtype)


def save_height_map(path, height_map: HeightMap, raw: bool = False):
    """16-bit grayscale for PNG, 8-bit for other rasters, float32 for ``.npy``.

    ``raw`` only applies to ``.npy``: it writes unpacked elevations instead of [0, 1].
    """
    ext = _ext(path)
    if ext == NPY_EXT:
        data = height_map.raw() if raw else height_map.data
        np.save(path, data.astype(np.float32))
        return
    if raw:
        logger.warning("Raw heights need a .npy output; writing packed heights to %s", path)
    bits = 16 if ext in SIXTEEN_BIT_EXTS else 8
    Image.fromarray(_to_uint(height_map.data, bits)).save(path)


def _save_rgb(path, rgb: np.ndarray):
    if _ext(path) == NPY_EXT:
        np.save(path, rgb.astype(np.float32))
    else:
        Image.fromarray(_to_uint(rgb, 8)).save(path)


def save_normal_map(path, normal_map: np.ndarray, flip_y: bool = False, flip_x: bool = False):
    _save_rgb(path, pack_normal_map(normal_map, flip_y, flip_x))


def save_diff_image(path, diff: np.ndarray):
    _save_rgb(path, diff)


def save_combined_view(path, height_images, normal_images=None, border=4, border_color=(0, 0, 255)):
    """Side-by-side strip of packed height maps, optionally with a row of packed normals below.

    All tiles must share one size; tiles are separated by ``border`` pixels of ``border_color``.
    """
    if not height_images:
        raise ValueError("combined view needs at least one height map")
    h, w = np.asarray(height_images[0]).shape[:2]
    tiles = [np.asarray(t) for t in height_images] + [np.asarray(t) for t in (normal_images or [])]
    for t in tiles:
        if t.shape[:2] != (h, w):
            logger.error("Combined view tiles differ in size: %s vs %s", t.shape[:2], (h, w))
            raise ImageShapeError(f"combined view tiles differ in size: {t.shape[:2]} vs {(h, w)}")

    cols = len(height_images)
    rows = 2 if normal_images else 1
    composite = Image.new("RGB", (w * cols + border * (cols - 1), h * rows + border * (rows - 1)),
                          color=tuple(border_color))
    for i, tile in enumerate(height_images):
        img = Image.fromarray(_to_uint(np.asarray(tile), 8)).convert("RGB")
        composite.paste(img, (i * (w + border), 0))
    for i, tile in enumerate(normal_images or []):
        composite.paste(Image.fromarray(_to_uint(np.asarray(tile), 8)), (i * (w + border), h + border))
    composite.save(path)


def save_heatmap(Z, fname, title, cmap="viridis", center_zero=False):
    plt.figure(figsize=(5, 4))
    if center_zero:
        vmax = np.max(np.abs(Z)) + 1e-8
        vmin, vmax = -vmax, vmax
    else:
        vmin = vmax = None
    im = plt.imshow(Z, cmap=cmap, vmin=vmin, vmax=vmax)
    plt.title(title)
    plt.colorbar(im, shrink=0.8)
    plt.tight_layout()
    plt.savefig(fname, dpi=200)
    plt.close()


def save_line_plot(xs, ys, fname, title, xlabel, ylabel, logx=False):
    plt.figure(figsize=(5.5, 3.4))
    plt.plot(xs, ys, marker="o", linewidth=2)
    if logx:
        plt.xscale("log", base=2)
    plt.xlabel(xlabel)
    plt.ylabel(ylabel)
    plt.title(title)
    plt.grid(True, alpha=0.4)
    plt.tight_layout()
    plt.savefig(fname, dpi=200)
    plt.close()
