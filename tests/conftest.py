"""测试套件共享 fixtures

提供合成星点图像、临时目录、示例配置等可复用测试夹具。
"""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from typing import Callable, Generator, Iterable, Tuple

import numpy as np
import pytest


# ─── 合成星点图像 ───


def render_stars(
    shape: Tuple[int, int],
    stars: Iterable[Tuple[float, float, float, float, float]],
    background: float = 100.0,
    dtype=np.uint16,
) -> np.ndarray:
    """在平坦背景上叠加高斯星点

    stars: [(x, y, amplitude, sigma_x, sigma_y), ...]
    """
    ny, nx = shape
    y, x = np.mgrid[0:ny, 0:nx].astype(np.float64)
    img = np.full(shape, background, dtype=np.float64)
    for cx, cy, amp, sx, sy in stars:
        img += amp * np.exp(-((x - cx) ** 2 / (2 * sx ** 2) + (y - cy) ** 2 / (2 * sy ** 2)))
    if np.issubdtype(np.dtype(dtype), np.integer):
        info = np.iinfo(dtype)
        return np.clip(np.rint(img), info.min, info.max).astype(dtype)
    return img.astype(dtype)


@pytest.fixture
def star_image_factory() -> Callable[..., np.ndarray]:
    """返回合成图像生成函数"""
    return render_stars


@pytest.fixture
def single_star_image() -> np.ndarray:
    """50x50 单色图像: 背景 100，(25, 25) 处振幅 500 的圆形高斯星"""
    return render_stars((50, 50), [(25, 25, 500, 2.0, 2.0)])


@pytest.fixture
def elongated_star_image() -> np.ndarray:
    """同上，但星点在 x 方向拉长 (fwhmx = 2 * fwhmy)"""
    return render_stars((50, 50), [(25, 25, 500, 4.0, 2.0)])


@pytest.fixture
def four_star_image() -> np.ndarray:
    """64x64 图像，四颗亮度不同、彼此分离的星"""
    return render_stars(
        (64, 64),
        [
            (16, 16, 400, 1.5, 1.5),
            (46, 18, 700, 1.5, 1.5),
            (16, 46, 550, 1.5, 1.5),
            (46, 48, 650, 1.5, 1.5),
        ],
    )


# ─── 临时目录与文件 ───


@pytest.fixture
def tmp_dir() -> Generator[Path, None, None]:
    """临时目录"""
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def single_star_fits(tmp_dir, single_star_image) -> Path:
    """在临时目录写入单星 FITS 文件 (带焦距/像素大小头信息)"""
    from astropy.io import fits

    hdr = fits.Header()
    hdr["OBJECT"] = "TestField"
    hdr["FOCALLEN"] = 1000.0
    hdr["XPIXSZ"] = 4.8
    path = tmp_dir / "single_star.fits"
    fits.writeto(str(path), single_star_image, header=hdr, overwrite=True)
    return path


# ─── 配置 ───


@pytest.fixture
def sample_config_dict() -> dict:
    """示例配置字典 (与 config.py 的 JSON 结构对齐)"""
    return {
        "radius": 8,
        "sigma": 1.5,
        "roundness": 0.3,
        "telescope": {
            "pixel_size_um": 3.76,
            "focal_length_mm": 500.0,
            "binning": 1,
        },
        "max_stars": 500,
        "wavelet_scale": 3,
        "max_threads": 2,
        "log_level": "DEBUG",
    }


@pytest.fixture
def config_file(tmp_dir, sample_config_dict) -> Path:
    """在临时目录创建配置文件"""
    cfg_path = tmp_dir / "config.json"
    cfg_path.write_text(json.dumps(sample_config_dict, indent=2), encoding="utf-8")
    return cfg_path
