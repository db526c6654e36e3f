"""Core data models for starfinder.

所有数据模型使用 dataclass 定义；参数类为 frozen，单次运行内不可变。
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import numpy as np


# 单位标记
UNITS_PIXEL = "px"
UNITS_ARCSEC = '"'


# ─────────────────────── FITS 相关 ───────────────────────


@dataclass(frozen=True)
class FitsHeader:
    """FITS 文件头信息的结构化表示"""
    raw: dict[str, Any]  # 原始头信息键值对

    @property
    def object_name(self) -> Optional[str]:
        """目标名称 (OBJECT)"""
        return self.raw.get("OBJECT")

    @property
    def focal_length_mm(self) -> Optional[float]:
        """焦距 (FOCALLEN, mm)"""
        val = self.raw.get("FOCALLEN")
        return float(val) if val is not None else None

    @property
    def pixel_size_um(self) -> Optional[float]:
        """像素大小 (XPIXSZ / PIXSIZE1, μm)"""
        val = self.raw.get("XPIXSZ") or self.raw.get("PIXSIZE1")
        return float(val) if val is not None else None

    @property
    def binning(self) -> int:
        """像素合并 (XBINNING)"""
        val = self.raw.get("XBINNING")
        return int(val) if val else 1


@dataclass
class FitsImage:
    """FITS 图像数据 + 头信息

    Attributes:
        data: 像素数据 (ny, nx) 或 (layers, ny, nx)
        header: FITS 文件头
        path: 文件路径 (可选)
    """
    data: np.ndarray
    header: FitsHeader
    path: Optional[Path] = None

    @property
    def shape(self) -> tuple[int, ...]:
        return self.data.shape

    @property
    def nb_layers(self) -> int:
        return 1 if self.data.ndim == 2 else self.data.shape[0]

    def channel(self, layer: int = 0) -> np.ndarray:
        """取单个通道 (二维)"""
        if self.data.ndim == 2:
            if layer != 0:
                raise ValueError(f"单通道图像没有第 {layer} 层")
            return self.data
        if not 0 <= layer < self.data.shape[0]:
            raise ValueError(f"通道索引越界: {layer} (共 {self.data.shape[0]} 层)")
        return self.data[layer]


# ─────────────────────── 几何 ───────────────────────


@dataclass(frozen=True)
class Rectangle:
    """图像坐标中的矩形区域 (x=列, y=行)"""
    x: int
    y: int
    w: int
    h: int

    def clip(self, width: int, height: int) -> "Rectangle":
        """与图像边界求交"""
        x0 = max(0, self.x)
        y0 = max(0, self.y)
        x1 = min(width, self.x + self.w)
        y1 = min(height, self.y + self.h)
        return Rectangle(x0, y0, max(0, x1 - x0), max(0, y1 - y0))

    @property
    def is_empty(self) -> bool:
        return self.w <= 0 or self.h <= 0


# ─────────────────────── 检测参数 ───────────────────────


@dataclass(frozen=True)
class FindStarParams:
    """寻星参数

    Attributes:
        radius: 拟合窗口半宽 / 边缘留白 (px)
        sigma: 阈值倍数 k (threshold = median + k * sigma)
        roundness: 最小圆度 fwhmy / fwhmx
    """
    radius: int = 10
    sigma: float = 1.0
    roundness: float = 0.5

    def __post_init__(self):
        if int(self.radius) != self.radius or self.radius <= 0:
            raise ValueError(f"radius 必须为正整数: {self.radius}")
        if not self.sigma > 0:
            raise ValueError(f"sigma 必须大于 0: {self.sigma}")
        if not 0.0 <= self.roundness <= 1.0:
            raise ValueError(f"roundness 必须在 [0, 1] 内: {self.roundness}")


@dataclass(frozen=True)
class ImageStats:
    """通道统计量"""
    median: float
    sigma: float
    norm_value: float  # 样本值上限
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0


# ─────────────────────── 拟合结果 ───────────────────────


@dataclass
class FittedStar:
    """单颗星的高斯 PSF 拟合结果

    Attributes:
        layer: 通道索引
        B: 背景
        A: 振幅
        x0, y0: 拟合中心 (窗口内坐标，像素中心为 1, 2, ...)
        sx, sy: 高斯标准差 (px)，sx 为长轴
        fwhmx, fwhmy: 半高全宽 (px 或角秒)，fwhmx >= fwhmy
        angle: 旋转角 (度)，未拟合时为 0
        mag: 相对星等
        rmse: 拟合残差均方根
        xpos, ypos: 图像坐标 (0 起始)
        units: FWHM 单位
    """
    layer: int = 0
    B: float = 0.0
    A: float = 0.0
    x0: float = 0.0
    y0: float = 0.0
    sx: float = 0.0
    sy: float = 0.0
    fwhmx: float = 0.0
    fwhmy: float = 0.0
    angle: float = 0.0
    mag: float = 0.0
    rmse: float = 0.0
    xpos: float = 0.0
    ypos: float = 0.0
    units: str = UNITS_PIXEL

    @property
    def is_finite(self) -> bool:
        values = (self.B, self.A, self.x0, self.y0, self.sx, self.sy,
                  self.fwhmx, self.fwhmy, self.mag, self.xpos, self.ypos)
        return all(math.isfinite(v) for v in values)


# ─────────────────────── 配置 ───────────────────────


@dataclass
class TelescopeConfig:
    """望远镜/相机参数"""
    pixel_size_um: float = 0.0          # 像素大小 (μm)
    focal_length_mm: float = 0.0        # 焦距 (mm)
    binning: int = 1                    # 像素合并

    def compute_pixel_scale(self) -> float:
        """由像素大小和焦距计算像素分辨率 (arcsec/pix)，未知时为 0"""
        if self.focal_length_mm <= 0 or self.pixel_size_um <= 0:
            return 0.0
        # arcsec/pix = 206265 * pixel_size_mm / focal_length_mm
        return 206.265 * self.pixel_size_um * max(1, self.binning) / self.focal_length_mm

    @classmethod
    def from_header(cls, header: FitsHeader) -> "TelescopeConfig":
        """从 FITS 头中读取焦距与像素大小"""
        return cls(
            pixel_size_um=header.pixel_size_um or 0.0,
            focal_length_mm=header.focal_length_mm or 0.0,
            binning=header.binning,
        )


@dataclass
class AppConfig:
    """应用程序完整配置"""
    star_finder: FindStarParams = field(default_factory=FindStarParams)
    telescope: TelescopeConfig = field(default_factory=TelescopeConfig)

    max_stars: int = 20000      # 星表容量上限
    wavelet_scale: int = 3      # 小波分解层数
    max_threads: int = 4        # 拟合线程数
    log_level: str = "INFO"
