"""高斯 PSF 拟合模块

职责:
- 对像素窗口拟合 "常数背景 + 二维高斯" 模型
- FWHM 单位换算 (px -> 角秒)

坐标约定: 窗口内第 i 列像素中心的坐标为 i + 1 (与 FITS 一致)，
因此合法的拟合中心满足 x0 > 0, y0 > 0。
"""

from __future__ import annotations

import dataclasses
import logging
import math
from typing import Optional

import numpy as np

from starfinder.core.models import UNITS_ARCSEC, FittedStar, TelescopeConfig

logger = logging.getLogger(__name__)

# sigma -> FWHM
FWHM_FACTOR = 2.0 * math.sqrt(2.0 * math.log(2.0))

# 最小可拟合窗口
MIN_PATCH_SIZE = 3

MAX_ITERATIONS = 200

_DEFAULT_STDDEV = 2.0


def _failed_fit(layer: int, background: float) -> FittedStar:
    """未收敛时返回的哨兵记录 (拟合字段为 NaN)"""
    nan = float("nan")
    return FittedStar(
        layer=layer, B=background, A=nan, x0=nan, y0=nan, sx=nan, sy=nan,
        fwhmx=nan, fwhmy=nan, angle=0.0, mag=nan, rmse=nan,
        xpos=nan, ypos=nan,
    )


def _initial_guess(data: np.ndarray, background: float, x: np.ndarray, y: np.ndarray):
    """由峰值位置与二阶矩估计初值"""
    peak_idx = np.unravel_index(int(np.argmax(data)), data.shape)
    amplitude = float(data[peak_idx] - background)
    if amplitude <= 0:
        amplitude = float(data[peak_idx] - np.min(data)) or 1.0

    xc = float(x[peak_idx])
    yc = float(y[peak_idx])

    weights = np.clip(data - background, 0.0, None)
    total = float(weights.sum())
    sx = sy = _DEFAULT_STDDEV
    if total > 0:
        sx = math.sqrt(float((weights * (x - xc) ** 2).sum()) / total)
        sy = math.sqrt(float((weights * (y - yc) ** 2).sum()) / total)
    limit = max(data.shape) / 2.0
    sx = min(max(sx, 0.5), limit)
    sy = min(max(sy, 0.5), limit)
    return amplitude, xc, yc, sx, sy


def fit_gaussian(
    patch: np.ndarray,
    background: float,
    layer: int = 0,
    fit_angle: bool = False,
) -> Optional[FittedStar]:
    """对像素窗口拟合高斯 PSF

    Args:
        patch: 二维像素窗口 (原始图像，不做平滑)
        background: 背景初值
        layer: 通道索引 (仅记录)
        fit_angle: 是否拟合旋转角 (关闭时 theta 固定为 0，速度更快)

    Returns:
        FittedStar；未收敛时各拟合字段为 NaN；
        窗口过小或无有限数据时返回 None
    """
    from astropy.modeling import fitting, models

    if patch.ndim != 2 or min(patch.shape) < MIN_PATCH_SIZE:
        return None
    data = patch.astype(np.float64)
    if not np.all(np.isfinite(data)):
        return None

    h, w = data.shape
    y, x = np.mgrid[1:h + 1, 1:w + 1].astype(np.float64)
    amplitude, xc, yc, sx, sy = _initial_guess(data, background, x, y)

    gauss = models.Gaussian2D(
        amplitude=amplitude, x_mean=xc, y_mean=yc,
        x_stddev=sx, y_stddev=sy, theta=0.0,
        fixed={"theta": not fit_angle},
        bounds={"x_stddev": (1e-3, None), "y_stddev": (1e-3, None)},
    )
    model = gauss + models.Const2D(amplitude=background)
    fitter = fitting.LevMarLSQFitter()

    try:
        fitted = fitter(model, x, y, data, maxiter=MAX_ITERATIONS)
    except (ValueError, RuntimeError, np.linalg.LinAlgError) as e:
        logger.debug("PSF 拟合异常: %s", e)
        return _failed_fit(layer, background)

    status = fitter.fit_info.get("ierr")
    if status not in (1, 2, 3, 4):
        logger.debug("PSF 拟合未收敛 (ierr=%s): %s", status, fitter.fit_info.get("message"))
        return _failed_fit(layer, background)

    g = fitted[0]
    A = float(g.amplitude.value)
    sx = abs(float(g.x_stddev.value))
    sy = abs(float(g.y_stddev.value))
    angle = math.degrees(float(g.theta.value)) if fit_angle else 0.0
    # 约定 sx 为长轴
    if sy > sx:
        sx, sy = sy, sx
        if fit_angle:
            angle += 90.0

    flux = 2.0 * math.pi * A * sx * sy
    mag = -2.5 * math.log10(flux) if flux > 0 else float("nan")
    residual = data - fitted(x, y)
    rmse = float(np.sqrt(np.mean(residual ** 2)))

    return FittedStar(
        layer=layer,
        B=float(fitted[1].amplitude.value),
        A=A,
        x0=float(g.x_mean.value),
        y0=float(g.y_mean.value),
        sx=sx,
        sy=sy,
        fwhmx=FWHM_FACTOR * sx,
        fwhmy=FWHM_FACTOR * sy,
        angle=angle,
        mag=mag,
        rmse=rmse,
    )


def to_physical_units(
    star: FittedStar,
    telescope: Optional[TelescopeConfig] = None,
) -> FittedStar:
    """若已知像素分辨率，则将 FWHM 换算为角秒；否则原样返回"""
    scale = telescope.compute_pixel_scale() if telescope is not None else 0.0
    if scale <= 0 or star.units == UNITS_ARCSEC:
        return star
    return dataclasses.replace(
        star,
        fwhmx=star.fwhmx * scale,
        fwhmy=star.fwhmy * scale,
        units=UNITS_ARCSEC,
    )
