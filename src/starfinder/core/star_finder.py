"""寻星模块

职责:
- 由通道统计量估计检测阈值
- 在小波平滑图上寻找局部极大值 (候选星)
- 对每个候选在原图上截取窗口、拟合 PSF、接受性检查
- 将接受的星写入星表并按星等排序

局部极大值判定源自 K. J. Mighell 的简单峰值检测算法:
像素需大于全部 8 个邻域；与邻域相等时按固定方向打破平局，
保证每个等值平台只产生一个候选。
"""

from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple

import numpy as np

from starfinder.core.errors import AllocationFailure, StatisticsFailure
from starfinder.core.models import FindStarParams, FittedStar, Rectangle, TelescopeConfig
from starfinder.core.psf import fit_gaussian, to_physical_units
from starfinder.core.star_catalog import StarCatalog
from starfinder.core.statistics import compute_statistics
from starfinder.core.wavelet import wavelet_filter

logger = logging.getLogger(__name__)

WAVELET_SCALE = 3

# 接受性检查上限
MAX_SIGMA = 200.0
MIN_AMPLITUDE = 0.01

_NEIGHBOR_OFFSETS = [
    (dx, dy) for dy in (-1, 0, 1) for dx in (-1, 0, 1) if (dx, dy) != (0, 0)
]


# ─────────────────────── 阈值 ───────────────────────


def compute_threshold(channel: np.ndarray, sigma_k: float) -> Tuple[float, float, float]:
    """估计检测阈值

    Args:
        channel: 原始通道
        sigma_k: 阈值倍数

    Returns:
        (threshold, norm_value, bg)；threshold = median + k * sigma，
        整数通道四舍五入并裁剪到类型范围

    Raises:
        StatisticsFailure: 统计失败或样本值上限为 0
    """
    stats = compute_statistics(channel)
    if stats.norm_value == 0:
        raise StatisticsFailure("统计失败: 样本值上限为 0")

    threshold = stats.median + sigma_k * stats.sigma
    if np.issubdtype(channel.dtype, np.integer):
        info = np.iinfo(channel.dtype)
        threshold = float(math.floor(threshold + 0.5))
        threshold = float(min(max(threshold, info.min), info.max))
    return float(threshold), stats.norm_value, stats.median


# ─────────────────────── 候选检测 ───────────────────────


def _is_tie_loser(dx: int, dy: int) -> bool:
    """等值邻域位于此方向时，当前像素让位"""
    return (dx <= 0 and dy <= 0) or (dx > 0 and dy < 0)


def _flood_plateau(filtered: np.ndarray, x: int, y: int) -> set:
    """从 (x, y) 出发的 8 连通等值平台，返回像素集合 {(x, y)}"""
    ny, nx = filtered.shape
    value = filtered[y, x]
    plateau = {(x, y)}
    stack = [(x, y)]
    while stack:
        cx, cy = stack.pop()
        for dx, dy in _NEIGHBOR_OFFSETS:
            px, py = cx + dx, cy + dy
            if (0 <= px < nx and 0 <= py < ny
                    and (px, py) not in plateau and filtered[py, px] == value):
                plateau.add((px, py))
                stack.append((px, py))
    return plateau


def find_candidates(
    filtered: np.ndarray,
    threshold: float,
    norm_value: float,
    radius: int,
    area: Optional[Rectangle] = None,
) -> List[Tuple[int, int]]:
    """在平滑图上寻找候选星

    搜索区域为 area (默认全图) 向内收缩 radius，
    使后续截取 2r x 2r 窗口时不会越过图像边缘。

    Args:
        filtered: 小波平滑图
        threshold: 检测阈值 (严格大于)
        norm_value: 样本值上限 (严格小于)
        radius: 边缘留白
        area: 限定搜索的矩形 (可选)

    Returns:
        候选坐标 [(x, y), ...]，按行优先顺序
    """
    ny, nx = filtered.shape
    region = (area or Rectangle(0, 0, nx, ny)).clip(nx, ny)
    x_lo, x_hi = region.x + radius, region.x + region.w - radius
    y_lo, y_hi = region.y + radius, region.y + region.h - radius
    if x_hi <= x_lo or y_hi <= y_lo:
        return []

    center = filtered[y_lo:y_hi, x_lo:x_hi]
    mask = (center > threshold) & (center < norm_value)
    has_equal = np.zeros_like(mask)

    for dx, dy in _NEIGHBOR_OFFSETS:
        neighbor = filtered[y_lo + dy:y_hi + dy, x_lo + dx:x_hi + dx]
        mask &= neighbor <= center
        equal = neighbor == center
        if _is_tie_loser(dx, dy):
            mask &= ~equal
        else:
            has_equal |= equal

    candidates = []
    visited = set()
    for row, col in zip(*np.nonzero(mask)):
        x, y = int(col) + x_lo, int(row) + y_lo
        if has_equal[row, col]:
            # 一个平台只保留行优先顺序下的第一个候选
            if (x, y) in visited:
                continue
            visited |= _flood_plateau(filtered, x, y)
        candidates.append((x, y))
    return candidates


# ─────────────────────── 拟合与接受 ───────────────────────


def extract_patch(channel: np.ndarray, x: int, y: int, radius: int) -> np.ndarray:
    """在原图上截取 2r x 2r 窗口: 行 [y-r, y+r)，列 [x-r, x+r)"""
    return channel[y - radius:y + radius, x - radius:x + radius]


def rejection_reason(star: FittedStar, params: FindStarParams) -> Optional[str]:
    """返回拒绝原因；通过全部检查时返回 None"""
    if math.isnan(star.fwhmx) or math.isnan(star.fwhmy):
        return "fwhm is NaN"
    if math.isnan(star.x0) or math.isnan(star.y0):
        return "center is NaN"
    if math.isnan(star.mag):
        return "mag is NaN"
    if star.x0 <= 0.0 or star.y0 <= 0.0:
        return "center outside patch"
    if star.A < MIN_AMPLITUDE:
        return "amplitude too low"
    if star.sx > MAX_SIGMA or star.sy > MAX_SIGMA:
        return "too wide"
    if star.fwhmx <= 0.0 or star.fwhmy <= 0.0:
        return "non-positive fwhm"
    if star.fwhmy / star.fwhmx < params.roundness:
        return "not round enough"
    return None


def is_star(star: FittedStar, params: FindStarParams) -> bool:
    return rejection_reason(star, params) is None


def fit_candidate(
    channel: np.ndarray,
    x: int,
    y: int,
    params: FindStarParams,
    background: float,
    layer: int = 0,
    telescope: Optional[TelescopeConfig] = None,
) -> Optional[FittedStar]:
    """拟合单个候选；接受时返回带图像坐标的星，否则返回 None"""
    patch = extract_patch(channel, x, y, params.radius)
    # 不拟合旋转角: 速度优先
    star = fit_gaussian(patch, background, layer, fit_angle=False)
    if star is None:
        return None
    star = to_physical_units(star, telescope)

    reason = rejection_reason(star, params)
    if reason is not None:
        logger.debug("候选 (%d, %d) 被拒绝: %s", x, y, reason)
        return None

    star.xpos = x + star.x0 - params.radius - 1.0
    star.ypos = y + star.y0 - params.radius - 1.0
    return star


# ─────────────────────── 扫描 ───────────────────────


def scan_stars(
    channel: np.ndarray,
    params: FindStarParams,
    catalog: StarCatalog,
    layer: int = 0,
    area: Optional[Rectangle] = None,
    telescope: Optional[TelescopeConfig] = None,
    wavelet_scale: int = WAVELET_SCALE,
    max_workers: int = 4,
    cancel_event: Optional[threading.Event] = None,
    progress_callback: Optional[Callable[[int, int, str], None]] = None,
) -> Tuple[int, bool]:
    """自动寻星，结果写入 catalog

    拟合在线程池中并行进行；提交阶段单线程、按候选的行优先顺序写入星表，
    星表满后不再接受。cancel_event 按扫描行检查，已提交的星保持完整。

    Args:
        channel: 原始通道 (只读)
        params: 寻星参数
        catalog: 目标星表
        layer: 通道索引
        area: 限定搜索区域 (可选)
        telescope: FWHM 单位换算参数 (可选)
        wavelet_scale: 小波分解层数
        max_workers: 拟合线程数
        cancel_event: 取消信号 (可选)
        progress_callback: 进度回调 (done, total, message)

    Returns:
        (本次写入星表的星数, 是否因取消而提前结束)

    Raises:
        StatisticsFailure: 阈值估计失败
        AllocationFailure: 工作缓冲区分配失败
    """
    t_start = time.perf_counter()
    logger.info("寻星: 开始处理 (radius=%d, sigma=%.2f, roundness=%.2f)",
                params.radius, params.sigma, params.roundness)

    threshold, norm_value, bg = compute_threshold(channel, params.sigma)

    try:
        filtered = wavelet_filter(channel, wavelet_scale)
        candidates = find_candidates(filtered, threshold, norm_value, params.radius, area)
    except MemoryError as e:
        raise AllocationFailure(f"寻星缓冲区分配失败: {e}") from e

    logger.info("寻星: threshold=%g, bg=%g, 候选 %d 个",
                threshold, bg, len(candidates))

    added = 0
    cancelled = False
    total = len(candidates)
    if total and not catalog.is_full:
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            futures = [
                executor.submit(fit_candidate, channel, x, y, params, bg, layer, telescope)
                for x, y in candidates
            ]
            try:
                current_row = None
                for i, ((x, y), future) in enumerate(zip(candidates, futures)):
                    if y != current_row:
                        current_row = y
                        if cancel_event is not None and cancel_event.is_set():
                            logger.info("寻星: 已取消 (第 %d 行)", y)
                            cancelled = True
                            break
                        if progress_callback:
                            progress_callback(i, total, "PSF 拟合")
                    star = future.result()
                    if star is None:
                        continue
                    if not catalog.insert_auto(star):
                        break
                    added += 1
                    if catalog.is_full:
                        logger.warning("寻星: 星表已满 (%d)", catalog.max_stars)
                        break
            finally:
                for future in futures:
                    future.cancel()

    catalog.sort_by_magnitude()
    if progress_callback:
        progress_callback(total, total, "完成")

    elapsed = time.perf_counter() - t_start
    logger.info("寻星: 找到 %d 颗星，耗时 %.3f 秒", added, elapsed)
    return added, cancelled


def peaker(
    channel: np.ndarray,
    params: FindStarParams,
    catalog: StarCatalog,
    layer: int = 0,
    area: Optional[Rectangle] = None,
    telescope: Optional[TelescopeConfig] = None,
    wavelet_scale: int = WAVELET_SCALE,
    max_workers: int = 4,
    cancel_event: Optional[threading.Event] = None,
    progress_callback: Optional[Callable[[int, int, str], None]] = None,
) -> int:
    """同 scan_stars，只返回写入星表的星数"""
    added, _ = scan_stars(
        channel, params, catalog, layer=layer, area=area, telescope=telescope,
        wavelet_scale=wavelet_scale, max_workers=max_workers,
        cancel_event=cancel_event, progress_callback=progress_callback,
    )
    return added
