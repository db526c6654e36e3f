"""通道统计模块

职责:
- 计算中值、标准差与样本值上限 (用于阈值估计)
"""

from __future__ import annotations

import numpy as np

from starfinder.core.errors import StatisticsFailure
from starfinder.core.models import ImageStats


def sample_range_max(channel: np.ndarray) -> float:
    """样本值上限: 整数类型取其表示上限，浮点取有限最大值"""
    if np.issubdtype(channel.dtype, np.integer):
        return float(np.iinfo(channel.dtype).max)
    finite = channel[np.isfinite(channel)]
    return float(finite.max()) if finite.size else 0.0


def compute_statistics(channel: np.ndarray) -> ImageStats:
    """计算单通道统计量

    Args:
        channel: 二维像素数据

    Returns:
        ImageStats

    Raises:
        StatisticsFailure: 空通道 / 非二维 / 无有限样本
    """
    if channel is None or channel.ndim != 2 or channel.size == 0:
        raise StatisticsFailure("统计失败: 需要非空二维通道")

    data = channel.astype(np.float64, copy=False)
    finite = data[np.isfinite(data)]
    if finite.size == 0:
        raise StatisticsFailure("统计失败: 通道中没有有限值")

    return ImageStats(
        median=float(np.median(finite)),
        sigma=float(np.std(finite)),
        norm_value=sample_range_max(channel),
        min=float(np.min(finite)),
        max=float(np.max(finite)),
        mean=float(np.mean(finite)),
    )
