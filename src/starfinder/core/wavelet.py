"""多尺度 (à trous) 小波平滑

用 B3 样条核 [1, 4, 6, 4, 1] / 16 做不抽取的逐级平滑，
第 i 级的核元素间隔为 2**i。返回 scale 层分解的残差层，
即寻星时用于定位峰值的平滑图。
"""

from __future__ import annotations

import numpy as np

B3_SPLINE = np.array([1.0, 4.0, 6.0, 4.0, 1.0]) / 16.0


def _dilated_kernel(step: int) -> np.ndarray:
    """在核元素之间插入 step-1 个零 ("à trous")"""
    kernel = np.zeros(4 * step + 1, dtype=np.float64)
    kernel[::step] = B3_SPLINE
    return kernel


def wavelet_filter(channel: np.ndarray, scale: int = 3) -> np.ndarray:
    """计算小波残差层 (平滑图)

    Args:
        channel: 二维像素数据 (不会被修改)
        scale: 分解层数，做 scale-1 次平滑

    Returns:
        与输入同形状、同类型的平滑图
    """
    import cv2

    if scale < 1:
        raise ValueError(f"scale 必须 >= 1: {scale}")
    if channel.ndim != 2:
        raise ValueError(f"需要二维通道，实际维度: {channel.ndim}")

    smoothed = channel.astype(np.float64)
    for i in range(scale - 1):
        kernel = _dilated_kernel(2 ** i)
        smoothed = cv2.sepFilter2D(
            smoothed, cv2.CV_64F, kernel, kernel,
            borderType=cv2.BORDER_REFLECT,
        )

    if np.issubdtype(channel.dtype, np.integer):
        info = np.iinfo(channel.dtype)
        return np.clip(np.rint(smoothed), info.min, info.max).astype(channel.dtype)
    return smoothed.astype(channel.dtype)
