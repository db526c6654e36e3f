"""星表模块

职责:
- 保存已接受的拟合星 (有容量上限)
- 自动/手动添加、去重、删除、按星等排序、平均 FWHM
- 变更通知 (add / remove / clear / sort)

所有 "检查 + 修改" 序列在同一把锁内完成，保证并发扫描时不会超出容量。
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Callable, Iterator, List, Optional, Tuple

import numpy as np

from starfinder.core.errors import CatalogFull, DuplicateStar, FitFailure, InvalidIndex
from starfinder.core.models import FittedStar, Rectangle, TelescopeConfig
from starfinder.core.psf import fit_gaussian, to_physical_units

logger = logging.getLogger(__name__)

# 星表容量上限
MAX_STARS = 20000

# 手动添加时的重复判定距离 (px，两轴均需满足)
DUPLICATE_DISTANCE = 0.9

Listener = Callable[[str, int], None]


class StarCatalog:
    """单帧的星表"""

    def __init__(self, max_stars: int = MAX_STARS):
        if max_stars <= 0:
            raise ValueError(f"max_stars 必须大于 0: {max_stars}")
        self.max_stars = max_stars
        self._stars: List[FittedStar] = []
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []

    # ─── 基本访问 ───

    def __len__(self) -> int:
        with self._lock:
            return len(self._stars)

    def __iter__(self) -> Iterator[FittedStar]:
        return iter(self.stars)

    def __getitem__(self, index: int) -> FittedStar:
        with self._lock:
            return self._stars[index]

    @property
    def stars(self) -> List[FittedStar]:
        """当前星表的快照"""
        with self._lock:
            return list(self._stars)

    @property
    def is_full(self) -> bool:
        with self._lock:
            return len(self._stars) >= self.max_stars

    # ─── 通知 ───

    def add_listener(self, callback: Listener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, event: str, index: int = -1) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, index)
            except Exception:
                logger.exception("星表监听器出错 (event=%s)", event)

    # ─── 添加 ───

    def insert_auto(self, star: FittedStar) -> bool:
        """自动扫描添加: 未满则追加，不做去重

        Returns:
            是否已添加
        """
        with self._lock:
            if len(self._stars) >= self.max_stars:
                return False
            self._stars.append(star)
            index = len(self._stars) - 1
        self._notify("add", index)
        return True

    def find_duplicate(self, xpos: float, ypos: float) -> int:
        """返回两轴距离均小于 0.9 px 的已有星索引，没有则为 -1"""
        with self._lock:
            for i, s in enumerate(self._stars):
                if (abs(s.xpos - xpos) < DUPLICATE_DISTANCE
                        and abs(s.ypos - ypos) < DUPLICATE_DISTANCE):
                    return i
        return -1

    def insert_manual(
        self,
        region: Rectangle,
        channel: np.ndarray,
        layer: int = 0,
        telescope: Optional[TelescopeConfig] = None,
    ) -> Tuple[int, FittedStar]:
        """手动添加: 直接拟合用户选区，不经过接受性过滤

        Args:
            region: 选区 (图像坐标)
            channel: 原始通道
            layer: 通道索引
            telescope: 用于 FWHM 单位换算 (可选)

        Returns:
            (新星索引, 新星)

        Raises:
            ValueError: 选区为空或超出图像
            FitFailure: 拟合失败
            DuplicateStar: 已存在相同位置的星
            CatalogFull: 星表已满
        """
        ny, nx = channel.shape
        clipped = region.clip(nx, ny)
        if clipped.is_empty or clipped != region:
            raise ValueError(f"选区无效或超出图像范围: {region}")

        patch = channel[region.y:region.y + region.h, region.x:region.x + region.w]
        background = float(np.median(patch))
        star = fit_gaussian(patch, background, layer, fit_angle=False)
        if star is None or not (math.isfinite(star.x0) and math.isfinite(star.y0)):
            raise FitFailure(f"选区内拟合失败: {region}")

        star = to_physical_units(star, telescope)
        star.xpos = region.x + star.x0 - 1.0
        star.ypos = region.y + star.y0 - 1.0

        with self._lock:
            dup = self.find_duplicate(star.xpos, star.ypos)
            if dup >= 0:
                raise DuplicateStar(
                    f"该星已在星表中 (索引 {dup}, x={star.xpos:.2f}, y={star.ypos:.2f})"
                )
            if len(self._stars) >= self.max_stars:
                raise CatalogFull(f"星表已满 ({self.max_stars})")
            self._stars.append(star)
            index = len(self._stars) - 1

        logger.info("手动添加星 #%d: x=%.2f, y=%.2f, mag=%.2f",
                    index, star.xpos, star.ypos, star.mag)
        self._notify("add", index)
        return index, star

    # ─── 删除 / 清空 ───

    def remove(self, index: int) -> FittedStar:
        """删除指定索引的星，后续星依次前移"""
        with self._lock:
            if not self._stars or index < 0 or index >= len(self._stars):
                raise InvalidIndex(f"无效的星索引: {index} (共 {len(self._stars)} 颗)")
            star = self._stars.pop(index)
        self._notify("remove", index)
        return star

    def clear(self) -> None:
        with self._lock:
            self._stars.clear()
        self._notify("clear")

    def replace(self, stars: List[FittedStar]) -> None:
        """整体替换 (新扫描 / 新帧)"""
        if len(stars) > self.max_stars:
            raise CatalogFull(f"星数 {len(stars)} 超出容量 {self.max_stars}")
        with self._lock:
            self._stars = list(stars)
        self._notify("clear")

    # ─── 排序 / 统计 ───

    def sort_by_magnitude(self) -> None:
        """按星等升序稳定排序 (亮星在前，NaN 星等排最后)"""
        with self._lock:
            self._stars.sort(key=lambda s: (math.isnan(s.mag), s.mag))
        self._notify("sort")

    def average_fwhm(self, nb: Optional[int] = None) -> Tuple[float, float, str]:
        """前 nb 颗星的平均 FWHM

        Returns:
            (fwhmx 均值, fwhmy 均值, 第 0 颗星的单位)
        """
        with self._lock:
            if not self._stars:
                raise ValueError("星表为空，无法计算平均 FWHM")
            if nb is None:
                nb = len(self._stars)
            if nb <= 0:
                raise ValueError(f"nb 必须大于 0: {nb}")
            subset = self._stars[:nb]
            units = self._stars[0].units

        fwhmx = sum(s.fwhmx for s in subset) / len(subset)
        fwhmy = sum(s.fwhmy for s in subset) / len(subset)
        return fwhmx, fwhmy, units
