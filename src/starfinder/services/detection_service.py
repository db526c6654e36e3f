"""寻星服务

职责:
- 持有当前帧的星表
- 编排完整的寻星流程: 阈值 → 小波候选 → PSF 拟合 → 接受检查 → 排序
- 手动添加 / 删除星，且不与正在进行的扫描重叠
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple, Union

import numpy as np

from starfinder.core.errors import AllocationFailure, ScanInProgress, StatisticsFailure
from starfinder.core.fits_io import read_fits
from starfinder.core.models import AppConfig, FitsImage, FittedStar, Rectangle, TelescopeConfig
from starfinder.core.star_catalog import StarCatalog
from starfinder.core.star_finder import scan_stars

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """一次寻星的结果"""
    stars: List[FittedStar] = field(default_factory=list)
    count: int = 0
    fwhmx: float = 0.0
    fwhmy: float = 0.0
    units: str = ""
    elapsed_s: float = 0.0
    cancelled: bool = False
    error: str = ""


class StarDetectionService:
    """单帧寻星服务

    星表由服务持有，扫描、手动编辑与显示端都通过同一个实例访问。
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ):
        self.config = config or AppConfig()
        self.progress_callback = progress_callback
        self.catalog = StarCatalog(max_stars=self.config.max_stars)
        self.telescope: TelescopeConfig = self.config.telescope
        self._scan_lock = threading.Lock()

    # ─── 帧 ───

    def load_image(self, path: Union[str, Path]) -> FitsImage:
        """读取新帧并清空星表

        若配置中未给出像素分辨率，则尝试从 FITS 头读取焦距与像素大小。
        """
        image = read_fits(path)
        with self._exclusive("加载新帧"):
            self.catalog.clear()
        if self.config.telescope.compute_pixel_scale() > 0:
            self.telescope = self.config.telescope
        else:
            self.telescope = TelescopeConfig.from_header(image.header)
        logger.info("已加载 %s (shape=%s, 像素分辨率=%.3f\"/px)",
                    path, image.shape, self.telescope.compute_pixel_scale())
        return image

    # ─── 自动寻星 ───

    def find_stars(
        self,
        channel: np.ndarray,
        layer: int = 0,
        area: Optional[Rectangle] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ScanResult:
        """对单个通道寻星，结果替换当前星表

        统计失败或内存不足会中止扫描，返回空结果并在 error 中说明原因。
        """
        t_start = time.perf_counter()
        with self._exclusive("寻星"):
            self.catalog.clear()
            try:
                count, cancelled = scan_stars(
                    channel,
                    self.config.star_finder,
                    self.catalog,
                    layer=layer,
                    area=area,
                    telescope=self.telescope,
                    wavelet_scale=self.config.wavelet_scale,
                    max_workers=self.config.max_threads,
                    cancel_event=cancel_event,
                    progress_callback=self.progress_callback,
                )
            except (StatisticsFailure, AllocationFailure) as e:
                logger.error("寻星失败: %s", e)
                self.catalog.clear()
                return ScanResult(
                    elapsed_s=time.perf_counter() - t_start,
                    error=str(e),
                )

        result = ScanResult(
            stars=self.catalog.stars,
            count=count,
            elapsed_s=time.perf_counter() - t_start,
            cancelled=cancelled,
        )
        if count:
            result.fwhmx, result.fwhmy, result.units = self.catalog.average_fwhm(count)
            logger.info("平均 FWHM: %.2f x %.2f %s", result.fwhmx, result.fwhmy, result.units)
        return result

    # ─── 手动编辑 ───

    def add_star(
        self,
        channel: np.ndarray,
        selection: Rectangle,
        layer: int = 0,
    ) -> Tuple[int, FittedStar]:
        """在选区内拟合并添加一颗星 (不经过接受性过滤)"""
        with self._exclusive("手动添加"):
            return self.catalog.insert_manual(selection, channel, layer, self.telescope)

    def remove_star(self, index: int) -> FittedStar:
        with self._exclusive("删除星"):
            star = self.catalog.remove(index)
        logger.info("已删除星 #%d (x=%.2f, y=%.2f)", index, star.xpos, star.ypos)
        return star

    def clear_stars(self) -> None:
        with self._exclusive("清空星表"):
            self.catalog.clear()

    def average_fwhm(self, nb: Optional[int] = None) -> Tuple[float, float, str]:
        return self.catalog.average_fwhm(nb)

    # ─── 内部 ───

    @contextmanager
    def _exclusive(self, action: str) -> Iterator[None]:
        """获取扫描锁；扫描进行中时立即失败而不是等待"""
        if not self._scan_lock.acquire(blocking=False):
            raise ScanInProgress(f"寻星进行中，无法{action}")
        try:
            yield
        finally:
            self._scan_lock.release()
