"""配置管理模块

职责:
- 加载/保存应用配置 (JSON)
- 提供默认值
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Union

from starfinder.core.models import AppConfig, FindStarParams, TelescopeConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "starfinder_config.json"


def get_default_config_path() -> Path:
    """获取默认配置文件路径 (项目根目录)"""
    import sys
    if getattr(sys, "frozen", False):
        base = Path(sys.executable).parent
    else:
        base = Path(__file__).resolve().parent.parent.parent.parent
    return base / DEFAULT_CONFIG_FILENAME


def _load_find_star_params(data: dict) -> FindStarParams:
    """读取寻星参数，非法值回退为默认值"""
    default = FindStarParams()
    try:
        return FindStarParams(
            radius=int(data.get("radius", default.radius)),
            sigma=float(data.get("sigma", default.sigma)),
            roundness=float(data.get("roundness", default.roundness)),
        )
    except (TypeError, ValueError) as e:
        logger.warning("寻星参数无效，使用默认值: %s", e)
        return default


def _load_int(data: dict, key: str, default: int, minimum: int = 1) -> int:
    """读取整数配置项，非整数或小于 minimum 时回退为默认值"""
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        logger.warning("配置项 %s 无效 (%r)，使用默认值 %d", key, value, default)
        return default
    return value


def load_config(
    path: Optional[Union[str, Path]] = None,
) -> AppConfig:
    """加载配置文件

    Args:
        path: 配置文件路径 (None=默认位置)

    Returns:
        AppConfig 实例 (文件不存在或损坏时为默认配置)
    """
    if path is None:
        path = get_default_config_path()
    path = Path(path)

    config = AppConfig()

    if not path.exists():
        return config

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("无法读取配置文件 %s: %s", path, e)
        return config

    # 寻星参数
    config.star_finder = _load_find_star_params(data)

    # 望远镜参数
    tel = data.get("telescope", {})
    config.telescope = TelescopeConfig(
        pixel_size_um=tel.get("pixel_size_um", 0.0),
        focal_length_mm=tel.get("focal_length_mm", 0.0),
        binning=tel.get("binning", 1),
    )

    config.max_stars = _load_int(data, "max_stars", config.max_stars)
    config.wavelet_scale = _load_int(data, "wavelet_scale", config.wavelet_scale)
    config.max_threads = _load_int(data, "max_threads", config.max_threads)
    config.log_level = data.get("log_level", config.log_level)

    return config


def save_config(
    config: AppConfig,
    path: Optional[Union[str, Path]] = None,
) -> Path:
    """保存配置到 JSON 文件

    Args:
        config: 配置对象
        path: 保存路径 (None=默认位置)

    Returns:
        保存的文件路径
    """
    if path is None:
        path = get_default_config_path()
    path = Path(path)

    data = {
        "radius": config.star_finder.radius,
        "sigma": config.star_finder.sigma,
        "roundness": config.star_finder.roundness,
        "telescope": {
            "pixel_size_um": config.telescope.pixel_size_um,
            "focal_length_mm": config.telescope.focal_length_mm,
            "binning": config.telescope.binning,
        },
        "max_stars": config.max_stars,
        "wavelet_scale": config.wavelet_scale,
        "max_threads": config.max_threads,
        "log_level": config.log_level,
    }

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)

    return path
