"""starfinder 命令行入口

用法:
    starfinder IMAGE.fits [--layer N] [--radius R] [--sigma K] [--roundness P]
"""

import argparse
import dataclasses
import sys
from typing import List, Optional


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="starfinder",
        description="在 FITS 图像中寻找星点并拟合高斯 PSF",
    )
    parser.add_argument("image", help="FITS 文件路径")
    parser.add_argument("--layer", type=int, default=0, help="通道索引 (默认 0)")
    parser.add_argument("--radius", type=int, default=None, help="拟合窗口半宽 (px)")
    parser.add_argument("--sigma", type=float, default=None, help="阈值倍数 k")
    parser.add_argument("--roundness", type=float, default=None, help="最小圆度 [0, 1]")
    parser.add_argument("--config", default=None, help="配置文件路径 (JSON)")
    parser.add_argument("--threads", type=int, default=None, help="拟合线程数")
    parser.add_argument("--log-level", default=None, help="日志级别 (DEBUG/INFO/...)")
    parser.add_argument("--log-file", default=None, help="日志文件路径")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """运行一次寻星并打印星表"""
    from starfinder.core.config import load_config
    from starfinder.logger_config import close_logging, get_logger, setup_logging
    from starfinder.services.detection_service import StarDetectionService

    args = build_parser().parse_args(argv)
    config = load_config(args.config)

    overrides = {
        key: value
        for key, value in (
            ("radius", args.radius),
            ("sigma", args.sigma),
            ("roundness", args.roundness),
        )
        if value is not None
    }
    try:
        config.star_finder = dataclasses.replace(config.star_finder, **overrides)
    except ValueError as e:
        print(f"参数错误: {e}", file=sys.stderr)
        return 2
    if args.threads is not None:
        config.max_threads = args.threads
    if args.log_level is not None:
        config.log_level = args.log_level

    setup_logging(log_file=args.log_file, log_level=config.log_level)
    logger = get_logger(__name__)

    try:
        service = StarDetectionService(config)
        try:
            image = service.load_image(args.image)
            channel = image.channel(args.layer)
        except (OSError, ValueError) as e:
            logger.error("无法读取图像: %s", e)
            return 1

        result = service.find_stars(channel, layer=args.layer)
        if result.error:
            return 1

        print(f"{'#':>5} {'xpos':>9} {'ypos':>9} {'fwhmx':>7} {'fwhmy':>7} {'mag':>8}")
        for i, star in enumerate(result.stars):
            print(f"{i:>5} {star.xpos:>9.2f} {star.ypos:>9.2f} "
                  f"{star.fwhmx:>7.2f} {star.fwhmy:>7.2f} {star.mag:>8.3f}")
        if result.count:
            print(f"{result.count} 颗星，平均 FWHM {result.fwhmx:.2f} x "
                  f"{result.fwhmy:.2f} {result.units}")
        else:
            print("未找到星")
        return 0
    finally:
        close_logging()


if __name__ == "__main__":
    sys.exit(main())
