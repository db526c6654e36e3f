"""starfinder - 星点检测与 PSF 测光"""

__version__ = "1.0.0"
