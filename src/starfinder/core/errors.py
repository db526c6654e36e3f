"""寻星与星表操作的异常类型

只有 StatisticsFailure 与 AllocationFailure 会中止整次扫描，
其余均为局部错误，不改变星表内容。
"""


class StarFinderError(Exception):
    """starfinder 异常基类"""


class StatisticsFailure(StarFinderError):
    """通道统计量无法计算 (扫描中止)"""


class AllocationFailure(StarFinderError, MemoryError):
    """工作缓冲区分配失败 (扫描中止)"""


class FitFailure(StarFinderError):
    """PSF 拟合失败或未收敛"""


class DuplicateStar(StarFinderError):
    """手动添加的星已在星表中 (两轴均在 0.9 px 内)"""


class CatalogFull(StarFinderError):
    """星表已达容量上限"""


class InvalidIndex(StarFinderError, IndexError):
    """删除时索引越界或星表为空"""


class ScanInProgress(StarFinderError):
    """自动扫描正在占用星表"""
