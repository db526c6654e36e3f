"""FITS 文件读取模块

职责:
- 读取 FITS 文件 (第一个含数据的 HDU)
- 提取文件头信息 (焦距、像素大小等)
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Union

from starfinder.core.models import FitsHeader, FitsImage


def read_fits(path: Union[str, Path]) -> FitsImage:
    """读取 FITS 文件，返回数据和头信息

    Args:
        path: FITS 文件路径

    Returns:
        FitsImage: 包含数据和头信息的对象

    Raises:
        FileNotFoundError: 文件不存在
        ValueError: 文件中没有二维/三维图像数据
    """
    from astropy.io import fits as astropy_fits

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"FITS 文件不存在: {path}")

    with astropy_fits.open(str(path)) as hdul:
        data = None
        header_dict = {}
        for hdu in hdul:
            if hdu.data is not None:
                data = hdu.data.copy()
                header_dict = dict(hdu.header)
                break

        if data is None:
            raise ValueError(f"FITS 文件中没有图像数据: {path}")

    if data.ndim not in (2, 3):
        raise ValueError(f"不支持的图像维度 {data.ndim}: {path}")

    # 将 FITS 大端序 ('>i2', '>u2' 等) 转换为本机字节序
    if data.dtype.byteorder not in ('=', '|', sys.byteorder[0]):
        data = data.astype(data.dtype.newbyteorder('='))

    return FitsImage(data=data, header=FitsHeader(raw=header_dict), path=path)


def read_header(path: Union[str, Path]) -> FitsHeader:
    """仅读取 FITS 文件头（不加载数据，更快）"""
    from astropy.io import fits as astropy_fits

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"FITS 文件不存在: {path}")

    header_dict = {}
    with astropy_fits.open(str(path)) as hdul:
        for hdu in hdul:
            if hdu.header:
                header_dict = dict(hdu.header)
                break

    return FitsHeader(raw=header_dict)
