"""
Spark Qualification Tool - 工具模块
"""

from .date_utils import DateUtils
from .hdfs_utils import HDFSUtils

__all__ = ['DateUtils', 'HDFSUtils']
