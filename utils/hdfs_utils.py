"""
HDFS与路径工具类
"""

import os
import subprocess

from qualification.errors import ConfigurationError

HDFS_SCHEMES = ('hdfs://', 'viewfs://', 'webhdfs://')

# 文件扩展名 -> 压缩格式
CODEC_SUFFIXES = {
    '.gz': 'gzip',
    '.zstd': 'zstd',
    '.zst': 'zstd',
    '.lz4': 'lz4',
    '.snappy': 'snappy',
    '.lzf': 'lzf',
}


class HDFSUtils:
    """HDFS操作工具"""

    @staticmethod
    def is_hdfs_path(file_path):
        return str(file_path).startswith(HDFS_SCHEMES)

    @staticmethod
    def is_inprogress_file(file_path):
        """判断是否是未完成的日志文件"""
        return file_path.endswith('.inprogress')

    @staticmethod
    def strip_inprogress(file_path):
        if HDFSUtils.is_inprogress_file(file_path):
            return file_path[:-len('.inprogress')]
        return file_path

    @staticmethod
    def detect_codec(file_path):
        """
        根据扩展名判断压缩格式
        :return: 压缩格式名，未压缩返回 None
        """
        name = HDFSUtils.strip_inprogress(os.path.basename(str(file_path))).lower()
        for suffix, codec in CODEC_SUFFIXES.items():
            if name.endswith(suffix):
                return codec
        return None

    @staticmethod
    def open_text_stream(file_path):
        """
        使用 hdfs dfs -text 读取文件，-text 会自动解压 .lz4/.snappy/.gz 等格式
        :return: subprocess.Popen 对象，stdout 为二进制行流
        """
        try:
            return subprocess.Popen(
                ['hdfs', 'dfs', '-text', file_path],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=1,
                universal_newlines=False
            )
        except FileNotFoundError as e:
            raise OSError("找不到 hdfs 命令，请确保 Hadoop 环境已正确配置") from e

    @staticmethod
    def read_text(file_path):
        """
        读取HDFS上的小文件（配置文件、覆盖表）
        :return: 文件内容字符串
        """
        try:
            result = subprocess.run(
                ['hdfs', 'dfs', '-cat', file_path],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=False
            )
        except FileNotFoundError as e:
            raise ConfigurationError("找不到 hdfs 命令，请确保 Hadoop 环境已正确配置") from e
        if result.returncode != 0:
            stderr_output = result.stderr.decode('utf-8', errors='replace')
            raise ConfigurationError(
                f"读取HDFS文件失败: {file_path}, 退出码: {result.returncode}, 错误: {stderr_output}")
        return result.stdout.decode('utf-8')
