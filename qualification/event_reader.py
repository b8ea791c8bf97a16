"""
EventLog读取模块

本地文件直接读取（明文、gzip或zstd），HDFS路径通过 hdfs dfs -text 读取（自动解压）。
逐行返回二进制内容，由解析器负责解码。
"""

import gzip
import io
import logging
import zlib

import zstandard

from qualification.errors import TruncatedLogError, UnsupportedCodecError
from utils.hdfs_utils import HDFSUtils

logger = logging.getLogger(__name__)

# 本地可直接解压的格式
LOCAL_CODECS = ('gzip', 'zstd')


class EventReader:
    """EventLog行读取器"""

    @staticmethod
    def iter_lines(paths):
        """
        按顺序读取一个或多个文件（滚动日志的多个分片）
        :param paths: 文件路径列表
        :return: 二进制行的生成器
        """
        for path in paths:
            if HDFSUtils.is_hdfs_path(path):
                yield from EventReader._iter_hdfs(path)
            else:
                yield from EventReader._iter_local(path)

    @staticmethod
    def _iter_local(path):
        codec = HDFSUtils.detect_codec(path)
        if codec is None:
            with open(path, 'rb') as f:
                yield from f
            return
        if codec not in LOCAL_CODECS:
            raise UnsupportedCodecError(path, codec)

        if codec == 'gzip':
            opener, errors = EventReader._open_gzip, (EOFError, zlib.error, gzip.BadGzipFile)
        else:
            opener, errors = EventReader._open_zstd, (zstandard.ZstdError,)
        try:
            with opener(path) as f:
                yield from f
        except errors as e:
            logger.debug("%s流中断: %s, %s", codec, path, e)
            raise TruncatedLogError(f"压缩文件不完整: {path}, 错误: {e}") from e

    @staticmethod
    def _open_gzip(path):
        return gzip.open(path, 'rb')

    @staticmethod
    def _open_zstd(path):
        """Spark 的 zstd 输出可能包含多个帧，按帧连续解压"""
        raw = open(path, 'rb')
        reader = zstandard.ZstdDecompressor().stream_reader(raw, read_across_frames=True)
        return io.BufferedReader(reader)

    @staticmethod
    def _iter_hdfs(path):
        process = HDFSUtils.open_text_stream(path)
        line_count = 0
        try:
            for line_bytes in process.stdout:
                line_count += 1
                yield line_bytes

            process.wait()
            if process.returncode != 0:
                stderr_output = process.stderr.read().decode('utf-8', errors='replace')
                message = (f"hdfs dfs -text 命令失败，退出码: {process.returncode}, "
                           f"错误: {stderr_output}")
                if line_count:
                    raise TruncatedLogError(message)
                raise OSError(message)
        finally:
            # 提前结束读取（如GPU日志）时同样清理子进程
            if process.poll() is None:
                process.kill()
                process.wait()
            if process.stdout:
                process.stdout.close()
            if process.stderr:
                process.stderr.close()
