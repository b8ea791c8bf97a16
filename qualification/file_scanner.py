"""
文件扫描模块 - 把命令行给出的路径解析为EventLog列表

支持：单个文件、滚动日志目录（eventlog_v2_*，分片 events_<n>_*）、
Databricks风格目录（eventlog-<日期> 分片 + 当前 eventlog 文件）、普通目录（每个子项一个日志）。
HDFS路径不做展开，直接交给 hdfs dfs -text 读取。
"""

import json
import logging
import os
import re
from contextlib import closing
from dataclasses import dataclass, field
from typing import List

from qualification.errors import QualificationError
from qualification.event_reader import EventReader
from utils.hdfs_utils import HDFSUtils

logger = logging.getLogger(__name__)

ROLLING_DIR_PREFIX = 'eventlog_v2_'
_ROLLING_PART_PATTERN = re.compile(r'^events_(\d+)_')
DATABRICKS_LOG_NAME = 'eventlog'
_DATABRICKS_PART_PATTERN = re.compile(r'^eventlog-(.+)$')

# 非EventLog文件
_IGNORED_PREFIXES = ('.', '_', 'appstatus_')


@dataclass
class EventLogInfo:
    """一个待处理的EventLog（可以由多个分片组成）"""
    path: str
    parts: List[str] = field(default_factory=list)


class FileScanner:
    """EventLog文件扫描器"""

    @staticmethod
    def scan(paths, application_name=None):
        """
        解析输入路径
        :param paths: 命令行给出的路径列表
        :param application_name: 应用名过滤条件，"~"开头表示排除
        :return: EventLogInfo 列表（按路径排序）
        """
        logs = []
        for path in paths:
            logs.extend(FileScanner.resolve(path))
        logs.sort(key=lambda log: log.path)
        print(f"扫描完成，找到 {len(logs)} 个EventLog")

        if application_name:
            logs = FileScanner.filter_by_app_name(logs, application_name)
            print(f"按应用名过滤后剩余 {len(logs)} 个EventLog")
        return logs

    @staticmethod
    def resolve(path):
        """单个输入路径 -> EventLogInfo 列表"""
        if HDFSUtils.is_hdfs_path(path) or not os.path.isdir(path):
            return [EventLogInfo(path, [path])]

        name = os.path.basename(os.path.normpath(path))
        if name.startswith(ROLLING_DIR_PREFIX):
            return [EventLogInfo(path, FileScanner._rolling_parts(path))]
        if FileScanner._is_databricks_dir(path):
            return [EventLogInfo(path, FileScanner._databricks_parts(path))]

        logs = []
        for child in sorted(os.listdir(path)):
            if child.startswith(_IGNORED_PREFIXES):
                continue
            logs.extend(FileScanner.resolve(os.path.join(path, child)))
        return logs

    @staticmethod
    def _rolling_parts(dir_path):
        """events_<n>_* 分片按 n 排序"""
        parts = []
        for child in os.listdir(dir_path):
            match = _ROLLING_PART_PATTERN.match(child)
            if match:
                parts.append((int(match.group(1)), os.path.join(dir_path, child)))
        return [p for _, p in sorted(parts)]

    @staticmethod
    def _is_databricks_dir(dir_path):
        children = os.listdir(dir_path)
        return any(child == DATABRICKS_LOG_NAME or _DATABRICKS_PART_PATTERN.match(child)
                   for child in children)

    @staticmethod
    def _databricks_parts(dir_path):
        """eventlog-<日期> 分片按日期排序，不带日期的 eventlog 是当前文件，排在最后"""
        dated = []
        current = None
        for child in os.listdir(dir_path):
            if child == DATABRICKS_LOG_NAME:
                current = os.path.join(dir_path, child)
            elif _DATABRICKS_PART_PATTERN.match(child):
                dated.append(os.path.join(dir_path, child))
        parts = sorted(dated)
        if current is not None:
            parts.append(current)
        return parts

    @staticmethod
    def filter_by_app_name(logs, application_name):
        """
        按应用名子串过滤
        :param application_name: 子串，"~"开头表示排除包含该子串的应用
        """
        exclude = application_name.startswith('~')
        pattern = application_name[1:] if exclude else application_name

        selected = []
        for log in logs:
            app_name = FileScanner.read_app_name(log)
            if app_name is None:
                # 读不到应用名的日志保留，由后续处理记录状态
                selected.append(log)
                continue
            if (pattern in app_name) != exclude:
                selected.append(log)
        return selected

    @staticmethod
    def read_app_name(log):
        """读取到 ApplicationStart 事件为止，返回应用名"""
        try:
            with closing(EventReader.iter_lines(log.parts)) as lines:
                for line in lines:
                    try:
                        if isinstance(line, bytes):
                            line = line.decode('utf-8')
                        event = json.loads(line)
                    except (UnicodeDecodeError, ValueError):
                        continue
                    if isinstance(event, dict) and event.get('Event') == 'SparkListenerApplicationStart':
                        return event.get('App Name') or ''
        except (QualificationError, OSError) as e:
            logger.debug("预读应用名失败: %s, %s", log.path, e)
        return None
