"""
配置加载模块
"""

import os
from typing import Dict, Any, Optional

import yaml

from qualification.errors import ConfigurationError
from qualification.plugin_type_checker import normalize_platform
from utils.hdfs_utils import HDFSUtils

# 数值配置项及其类型，在 validate() 中转换
_NUMERIC_FIELDS = (
    ('limit', int), ('num_workers', int), ('max_sql_desc_length', int),
    ('lower_bound_recommended', float), ('lower_bound_strongly_recommended', float),
    ('num_sql_queries_per_file', int), ('max_num_files', int),
)


class QualConfig:
    """评估工具配置类（构建后只读，显式传递给各组件）"""

    def __init__(self, config_dict: Dict[str, Any], overrides: Optional[Dict[str, Any]] = None):
        """
        初始化配置
        :param config_dict: YAML配置字典
        :param overrides: 命令行参数覆盖项（值为None的项忽略）
        """
        self.config = config_dict or {}
        overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

        qual_config = {**(self.config.get('qualification') or {}), **overrides}
        self.platform = qual_config.get('platform', 'onprem')
        self.speedup_factor_file = qual_config.get('speedup_factor_file')
        self.output_directory = qual_config.get('output_directory', './qual_output')
        self.order = str(qual_config.get('order', 'desc')).lower()
        self.limit = qual_config.get('limit')
        self.per_sql = bool(qual_config.get('per_sql', False))
        self.report_read_schema = bool(qual_config.get('report_read_schema', False))
        self.ml_functions = _to_bool(qual_config.get('ml_functions', False))
        self.num_workers = qual_config.get('num_workers', 1)
        self.use_spark = bool(qual_config.get('use_spark', False))
        self.max_sql_desc_length = qual_config.get('max_sql_desc_length', 100)
        self.fail_on_all_failed = bool(qual_config.get('fail_on_all_failed', False))
        self.application_name = qual_config.get('application_name')

        # 推荐阈值
        rec_config = self.config.get('recommendation') or {}
        self.lower_bound_recommended = rec_config.get('lower_bound_recommended', 1.3)
        self.lower_bound_strongly_recommended = rec_config.get('lower_bound_strongly_recommended', 2.5)

        # 实时模式
        running_config = self.config.get('running') or {}
        self.running_output_dir = running_config.get('output_dir')
        self.num_sql_queries_per_file = running_config.get('num_sql_queries_per_file', 100)
        self.max_num_files = running_config.get('max_num_files', 100)

    def validate(self):
        """验证配置完整性，并把数值配置项转换为对应类型"""
        errors = []

        for name, convert in _NUMERIC_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            try:
                setattr(self, name, convert(value))
            except (TypeError, ValueError):
                errors.append(f"{name} 必须是数值: {value!r}")
        if errors:
            raise ConfigurationError("配置验证失败:\n" + "\n".join(errors))

        try:
            self.platform = normalize_platform(self.platform)
        except ConfigurationError as e:
            errors.append(str(e))

        if self.order not in ('asc', 'desc'):
            errors.append(f"排序方式只能是 asc 或 desc: {self.order}")

        if self.limit is not None and self.limit <= 0:
            errors.append(f"输出行数限制必须大于0: {self.limit}")

        if self.num_workers < 1:
            errors.append(f"并行度必须大于等于1: {self.num_workers}")

        if not 0 < self.lower_bound_recommended <= self.lower_bound_strongly_recommended:
            errors.append("推荐阈值应满足 0 < lower_bound_recommended <= lower_bound_strongly_recommended")

        if self.num_sql_queries_per_file < 1 or self.max_num_files < 1:
            errors.append("num_sql_queries_per_file 与 max_num_files 必须大于0")

        if self.max_sql_desc_length < 4:
            errors.append(f"SQL描述最大长度过小: {self.max_sql_desc_length}")

        if errors:
            raise ConfigurationError("配置验证失败:\n" + "\n".join(errors))

        return True

    def __str__(self):
        """打印配置信息"""
        return f"""
=== 评估工具配置 ===
平台: {self.platform}
加速因子文件: {self.speedup_factor_file or '内置'}
输出目录: {self.output_directory}
排序: {self.order}
行数限制: {self.limit if self.limit is not None else '无'}
Per-SQL输出: {self.per_sql}
ML函数分析: {self.ml_functions}
并行度: {self.num_workers}{' (Spark)' if self.use_spark else ''}
推荐阈值: {self.lower_bound_recommended} / {self.lower_bound_strongly_recommended}
================
"""


def _to_bool(value):
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    return bool(value)


class ConfigLoader:
    """配置加载器"""

    @staticmethod
    def load(config_path=None, overrides=None):
        """
        加载配置
        :param config_path: 配置文件路径（可选，不指定时使用内置默认值）
        :param overrides: 命令行参数覆盖项
        :return: QualConfig对象
        """
        config_dict = {}
        if config_path:
            config_dict = ConfigLoader._load_yaml(config_path)

        config = QualConfig(config_dict, overrides)
        config.validate()

        return config

    @staticmethod
    def _load_yaml(file_path):
        """加载YAML配置文件"""
        try:
            # 支持HDFS路径
            if file_path.startswith('hdfs://'):
                content = yaml.safe_load(HDFSUtils.read_text(file_path))
            else:
                if not os.path.exists(file_path):
                    raise ConfigurationError(f"配置文件不存在: {file_path}")

                with open(file_path, 'r', encoding='utf-8') as f:
                    content = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"配置文件格式错误: {file_path}, 错误: {e}") from e

        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigurationError(f"配置文件顶层必须是映射: {file_path}")
        return content
