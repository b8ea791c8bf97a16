"""
算子支持表 - 加速因子、支持的算子/表达式/数据源/Join类型

所有表在启动时加载一次，之后只读，可安全地传递给并行worker。
"""

import csv
import logging
import os
import re

from qualification.errors import ConfigurationError
from qualification.schema_parser import split_schema_fields

logger = logging.getLogger(__name__)

RESOURCE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'resources')

SUPPORTED_PLATFORMS = (
    'onprem',
    'dataproc-t4',
    'dataproc-l4',
    'emr-t4',
    'emr-a10',
    'databricks-aws',
    'databricks-azure',
)

PLATFORM_ALIASES = {
    'dataproc': 'dataproc-t4',
    'emr': 'emr-t4',
    'databricks': 'databricks-aws',
}

# Spark类型名 -> 数据源支持表的列名
_TYPE_COLUMNS = {
    'boolean': 'BOOLEAN',
    'byte': 'BYTE',
    'tinyint': 'BYTE',
    'short': 'SHORT',
    'smallint': 'SHORT',
    'int': 'INT',
    'integer': 'INT',
    'long': 'LONG',
    'bigint': 'LONG',
    'float': 'FLOAT',
    'real': 'FLOAT',
    'double': 'DOUBLE',
    'date': 'DATE',
    'timestamp': 'TIMESTAMP',
    'timestamp_ntz': 'TIMESTAMP',
    'string': 'STRING',
    'varchar': 'STRING',
    'char': 'STRING',
    'decimal': 'DECIMAL',
    'numeric': 'DECIMAL',
    'null': 'NULL',
    'void': 'NULL',
    'binary': 'BINARY',
    'interval': 'CALENDAR',
    'calendarinterval': 'CALENDAR',
    'calendar': 'CALENDAR',
    'array': 'ARRAY',
    'map': 'MAP',
    'struct': 'STRUCT',
    'udt': 'UDT',
}

_UNSUPPORTED_MARKS = ('NS', 'CO')


def normalize_platform(platform):
    """
    规范化平台标识，支持别名
    :param platform: 平台标识，如 onprem、dataproc、emr-a10
    :return: 规范平台标识
    """
    name = (platform or 'onprem').strip().lower()
    name = PLATFORM_ALIASES.get(name, name)
    if name not in SUPPORTED_PLATFORMS:
        raise ConfigurationError(
            f"不支持的平台: {platform}，可选值: {', '.join(SUPPORTED_PLATFORMS)}")
    return name


def base_type_name(type_string):
    """decimal(8,2) -> decimal, array<string> -> array"""
    return re.split(r'[<(]', type_string.strip().lower(), maxsplit=1)[0].strip()


def _type_column(name):
    name = name.strip().lower()
    return _TYPE_COLUMNS.get(base_type_name(name), name.upper())


def read_csv_table(file_path, required_columns=()):
    """
    读取CSV表，并校验每一行的列数与表头一致
    :param file_path: 文件路径
    :param required_columns: 表头必须以这些列开头
    :return: (header, rows)
    """
    if not os.path.exists(file_path):
        raise ConfigurationError(f"表文件不存在: {file_path}")

    with open(file_path, 'r', encoding='utf-8', newline='') as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if not header:
            raise ConfigurationError(f"表文件缺少表头: {file_path}")
        header = [col.strip() for col in header]

        if [c.lower() for c in header[:len(required_columns)]] != \
                [c.lower() for c in required_columns]:
            raise ConfigurationError(
                f"表头错误: {file_path}，应以 {','.join(required_columns)} 开头")

        rows = []
        for line_no, row in enumerate(reader, start=2):
            if not row or all(not cell.strip() for cell in row):
                continue
            if len(row) != len(header):
                raise ConfigurationError(
                    f"{file_path} 第 {line_no} 行有 {len(row)} 列，与表头列数 {len(header)} 不一致")
            rows.append([cell.strip() for cell in row])

    return header, rows


class PluginTypeChecker:
    """GPU支持情况与加速因子查询"""

    def __init__(self, platform='onprem', speedup_factor_file=None,
                 supported_data_source_file=None, supported_execs_file=None,
                 supported_exprs_file=None, supported_join_types_file=None):
        self.platform = normalize_platform(platform)

        if speedup_factor_file is None:
            speedup_factor_file = os.path.join(
                RESOURCE_DIR, f'operatorsScore-{self.platform}.csv')
        self.speedup_factor_file = speedup_factor_file

        self._speedup_factors = self._load_speedup_factors(speedup_factor_file)
        self._read_support, self._write_formats = self._load_data_sources(
            supported_data_source_file or os.path.join(RESOURCE_DIR, 'supportedDataSource.csv'))
        self._supported_execs = self._load_execs(
            supported_execs_file or os.path.join(RESOURCE_DIR, 'supportedExecs.csv'))
        self._supported_exprs, self._expr_notes = self._load_exprs(
            supported_exprs_file or os.path.join(RESOURCE_DIR, 'supportedExprs.csv'))
        self._join_types = self._load_join_types(
            supported_join_types_file or os.path.join(RESOURCE_DIR, 'supportedJoinTypes.csv'))

        logger.debug("已加载平台 %s 的支持表: %d 个加速因子, %d 个算子, %d 个表达式",
                     self.platform, len(self._speedup_factors),
                     len(self._supported_execs), len(self._supported_exprs))

    # ---------- 加载 ----------

    @staticmethod
    def _load_speedup_factors(file_path):
        _, rows = read_csv_table(file_path, ('CPUOperator', 'Score'))
        factors = {}
        for row in rows:
            try:
                factors[row[0]] = float(row[1])
            except ValueError as e:
                raise ConfigurationError(f"{file_path} 中 {row[0]} 的加速因子不是数字: {row[1]}") from e
        return factors

    @staticmethod
    def _load_data_sources(file_path):
        """
        加载数据源支持表
        :return: ({格式: {类型列: 支持标记}}, 支持写入的格式集合)
        """
        header, rows = read_csv_table(file_path, ('Format', 'Direction'))
        type_columns = [_type_column(col) for col in header[2:]]
        read_support = {}
        write_formats = set()
        for row in rows:
            fmt = row[0].lower()
            direction = row[1].lower()
            marks = {col: mark.upper() for col, mark in zip(type_columns, row[2:])}
            if direction == 'read':
                read_support[fmt] = marks
            elif direction == 'write':
                write_formats.add(fmt)
        return read_support, write_formats

    @staticmethod
    def _load_execs(file_path):
        _, rows = read_csv_table(file_path, ('Exec', 'Supported'))
        execs = {}
        for row in rows:
            notes = row[2] if len(row) > 2 and row[2] != 'None' else ''
            execs[row[0]] = (row[1].upper(), notes)
        return execs

    @staticmethod
    def _load_exprs(file_path):
        _, rows = read_csv_table(file_path, ('Expression', 'Supported'))
        exprs = {}
        notes = {}
        for row in rows:
            mark = row[1].upper()
            names = [row[0]]
            if len(row) > 2 and row[2] and row[2] != 'None':
                names.extend(row[2].split(';'))
            for name in names:
                key = name.strip().lower()
                if key:
                    exprs[key] = mark
                    if len(row) > 3 and row[3] and row[3] != 'None':
                        notes[key] = row[3]
        return exprs, notes

    @staticmethod
    def _load_join_types(file_path):
        _, rows = read_csv_table(file_path, ('JoinType', 'Supported'))
        join_types = {}
        for row in rows:
            wrapper = len(row) > 2 and row[2].lower() == 'true'
            join_types[row[0].lower()] = (row[1].upper() == 'S', wrapper)
        return join_types

    # ---------- 查询 ----------

    def get_speedup_factor(self, op_name):
        """未配置的算子加速因子为1.0"""
        return self._speedup_factors.get(op_name, 1.0)

    def score_read_data_types(self, read_format, schema):
        """
        计算读取类型得分
        :param read_format: 数据格式，如 parquet、JSON
        :param schema: "name:type,..." 格式的Schema字符串，或 (name, type) 列表
        :return: (支持字段数/总字段数, 不支持的类型名集合)
        """
        support = self._read_support.get((read_format or '').strip().lower())
        if support is None:
            return 0.0, {'*'}

        fields = schema if isinstance(schema, (list, tuple)) else split_schema_fields(schema)
        if not fields:
            return 1.0, set()

        unsupported = set()
        supported_count = 0
        for _, type_string in fields:
            type_name = base_type_name(type_string)
            mark = support.get(_type_column(type_name), '')
            if mark in _UNSUPPORTED_MARKS:
                unsupported.add(type_name)
            else:
                supported_count += 1

        return supported_count / len(fields), unsupported

    def is_write_format_supported(self, write_format):
        return (write_format or '').strip().lower() in self._write_formats

    def is_exec_supported(self, exec_name):
        """接受带或不带 Exec 后缀的算子名"""
        return self._lookup_exec(exec_name)[0] == 'S'

    def get_exec_notes(self, exec_name):
        return self._lookup_exec(exec_name)[1]

    def _lookup_exec(self, exec_name):
        name = exec_name.strip()
        entry = self._supported_execs.get(name)
        if entry is None and not name.endswith('Exec'):
            entry = self._supported_execs.get(name + 'Exec')
        return entry or ('', '')

    def get_supported_exprs(self):
        """小写的表达式名/SQL函数名 -> S/NS"""
        return dict(self._supported_exprs)

    def is_expr_supported(self, expr_name):
        """未知表达式视为不支持"""
        return self._supported_exprs.get(expr_name.strip().lower()) == 'S'

    def get_expr_notes(self, expr_name):
        return self._expr_notes.get(expr_name.strip().lower(), '')

    def is_join_supported(self, exec_name, join_type):
        """
        Join是否支持
        包装型Join（如ExistenceJoin）只看包装类型本身是否支持
        :param exec_name: Join算子名
        :param join_type: Join类型，如 Inner、ExistenceJoin(exists#12)
        """
        base = re.split(r'[(\s]', (join_type or '').strip(), maxsplit=1)[0].lower()
        entry = self._join_types.get(base)
        if entry is not None and entry[1]:
            return entry[0]
        if not self.is_exec_supported(exec_name):
            return False
        if not base:
            return True
        return entry is not None and entry[0]
