"""
报告输出模块 - CSV与定宽文本表格

所有文件写入 <output_directory>/spark_qualification_output/ 目录。
"""

import csv
import io
import logging
import os
import re

from qualification.cluster_tags import PROJECTED_TAGS

logger = logging.getLogger(__name__)

OUTPUT_SUBDIR = 'spark_qualification_output'
FILE_PREFIX = 'spark_qualification_output'

UNSUPPORTED_OPS_MAX_LEN = 25
APP_NAME_MAX_LEN = 50

SUMMARY_HEADERS = [
    'App Name', 'App ID', 'App Duration', 'SQL DF Duration', 'GPU Opportunity',
    'Estimated GPU Duration', 'Estimated GPU Speedup', 'Estimated GPU Time Saved',
    'Recommendation', 'Unsupported Execs', 'Unsupported Expressions',
    'Estimated Job Frequency (monthly)',
]

DETAILED_HEADERS = [
    'App Name', 'App ID', 'Recommendation', 'Estimated GPU Speedup',
    'Estimated GPU Duration', 'Estimated GPU Time Saved', 'SQL DF Duration',
    'SQL Dataframe Task Duration', 'App Duration', 'GPU Opportunity',
    'Executor CPU Time Percent', 'SQL Ids with Failures',
    'Unsupported Read File Formats and Types', 'Unsupported Write Data Format',
    'Complex Types', 'Nested Complex Types', 'Potential Problems',
    'Longest SQL Duration', 'NONSQL Task Duration Plus Overhead',
    'Unsupported Task Duration', 'Supported SQL DF Task Duration',
    'Task Speedup Factor', 'App Duration Estimated', 'Unsupported Execs',
    'Unsupported Expressions', 'Estimated Job Frequency (monthly)',
]

READ_SCHEMA_HEADER = 'Read Schema'

PER_SQL_HEADERS = [
    'App Name', 'App ID', 'SQL ID', 'SQL Description', 'SQL DF Duration',
    'GPU Opportunity', 'Estimated GPU Duration', 'Estimated GPU Speedup',
    'Estimated GPU Time Saved', 'Recommendation',
]

UNSUPPORTED_OPERATORS_HEADERS = ['App ID', 'Unsupported Type', 'Details', 'Notes']

STATUS_HEADERS = ['Event Log', 'Status', 'Description']

ML_FUNCTION_HEADERS = ['App ID', 'ML Function Name', 'Total Duration']


# ---------- 值格式化 ----------

def format_speedup(speedup):
    return 'N/A' if speedup is None else f'{speedup:.2f}'


def format_float(value):
    return f'{value:.2f}'


def format_bool(value):
    return 'true' if value else 'false'


def summary_values(summary):
    """文本摘要的一行"""
    return [
        summary.app_name,
        summary.app_id,
        str(summary.app_duration),
        str(summary.sql_dataframe_duration),
        str(summary.gpu_opportunity),
        format_float(summary.estimated_gpu_duration),
        format_speedup(summary.estimated_gpu_speedup),
        format_float(summary.estimated_gpu_time_saved),
        summary.recommendation.value,
        summary.unsupported_execs,
        summary.unsupported_exprs,
        str(summary.estimated_frequency),
    ]


def detailed_headers(report_read_schema=False, tag_names=()):
    headers = list(DETAILED_HEADERS) + list(tag_names)
    if report_read_schema:
        headers.append(READ_SCHEMA_HEADER)
    return headers


def detailed_values(summary, report_read_schema=False, tag_names=()):
    """详细CSV的一行"""
    values = [
        summary.app_name,
        summary.app_id,
        summary.recommendation.value,
        format_speedup(summary.estimated_gpu_speedup),
        format_float(summary.estimated_gpu_duration),
        format_float(summary.estimated_gpu_time_saved),
        str(summary.sql_dataframe_duration),
        str(summary.sql_dataframe_task_duration),
        str(summary.app_duration),
        str(summary.gpu_opportunity),
        str(summary.executor_cpu_percent),
        summary.failed_sql_ids,
        summary.read_file_format_and_types_not_supported,
        summary.write_data_format,
        summary.complex_types,
        summary.nested_complex_types,
        summary.potential_problems,
        str(summary.longest_sql_duration),
        str(summary.non_sql_task_duration_plus_overhead),
        str(summary.unsupported_task_duration),
        str(summary.supported_sql_task_duration),
        format_float(summary.task_speedup_factor),
        format_bool(summary.end_duration_estimated),
        summary.unsupported_execs,
        summary.unsupported_exprs,
        str(summary.estimated_frequency),
    ]
    tags = summary.cluster_tag_map
    values.extend(tags.get(name, '') for name in tag_names)
    if report_read_schema:
        values.append(summary.read_schema)
    return values


def per_sql_values(row):
    return [
        row.app_name,
        row.app_id,
        str(row.sql_id),
        row.description,
        str(row.sql_dataframe_duration),
        str(row.gpu_opportunity),
        format_float(row.estimated_gpu_duration),
        format_speedup(row.estimated_gpu_speedup),
        format_float(row.estimated_gpu_time_saved),
        row.recommendation.value,
    ]


def cluster_tag_names(summaries):
    """所有应用中出现过的集群标签列名"""
    present = set()
    for summary in summaries:
        present.update(summary.cluster_tag_map)
    return [name for name in PROJECTED_TAGS if name in present]


# ---------- 排序 ----------

def sort_summaries(summaries, order='desc', limit=None):
    """
    按加速比排序（N/A 按0处理），加速比相同时按App ID排序
    :param summaries: AggregateSummary 列表
    :param order: asc 或 desc
    :param limit: 最多返回的行数
    """
    rows = sorted(summaries,
                  key=lambda s: (s.estimated_gpu_speedup or 0.0, s.app_id),
                  reverse=(order == 'desc'))
    return rows[:limit] if limit else rows


def sort_per_sql(rows, order='desc', limit=None):
    rows = sorted(rows,
                  key=lambda r: (r.estimated_gpu_speedup or 0.0, r.app_id, r.sql_id),
                  reverse=(order == 'desc'))
    return rows[:limit] if limit else rows


# ---------- 表格 ----------

_META_CHARACTERS = {
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\f": "\\f",
    "\b": "\\b",
    "\v": "\\v",
    "\a": "\\a",
}
_META_PATTERN = re.compile("[" + "".join(_META_CHARACTERS) + "]")


def escape_meta_characters(value):
    """定宽文本中控制字符转义为可见形式，CSV保持原值"""
    return _META_PATTERN.sub(lambda m: _META_CHARACTERS[m.group(0)], value)


def truncate(value, width):
    """超过宽度的内容截断并以 ... 结尾"""
    if len(value) <= width:
        return value
    return value[:max(0, width - 3)] + '...'


def column_widths(headers, rows, caps=None):
    """
    列宽 = max(表头长度, min(上限, 最长值长度))
    :param caps: {列名: 最大宽度}
    """
    caps = caps or {}
    widths = []
    for index, header in enumerate(headers):
        longest = max([len(escape_meta_characters(row[index])) for row in rows], default=0)
        cap = caps.get(header)
        if cap is not None:
            longest = min(cap, longest)
        widths.append(max(len(header), longest))
    return widths


def format_row(values, widths=None, delim='|', pretty=True):
    """
    格式化单行
    pretty=True 时每个单元格右对齐并截断到列宽，两端带分隔符；否则直接用分隔符连接
    """
    if not pretty:
        return delim.join(values)
    cells = [truncate(escape_meta_characters(value), width).rjust(width)
             for value, width in zip(values, widths)]
    return delim + delim.join(cells) + delim


def format_table(headers, rows, caps=None, delim='|', border=True):
    """
    定宽文本表格：边框行、表头、边框行、数据行、边框行
    :param headers: 表头
    :param rows: 字符串列表的列表
    :param caps: {列名: 最大宽度}
    :param border: 是否输出 = 边框行
    :return: 以换行结尾的字符串
    """
    widths = column_widths(headers, rows, caps)
    header_line = format_row(headers, widths, delim)
    lines = [header_line]
    if border:
        border_line = '=' * len(header_line)
        lines = [border_line, header_line, border_line]
    lines.extend(format_row(row, widths, delim) for row in rows)
    if border:
        lines.append(lines[0])
    return '\n'.join(lines) + '\n'


def to_csv_string(headers, rows, delim=',', quote_all=False):
    """CSV文本：包含分隔符或引号的字段用引号包裹，引号加倍"""
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delim, lineterminator='\n',
                        quoting=csv.QUOTE_ALL if quote_all else csv.QUOTE_MINIMAL)
    if headers:
        writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue()


def summary_caps():
    return {
        'App Name': APP_NAME_MAX_LEN,
        'Unsupported Execs': UNSUPPORTED_OPS_MAX_LEN,
        'Unsupported Expressions': UNSUPPORTED_OPS_MAX_LEN,
    }


def per_sql_caps(max_desc_len):
    return {'App Name': APP_NAME_MAX_LEN, 'SQL Description': max_desc_len}


# ---------- 文件输出 ----------

class ReportWriter:
    """评估结果文件输出"""

    def __init__(self, config):
        self.config = config
        self.output_dir = os.path.join(config.output_directory, OUTPUT_SUBDIR)

    def path_of(self, suffix):
        return os.path.join(self.output_dir, FILE_PREFIX + suffix)

    def _write(self, suffix, content):
        file_path = self.path_of(suffix)
        with open(file_path, 'w', encoding='utf-8', newline='') as f:
            f.write(content)
        logger.debug("已写入 %s", file_path)
        return file_path

    def write_all(self, summaries, tracker):
        """
        输出全部报告文件
        :param summaries: 已估算频率的 AggregateSummary 列表
        :param tracker: StatusTracker
        :return: 文本摘要表格（用于打印到控制台）
        """
        os.makedirs(self.output_dir, exist_ok=True)
        config = self.config
        rows = sort_summaries(summaries, config.order, config.limit)

        tag_names = cluster_tag_names(rows)
        self._write('.csv', to_csv_string(
            detailed_headers(config.report_read_schema, tag_names),
            [detailed_values(s, config.report_read_schema, tag_names) for s in rows]))

        text = format_table(SUMMARY_HEADERS, [summary_values(s) for s in rows], summary_caps())
        self._write('.log', text)

        if config.per_sql:
            per_sql_rows = sort_per_sql(
                [row for s in summaries for row in s.per_sql], config.order, config.limit)
            self._write('_persql.csv', to_csv_string(
                PER_SQL_HEADERS, [per_sql_values(r) for r in per_sql_rows]))
            self._write('_persql.log', format_table(
                PER_SQL_HEADERS, [per_sql_values(r) for r in per_sql_rows],
                per_sql_caps(config.max_sql_desc_length)))

        operators = [op for s in sorted(summaries, key=lambda s: s.app_id)
                     for op in s.unsupported_operators]
        self._write('_unsupportedOperators.csv', to_csv_string(
            UNSUPPORTED_OPERATORS_HEADERS,
            [[op.app_id, op.unsupported_type, op.details, op.notes] for op in operators],
            quote_all=True))

        if config.ml_functions:
            self._write('_mlfunctions_totalduration.csv', to_csv_string(
                ML_FUNCTION_HEADERS,
                [[s.app_id, name, str(duration)]
                 for s in sorted(summaries, key=lambda s: s.app_id)
                 for name, duration in s.ml_function_durations]))

        self._write('_status.csv', to_csv_string(
            STATUS_HEADERS,
            [[r.path, r.outcome.value, r.detail] for r in tracker.records()]))

        print(f"评估结果已写入: {self.output_dir}")
        return text
