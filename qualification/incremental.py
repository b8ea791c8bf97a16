"""
实时评估模块 - 挂在运行中的Spark会话上，逐个事件更新应用模型

事件通过 post() 放入队列，由单个后台线程按到达顺序处理；
读取接口在锁内基于一致的模型计算结果，返回不可变的字符串或数据对象。
"""

import logging
import os
import queue
import threading

from qualification.aggregation import AggregationEngine
from qualification.errors import EnvironmentMismatchError, RecoverableRecordError
from qualification.event_parser import ApplicationState, EventLogParser, SQL_END_SUFFIX, to_int
from qualification.report_writer import (
    FILE_PREFIX, PER_SQL_HEADERS, SUMMARY_HEADERS,
    column_widths, detailed_headers, detailed_values, format_row, format_table,
    per_sql_caps, per_sql_values, summary_caps, summary_values, to_csv_string,
)

logger = logging.getLogger(__name__)

_STOP = object()


class RunningQualificationProcessor:
    """实时评估处理器"""

    def __init__(self, checker, config):
        """
        :param checker: PluginTypeChecker
        :param config: QualConfig（running 段配置滚动输出）
        """
        self.config = config
        self._engine = AggregationEngine(checker, config)
        self._state = ApplicationState(ml_functions=config.ml_functions)
        self._lock = threading.RLock()
        self._queue = queue.Queue()
        self._thread = None
        self.gpu_log = False

        self.output_dir = config.running_output_dir
        self.num_sql_per_file = config.num_sql_queries_per_file
        self.max_num_files = config.max_num_files
        self._file_index = 0
        self._file_rows = []

    # ---------- 事件处理 ----------

    def post(self, event):
        """放入一个事件（JSON字典），由后台线程处理"""
        self._queue.put(event)

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name='qualification-events', daemon=True)
        self._thread.start()

    def stop(self):
        """处理完队列中剩余的事件后停止后台线程"""
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join()
        self._thread = None

    def _run(self):
        while True:
            event = self._queue.get()
            try:
                if event is _STOP:
                    return
                self.process_event(event)
            except Exception:
                logger.exception("处理事件失败，继续处理后续事件")
            finally:
                self._queue.task_done()

    def process_event(self, event):
        """同步处理单个事件"""
        with self._lock:
            if self.gpu_log:
                return
            try:
                EventLogParser.apply_event(event, self._state)
            except RecoverableRecordError as e:
                self._state.app.malformed_records += 1
                logger.debug("跳过无法解析的事件: %s", e)
                return
            except EnvironmentMismatchError as e:
                self.gpu_log = True
                logger.warning("%s", e)
                return

            if self.output_dir and event['Event'].endswith(SQL_END_SUFFIX):
                sql_id = to_int(event.get('executionId'))
                if sql_id is not None and sql_id in self._state.app.sql_executions:
                    self._write_sql(sql_id)

    # ---------- 滚动输出 ----------

    def _file_path(self, index, extension):
        return os.path.join(self.output_dir, f'{FILE_PREFIX}_persql_{index}.{extension}')

    def _write_sql(self, sql_id):
        """写出一条结束的SQL，写满后切换到下一个文件（循环覆盖最早的文件），然后移除该SQL"""
        app = self._state.build()
        if app is None:
            return
        row = per_sql_values(self._engine.summarize_sql(app, sql_id))

        if len(self._file_rows) >= self.num_sql_per_file:
            self._file_index = (self._file_index + 1) % self.max_num_files
            self._file_rows = []
        self._file_rows.append(row)

        os.makedirs(self.output_dir, exist_ok=True)
        with open(self._file_path(self._file_index, 'csv'), 'w', encoding='utf-8', newline='') as f:
            f.write(to_csv_string(PER_SQL_HEADERS, self._file_rows))
        with open(self._file_path(self._file_index, 'log'), 'w', encoding='utf-8') as f:
            f.write(format_table(PER_SQL_HEADERS, self._file_rows,
                                 per_sql_caps(self.config.max_sql_desc_length)))
        self._state.evict_sql(sql_id)

    # ---------- 读取接口 ----------

    def aggregate_stats(self):
        """
        :return: 当前模型的 AggregateSummary，尚未收到 ApplicationStart 时返回 None
        """
        with self._lock:
            if self.gpu_log:
                return None
            app = self._state.build()
            return self._engine.summarize(app) if app is not None else None

    def get_summary(self, delim='|', pretty=True):
        summary = self.aggregate_stats()
        if summary is None:
            return ''
        rows = [summary_values(summary)]
        if pretty:
            return format_table(SUMMARY_HEADERS, rows, summary_caps(), delim, border=False)
        return to_csv_string(SUMMARY_HEADERS, rows, delim)

    def get_detailed(self, delim='|', pretty=True, report_read_schema=False):
        summary = self.aggregate_stats()
        if summary is None:
            return ''
        tag_names = [name for name, _ in summary.cluster_tags]
        headers = detailed_headers(report_read_schema, tag_names)
        rows = [detailed_values(summary, report_read_schema, tag_names)]
        if pretty:
            return format_table(headers, rows, summary_caps(), delim, border=False)
        return to_csv_string(headers, rows, delim)

    def _per_sql_rows(self, sql_id=None):
        with self._lock:
            app = self._state.build()
            if app is None or self.gpu_log:
                return []
            sql_ids = sorted(app.sql_executions) if sql_id is None else [sql_id]
            return [per_sql_values(self._engine.summarize_sql(app, s))
                    for s in sql_ids if s in app.sql_executions]

    def get_per_sql_summary(self, sql_id=None, delim='|', pretty=True, max_desc_len=100):
        """
        单条（或全部）SQL的评估结果
        :param sql_id: SQL ID，None 表示全部
        """
        rows = self._per_sql_rows(sql_id)
        if not rows:
            return ''
        if pretty:
            return format_table(PER_SQL_HEADERS, rows, per_sql_caps(max_desc_len), delim, border=False)
        return to_csv_string(PER_SQL_HEADERS, rows, delim)

    def get_per_sql_text_and_csv(self, sql_id):
        """
        :return: (定宽文本行, CSV行)，SQL不存在时返回 ('', '')
        """
        rows = self._per_sql_rows(sql_id)
        if not rows:
            return '', ''
        caps = per_sql_caps(self.config.max_sql_desc_length)
        text = format_row(rows[0], column_widths(PER_SQL_HEADERS, rows, caps))
        return text, to_csv_string(None, rows).rstrip('\n')

    def get_available_sql_ids(self):
        with self._lock:
            return sorted(self._state.app.sql_executions)

    def evict(self, sql_id):
        """移除已经消费过的SQL执行，限制内存增长"""
        with self._lock:
            return self._state.evict_sql(sql_id)
