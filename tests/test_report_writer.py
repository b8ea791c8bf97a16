"""
报告输出与状态统计单元测试
"""

import csv
import dataclasses
import io
import os
import shutil
import tempfile
import unittest

import eventlog_fixtures as fx
from models.summary import Outcome, UnsupportedOperator
from qualification.config_loader import QualConfig
from qualification.report_writer import (
    DETAILED_HEADERS, ReportWriter, detailed_headers, detailed_values, format_row,
    format_table, sort_per_sql, sort_summaries, to_csv_string, truncate,
)
from qualification.status_tracker import StatusTracker

FIRST_APP = 'local-1622043423018'
SECOND_APP = 'local-1623281204390'


class TestSorting(unittest.TestCase):
    """排序测试"""

    def setUp(self):
        self.summaries = [fx.make_summary(FIRST_APP, 1.5), fx.make_summary(SECOND_APP, 2.0)]

    def test_desc(self):
        rows = sort_summaries(self.summaries, 'desc')
        self.assertEqual([s.app_id for s in rows], [SECOND_APP, FIRST_APP])

    def test_asc(self):
        rows = sort_summaries(self.summaries, 'asc')
        self.assertEqual([s.app_id for s in rows], [FIRST_APP, SECOND_APP])

    def test_limit(self):
        rows = sort_summaries(self.summaries, 'desc', limit=1)
        self.assertEqual([s.app_id for s in rows], [SECOND_APP])

    def test_not_available_sorts_as_zero(self):
        rows = sort_summaries(self.summaries + [fx.make_summary('local-1', None)], 'asc')
        self.assertEqual(rows[0].app_id, 'local-1')

    def test_per_sql(self):
        rows = sort_per_sql([fx.make_per_sql(FIRST_APP, 0, 1.2), fx.make_per_sql(FIRST_APP, 1, 4.0)])
        self.assertEqual([r.sql_id for r in rows], [1, 0])


class TestTables(unittest.TestCase):
    """表格格式化测试"""

    def test_format_table(self):
        text = format_table(['Name', 'Value'], [['a', '1'], ['bbbbbb', '22']])
        lines = text.splitlines()

        self.assertEqual(len(lines), 4 + 2)
        self.assertEqual(lines[0], '=' * len(lines[1]))
        self.assertEqual(lines[1], '|  Name|Value|')
        self.assertEqual(lines[3], '|     a|    1|')
        self.assertEqual(lines[-1], lines[0])

    def test_borderless_table(self):
        text = format_table(['A'], [['x']], border=False)
        self.assertEqual(text, '|A|\n|x|\n')

    def test_truncate(self):
        self.assertEqual(truncate('abcdefghij', 6), 'abc...')
        self.assertEqual(truncate('abc', 6), 'abc')

        text = format_table(['Unsupported Execs'], [['x' * 40]], {'Unsupported Execs': 25})
        self.assertIn('x' * 22 + '...', text)

    def test_plain_row(self):
        self.assertEqual(format_row(['a', 'b'], delim='|', pretty=False), 'a|b')

    def test_csv_escaping(self):
        """测试分隔符和引号的转义"""
        rows = [['x,y', 'say "hi"', 'plain']]
        content = to_csv_string(['a', 'b', 'c'], rows)

        self.assertEqual(content.splitlines()[1], '"x,y","say ""hi""",plain')
        parsed = list(csv.reader(io.StringIO(content)))
        self.assertEqual(parsed, [['a', 'b', 'c']] + rows)

    def test_detailed_columns(self):
        """测试详细CSV的列：集群标签在 Read Schema 之前"""
        summary = fx.make_summary(FIRST_APP, 2.0, cluster_tags=[('ClusterId', 'c-1')])
        headers = detailed_headers(True, ['ClusterId'])
        values = detailed_values(summary, True, ['ClusterId'])

        self.assertEqual(len(DETAILED_HEADERS), 26)
        self.assertEqual(headers[-2:], ['ClusterId', 'Read Schema'])
        self.assertEqual(len(values), len(headers))
        self.assertEqual(values[-2], 'c-1')
        self.assertEqual(values[3], '2.00')

    def test_not_available_speedup(self):
        values = detailed_values(fx.make_summary(FIRST_APP, None))
        self.assertEqual(values[3], 'N/A')


class TestReportWriter(unittest.TestCase):
    """报告文件输出测试"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.tracker = StatusTracker()
        self.tracker.record('/logs/b', Outcome.SUCCESS)
        self.tracker.record('/logs/a', Outcome.FAILURE, '读取文件失败')

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def _write(self, summaries, **overrides):
        config = QualConfig({}, dict(output_directory=self.temp_dir, **overrides))
        writer = ReportWriter(config)
        return writer, writer.write_all(summaries, self.tracker)

    def _read(self, writer, suffix):
        with open(writer.path_of(suffix), encoding='utf-8') as f:
            return f.read()

    def test_output_files(self):
        """测试输出文件与行数限制"""
        summaries = [
            fx.make_summary(FIRST_APP, 1.5, per_sql=[fx.make_per_sql(FIRST_APP, 0, 1.5)]),
            fx.make_summary(SECOND_APP, 2.0, per_sql=[fx.make_per_sql(SECOND_APP, 0, 2.0)]),
            fx.make_summary('local-3', 3.0, unsupported_operators=[
                UnsupportedOperator('local-3', 'Expression', 'udf', 'UDF')]),
        ]
        writer, text = self._write(summaries, limit=2, per_sql=True)

        self.assertTrue(writer.output_dir.endswith('spark_qualification_output'))
        self.assertEqual(len(text.splitlines()), 4 + 2)
        self.assertEqual(self._read(writer, '.log'), text)

        detailed = list(csv.reader(io.StringIO(self._read(writer, '.csv'))))
        self.assertEqual(detailed[0], DETAILED_HEADERS)
        self.assertEqual([row[1] for row in detailed[1:]], ['local-3', SECOND_APP])

        per_sql = list(csv.reader(io.StringIO(self._read(writer, '_persql.csv'))))
        self.assertEqual([row[1] for row in per_sql[1:]], [SECOND_APP, FIRST_APP])
        self.assertEqual(len(self._read(writer, '_persql.log').splitlines()), 4 + 2)

        operators = self._read(writer, '_unsupportedOperators.csv').splitlines()
        self.assertEqual(operators[0], '"App ID","Unsupported Type","Details","Notes"')
        self.assertEqual(operators[1], '"local-3","Expression","udf","UDF"')

        status = list(csv.reader(io.StringIO(self._read(writer, '_status.csv'))))
        self.assertEqual(status, [
            ['Event Log', 'Status', 'Description'],
            ['/logs/a', 'FAILURE', '读取文件失败'],
            ['/logs/b', 'SUCCESS', ''],
        ])

    def test_multiline_description(self):
        """测试多行SQL描述：文本表格中转义，CSV保持原值"""
        description = 'SELECT a\nFROM t\tx\nWHERE b > 1'
        per_sql = [fx.make_per_sql(FIRST_APP, 0, 2.0, description=description)]
        writer, _ = self._write([fx.make_summary(FIRST_APP, 2.0, per_sql=per_sql)], per_sql=True)

        lines = self._read(writer, '_persql.log').splitlines()
        self.assertEqual(len(lines), 4 + 1)
        self.assertEqual(len({len(line) for line in lines}), 1)
        self.assertIn('SELECT a\\nFROM t\\tx\\nWHERE b > 1', lines[3])

        rows = list(csv.reader(io.StringIO(self._read(writer, '_persql.csv'))))
        self.assertEqual(rows[1][3], description)

    def test_no_per_sql(self):
        writer, _ = self._write([fx.make_summary(FIRST_APP, 1.5)])
        self.assertFalse(os.path.exists(writer.path_of('_persql.csv')))
        self.assertFalse(os.path.exists(writer.path_of('_mlfunctions_totalduration.csv')))

    def test_cluster_tag_columns(self):
        summaries = [
            fx.make_summary(FIRST_APP, 1.5, cluster_tags=[('JobId', '7'), ('ClusterId', 'c-1')]),
            fx.make_summary(SECOND_APP, 2.0),
        ]
        writer, _ = self._write(summaries, report_read_schema=True)
        detailed = list(csv.reader(io.StringIO(self._read(writer, '.csv'))))

        self.assertEqual(detailed[0][-3:], ['ClusterId', 'JobId', 'Read Schema'])
        self.assertEqual(detailed[2][-3:-1], ['c-1', '7'])
        self.assertEqual(detailed[1][-3:-1], ['', ''])

    def test_ml_functions_file(self):
        summary = fx.make_summary(FIRST_APP, 1.5)
        summary = dataclasses.replace(summary, ml_function_durations=(('PCA', 500),))
        writer, _ = self._write([summary], ml_functions=True)

        rows = list(csv.reader(io.StringIO(self._read(writer, '_mlfunctions_totalduration.csv'))))
        self.assertEqual(rows, [['App ID', 'ML Function Name', 'Total Duration'],
                                [FIRST_APP, 'PCA', '500']])


class TestStatusTracker(unittest.TestCase):
    """状态统计测试"""

    def test_counts(self):
        tracker = StatusTracker()
        tracker.record('/logs/app-1', Outcome.SUCCESS)
        tracker.record('/logs/app-2', Outcome.UNKNOWN, 'GPU日志')

        self.assertEqual(tracker.counts(), (1, 0, 1))
        self.assertFalse(tracker.all_failed())
        self.assertEqual([r.path for r in tracker.records()], ['/logs/app-1', '/logs/app-2'])

    def test_all_failed(self):
        tracker = StatusTracker()
        self.assertFalse(tracker.all_failed())
        tracker.record('/logs/app-1', Outcome.FAILURE, 'boom')
        self.assertTrue(tracker.all_failed())


if __name__ == '__main__':
    unittest.main()
