"""
主程序单元测试
"""

import csv
import os
import shutil
import tempfile
import unittest
from contextlib import redirect_stdout
from io import StringIO

import eventlog_fixtures as fx
from qualify_spark_logs import main, qualify_eventlogs
from qualification.config_loader import QualConfig


class TestMain(unittest.TestCase):
    """命令行入口测试"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.log_dir = os.path.join(self.temp_dir, 'logs')
        self.output_dir = os.path.join(self.temp_dir, 'out')
        os.makedirs(self.log_dir)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def _main(self, *args):
        with redirect_stdout(StringIO()):
            return main(list(args))

    def _status_rows(self):
        path = os.path.join(self.output_dir, 'spark_qualification_output',
                            'spark_qualification_output_status.csv')
        with open(path, encoding='utf-8') as f:
            return list(csv.reader(f))[1:]

    def test_success(self):
        """测试正常评估"""
        fx.write_eventlog(self.log_dir, 'app-1', fx.simple_app_events())
        fx.write_eventlog(self.log_dir, 'app-2.gz', fx.simple_app_events(
            app_id='local-1623281204390'), compress=True)
        fx.write_eventlog(self.log_dir, 'gpu-app', fx.simple_app_events(
            app_id='local-3', spark_properties={'spark.plugins': 'com.nvidia.spark.SQLPlugin'}))
        fx.write_eventlog(self.log_dir, 'app-4.zstd', fx.simple_app_events(
            app_id='local-4'), compress='zstd')

        exit_code = self._main('--output-directory', self.output_dir, '--per-sql', self.log_dir)
        self.assertEqual(exit_code, 0)

        output = os.path.join(self.output_dir, 'spark_qualification_output')
        for suffix in ('.csv', '.log', '_persql.csv', '_persql.log',
                       '_unsupportedOperators.csv', '_status.csv'):
            self.assertTrue(os.path.exists(os.path.join(output, 'spark_qualification_output' + suffix)))

        statuses = {os.path.basename(row[0]): row[1] for row in self._status_rows()}
        self.assertEqual(statuses, {'app-1': 'SUCCESS', 'app-2.gz': 'SUCCESS', 'gpu-app': 'UNKNOWN',
                                    'app-4.zstd': 'SUCCESS'})

    def test_repeated_runs_identical(self):
        """测试重复处理同一批日志输出完全一致"""
        fx.write_eventlog(self.log_dir, 'app-1', fx.simple_app_events())
        fx.write_eventlog(self.log_dir, 'app-2.gz', fx.simple_app_events(
            app_id='local-1623281204390', name='daily job'), compress=True)
        fx.write_eventlog(self.log_dir, 'app-3', fx.simple_app_events(
            app_id='local-3', plan_info=fx.project_plan('my_udf(a#1) AS b#2', accumulator_id=100)))

        outputs = []
        for run in ('first', 'second'):
            output_dir = os.path.join(self.temp_dir, run)
            self.assertEqual(self._main('--output-directory', output_dir, '--per-sql', self.log_dir), 0)
            report_dir = os.path.join(output_dir, 'spark_qualification_output')
            files = {}
            for name in sorted(os.listdir(report_dir)):
                with open(os.path.join(report_dir, name), 'rb') as f:
                    files[name] = f.read()
            outputs.append(files)

        self.assertTrue(outputs[0])
        self.assertEqual(outputs[0], outputs[1])

    def test_application_name_filter(self):
        fx.write_eventlog(self.log_dir, 'app-1', fx.simple_app_events(name='etl job'))
        fx.write_eventlog(self.log_dir, 'app-2', fx.simple_app_events(name='adhoc'))

        exit_code = self._main('--output-directory', self.output_dir,
                               '--application-name', 'etl', self.log_dir)
        self.assertEqual(exit_code, 0)
        self.assertEqual([os.path.basename(row[0]) for row in self._status_rows()], ['app-1'])

    def test_failure_keeps_exit_code(self):
        """测试失败日志默认不影响退出码"""
        missing = os.path.join(self.log_dir, 'missing')
        self.assertEqual(self._main('--output-directory', self.output_dir, missing), 0)
        self.assertEqual(self._status_rows()[0][1], 'FAILURE')

    def test_fail_on_all_failed(self):
        config_path = os.path.join(self.temp_dir, 'config.yaml')
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write('qualification:\n  fail_on_all_failed: true\n')
        bad = os.path.join(self.log_dir, 'app-1.lz4')
        with open(bad, 'wb') as f:
            f.write(b'\x00')

        exit_code = self._main('--config', config_path, '--output-directory', self.output_dir, bad)
        self.assertEqual(exit_code, 1)

    def test_configuration_error(self):
        """测试配置错误在处理日志之前终止"""
        scores = os.path.join(self.temp_dir, 'scores.csv')
        with open(scores, 'w', encoding='utf-8') as f:
            f.write('Operator,Score\nUnionExec,3\n')
        fx.write_eventlog(self.log_dir, 'app-1', fx.simple_app_events())

        self.assertEqual(self._main('--speedup-factor-file', scores,
                                    '--output-directory', self.output_dir, self.log_dir), 1)
        self.assertEqual(self._main('--platform', 'mainframe',
                                    '--output-directory', self.output_dir, self.log_dir), 1)
        self.assertFalse(os.path.exists(self.output_dir))

    def test_process_pool(self):
        """测试多进程处理"""
        for i in range(3):
            fx.write_eventlog(self.log_dir, f'app-{i}', fx.simple_app_events(
                app_id=f'local-{i}', name='daily job', app_start_time=i * 1000))
        config = QualConfig({}, {'num_workers': 2})

        with redirect_stdout(StringIO()):
            summaries, tracker = qualify_eventlogs([self.log_dir], config)

        self.assertEqual([s.app_id for s in summaries], ['local-0', 'local-1', 'local-2'])
        self.assertEqual(tracker.counts(), (3, 0, 0))
        self.assertEqual(tracker.total_sql_executions, 3)
        # 同一作业在不足一天内运行3次
        self.assertEqual([s.estimated_frequency for s in summaries], [90, 90, 90])


if __name__ == '__main__':
    unittest.main()
