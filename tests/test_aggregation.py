"""
汇总计算单元测试
"""

import unittest

import eventlog_fixtures as fx
from models.summary import Recommendation
from qualification.aggregation import (
    AggregationEngine, assign_frequencies, frequency_key, ml_function_name,
)
from qualification.config_loader import QualConfig
from qualification.event_parser import EventLogParser
from qualification.metrics_calculator import MetricsCalculator
from qualification.plugin_type_checker import PluginTypeChecker

DAY_MS = 24 * 60 * 60 * 1000


def summarize(events, ml_functions=False):
    app, _, _ = EventLogParser.ingest(fx.to_lines(events), ml_functions)
    return AggregationEngine(TestAggregationEngine.checker, QualConfig({})).summarize(app)


class TestAggregationEngine(unittest.TestCase):
    """应用级与SQL级评估测试"""

    checker = PluginTypeChecker()

    def assert_invariants(self, summary):
        self.assertLessEqual(summary.gpu_opportunity, summary.sql_dataframe_duration)
        self.assertLessEqual(summary.sql_dataframe_duration, summary.app_duration)
        self.assertLessEqual(summary.estimated_gpu_duration, summary.app_duration)
        self.assertEqual(summary.supported_sql_task_duration + summary.unsupported_task_duration,
                         summary.sql_dataframe_task_duration)

    def test_supported_sql(self):
        """测试全部支持的SQL"""
        summary = summarize(fx.simple_app_events())
        self.assert_invariants(summary)

        self.assertEqual(summary.app_duration, 10000)
        self.assertEqual(summary.sql_dataframe_duration, 6000)
        self.assertEqual(summary.sql_dataframe_task_duration, 3000)
        self.assertEqual(summary.gpu_opportunity, 6000)
        self.assertAlmostEqual(summary.estimated_gpu_duration, 6000.0)
        self.assertAlmostEqual(summary.estimated_gpu_speedup, 10000 / 6000)
        self.assertAlmostEqual(summary.estimated_gpu_time_saved, 4000.0)
        self.assertIs(summary.recommendation, Recommendation.RECOMMENDED)
        self.assertEqual(summary.task_speedup_factor, 3.0)
        self.assertEqual(summary.executor_cpu_percent, 50.0)
        self.assertEqual(summary.longest_sql_duration, 6000)
        self.assertEqual(summary.non_sql_task_duration_plus_overhead, 4000)
        self.assertEqual(summary.unsupported_execs, '')
        self.assertEqual(summary.unsupported_operators, ())
        self.assertFalse(summary.end_duration_estimated)

        per_sql = summary.per_sql[0]
        self.assertEqual(per_sql.sql_id, 0)
        self.assertAlmostEqual(per_sql.estimated_gpu_speedup, 3.0)
        self.assertIs(per_sql.recommendation, Recommendation.STRONGLY_RECOMMENDED)

    def test_strongly_recommended(self):
        summary = summarize(fx.simple_app_events(sql_start_time=0, sql_end_time=10000))
        self.assert_invariants(summary)
        self.assertAlmostEqual(summary.estimated_gpu_speedup, 3.0)
        self.assertIs(summary.recommendation, Recommendation.STRONGLY_RECOMMENDED)

    def test_udf_unsupported(self):
        """测试UDF使整个Stage不可加速"""
        plan_info = fx.project_plan('my_udf(a#1) AS b#2', accumulator_id=100)
        summary = summarize(fx.simple_app_events(plan_info=plan_info))
        self.assert_invariants(summary)

        self.assertEqual(summary.gpu_opportunity, 0)
        self.assertEqual(summary.unsupported_task_duration, 3000)
        self.assertAlmostEqual(summary.estimated_gpu_speedup, 1.0)
        self.assertIs(summary.recommendation, Recommendation.NOT_RECOMMENDED)
        self.assertEqual(summary.unsupported_execs, 'Project')
        self.assertEqual(summary.unsupported_exprs, 'udf')
        self.assertEqual(summary.potential_problems, 'UDF')
        self.assertEqual([(op.unsupported_type, op.details, op.notes)
                          for op in summary.unsupported_operators],
                         [('Expression', 'udf', 'UDF')])

    def test_timezone_problem_order(self):
        """测试时区函数潜在问题的报告顺序"""
        plan_info = fx.project_plan(
            'id#5, hour(current_timestamp(), Some(UTC)) AS hour(current_timestamp())#12, '
            'second(gettimestamp(timestamp#6, yyyy-MM-dd, Some(UTC)), Some(UTC)) '
            'AS second(to_timestamp(timestamp))#13', accumulator_id=100)
        summary = summarize(fx.simple_app_events(plan_info=plan_info))

        self.assertEqual(summary.potential_problems,
                         'TIMEZONE to_timestamp():TIMEZONE hour():'
                         'TIMEZONE current_timestamp():TIMEZONE second()')

    def test_no_sql(self):
        """测试没有SQL的应用"""
        summary = summarize([fx.app_start(), fx.app_end(5000)])
        self.assertEqual(summary.sql_dataframe_duration, 0)
        self.assertIs(summary.recommendation, Recommendation.NOT_APPLICABLE)
        self.assertEqual(summary.per_sql, ())

    def test_stage_reuse(self):
        """测试Stage被多个SQL的Job引用时只计一次"""
        events = [
            fx.app_start(),
            fx.sql_start(0, 1000, fx.project_plan(accumulator_id=100)),
            fx.job_start(0, [0, 1], 0, 1000),
            fx.task_end(0, 1000, 2000, accumulator_ids=[100]),
            fx.task_end(1, 2000, 4000, accumulator_ids=[101]),
            fx.stage_completed(0, 1000, 2000, [100]),
            fx.stage_completed(1, 2000, 4000, [101]),
            fx.job_end(0, 4000),
            fx.sql_end(0, 4000),
            fx.sql_start(1, 4000, fx.project_plan(accumulator_id=102)),
            fx.job_start(1, [1, 2], 1, 4000),
            fx.task_end(2, 4000, 4500, accumulator_ids=[102]),
            fx.stage_completed(2, 4000, 4500, [102]),
            fx.job_end(1, 8000),
            fx.sql_end(1, 8000),
            fx.app_end(10000),
        ]
        summary = summarize(events)
        self.assert_invariants(summary)

        self.assertEqual(summary.sql_dataframe_task_duration, 3500)
        self.assertEqual(summary.sql_dataframe_duration, 7000)
        self.assertEqual([r.sql_task_duration for r in summary.per_sql], [3000, 500])
        self.assertEqual(summary.non_sql_task_duration_plus_overhead, 3000)

    def test_unmapped_stage_factor(self):
        """测试没有算子映射的Stage按加速因子1.0计"""
        plan_info = fx.project_plan(accumulator_id=999)
        events = fx.simple_app_events(plan_info=plan_info)
        summary = summarize(events)
        # 整条SQL都没有映射时所有算子涉及所有Stage
        self.assertEqual(summary.task_speedup_factor, 3.0)

    def test_read_and_write_formats(self):
        """测试不支持的读取类型与写入格式"""
        plan_info = fx.plan_node(
            'Execute InsertIntoHadoopFsRelationCommand',
            'Execute InsertIntoHadoopFsRelationCommand file:/tmp/o, false, JSON, '
            '[path=file:/tmp/o], Append, [a]',
            children=[fx.plan_node('Scan json default.t', 'FileScan json default.t[a#1,b#2]',
                                   metadata={'Format': 'JSON',
                                             'ReadSchema': 'struct<a:int,b:bigint,c:array<string>>'})])
        summary = summarize(fx.simple_app_events(plan_info=plan_info))
        self.assert_invariants(summary)

        self.assertEqual(summary.read_file_format_and_types_not_supported, 'JSON[bigint:int]')
        self.assertEqual(summary.write_data_format, 'JSON')
        self.assertEqual(summary.complex_types, 'array<string>')
        self.assertEqual(summary.nested_complex_types, '')
        self.assertEqual(summary.read_schema, 'struct<a:int,b:bigint,c:array<string>>')
        self.assertEqual(summary.unsupported_execs, 'DataWritingCommand;Scan')
        self.assertEqual([(op.unsupported_type, op.details) for op in summary.unsupported_operators],
                         [('Write', 'JSON'), ('Read', 'JSON')])

    def test_existence_join_wrapper(self):
        """测试包装BroadcastHashJoin的ExistenceJoin按包装类型判断"""
        plan_info = fx.plan_node('WholeStageCodegen (1)', children=[
            fx.plan_node('BroadcastHashJoin',
                         'BroadcastHashJoin [a#1], [b#2], ExistenceJoin(exists#5), BuildRight',
                         accumulator_ids=[100]),
        ])
        summary = summarize(fx.simple_app_events(plan_info=plan_info))
        self.assert_invariants(summary)

        self.assertEqual(summary.unsupported_execs, '')
        self.assertEqual(summary.unsupported_operators, ())
        self.assertEqual(summary.supported_sql_task_duration, 3000)
        self.assertIs(summary.recommendation, Recommendation.RECOMMENDED)

    def test_hive_write_format(self):
        """测试Hive表写入按SerDe识别格式"""
        plan_info = fx.plan_node(
            'Execute InsertIntoHiveTable',
            'Execute InsertIntoHiveTable `default`.`t1`, '
            'org.apache.hadoop.hive.ql.io.orc.OrcSerde, false, false, [a, b]',
            children=[fx.project_plan(accumulator_id=100)])
        summary = summarize(fx.simple_app_events(plan_info=plan_info))

        self.assertEqual(summary.write_data_format, '')
        self.assertEqual(summary.unsupported_execs, '')
        self.assertEqual(summary.unsupported_operators, ())

    def test_failed_sql_ids(self):
        events = [fx.app_start()]
        events += fx.sql_query_events(0, 0, 0, 1000, 2000)
        events += fx.sql_query_events(1, 1, 1, 3000, 4000)
        events += fx.sql_query_events(2, 2, 2, 5000, 6000)
        events[-1] = fx.sql_end(2, 6000, error_message='failed')
        events[8 + 5] = fx.job_end(1, 4000, failed=True)
        events.append(fx.app_end(7000))

        summary = summarize(events)
        self.assertEqual(summary.failed_sql_ids, '1,2')

    def test_ml_functions(self):
        """测试只有ML调用的应用"""
        events = [
            fx.app_start(),
            fx.job_start(0, [0], None, 100, stage_details={
                0: 'org.apache.spark.ml.feature.PCA.fit(PCA.scala:97)'}),
            fx.stage_submitted(0, 100),
            fx.stage_completed(0, 100, 600),
            fx.job_end(0, 600),
            fx.app_end(1000),
        ]
        summary = summarize(events, ml_functions=True)

        self.assertEqual(summary.ml_function_durations, (('PCA', 500),))
        self.assertAlmostEqual(summary.estimated_gpu_time_saved, 300.0)
        self.assertIs(summary.recommendation, Recommendation.RECOMMENDED)

    def test_ml_function_name(self):
        self.assertEqual(ml_function_name(['org.apache.spark.ml.feature.PCA.fit']), 'PCA')
        self.assertEqual(ml_function_name(
            ['ml.dmlc.xgboost4j.scala.spark.XGBoostClassifier.train']), 'XGBoost')
        self.assertEqual(ml_function_name([
            'org.apache.spark.ml.Pipeline.fit',
            'org.apache.spark.ml.clustering.KMeans.fit',
        ], self.checker), 'KMeans')


class TestFrequency(unittest.TestCase):
    """运行频率估算测试"""

    def test_single_run(self):
        summaries = assign_frequencies([fx.make_summary('app-1', 2.0, app_name='adhoc')])
        self.assertEqual(summaries[0].estimated_frequency, 30)

    def test_repeated_runs(self):
        """测试同名作业多次运行"""
        summaries = assign_frequencies([
            fx.make_summary('app-1', 2.0, app_name='Daily ETL 1', start_time=0),
            fx.make_summary('app-2', 2.0, app_name='daily etl 2', start_time=DAY_MS),
            fx.make_summary('app-3', 2.0, app_name='daily etl 3', start_time=2 * DAY_MS),
            fx.make_summary('app-4', 2.0, app_name='other', start_time=0),
        ])
        self.assertEqual([s.estimated_frequency for s in summaries], [45, 45, 45, 30])
        self.assertEqual([s.app_id for s in summaries], ['app-1', 'app-2', 'app-3', 'app-4'])

    def test_short_span(self):
        summaries = assign_frequencies([
            fx.make_summary('app-1', 2.0, app_name='hourly', start_time=0),
            fx.make_summary('app-2', 2.0, app_name='hourly', start_time=3600000),
        ])
        self.assertEqual([s.estimated_frequency for s in summaries], [60, 60])

    def test_job_id_key(self):
        summary = fx.make_summary('app-1', 2.0, app_name='run 1', cluster_tags=[('JobId', '7')])
        self.assertEqual(frequency_key(summary), 'job:7')
        self.assertEqual(frequency_key(fx.make_summary('app-2', 2.0, app_name='Run 12')), 'name:run ')


class TestMetricsCalculator(unittest.TestCase):
    """指标计算器测试"""

    def test_recommendation(self):
        rec = MetricsCalculator.recommendation
        self.assertIs(rec(2.5, 1.3, 2.5), Recommendation.STRONGLY_RECOMMENDED)
        self.assertIs(rec(1.3, 1.3, 2.5), Recommendation.RECOMMENDED)
        self.assertIs(rec(1.29, 1.3, 2.5), Recommendation.NOT_RECOMMENDED)
        self.assertIs(rec(None, 1.3, 2.5), Recommendation.NOT_APPLICABLE)
        self.assertIs(rec(3.0, 1.3, 2.5, applicable=False), Recommendation.NOT_APPLICABLE)

    def test_speedup(self):
        self.assertEqual(MetricsCalculator.calculate_speedup(100, 50), 2.0)
        self.assertIsNone(MetricsCalculator.calculate_speedup(100, 0))
        self.assertEqual(MetricsCalculator.estimate_accelerated_duration(100, 60, 3.0), 60.0)
        self.assertEqual(MetricsCalculator.calculate_time_saved(100, 120), 0.0)

    def test_percent(self):
        self.assertEqual(MetricsCalculator.calculate_percent(1, 3), 33.33)
        self.assertEqual(MetricsCalculator.calculate_percent(1, 0), 0.0)


if __name__ == '__main__':
    unittest.main()
