"""
算子支持表单元测试
"""

import os
import shutil
import tempfile
import unittest

from qualification.errors import ConfigurationError
from qualification.plugin_type_checker import (
    PluginTypeChecker, base_type_name, normalize_platform,
)


class TestPluginTypeChecker(unittest.TestCase):
    """加速因子与支持情况查询测试"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.checker = PluginTypeChecker()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def _write(self, name, content):
        path = os.path.join(self.temp_dir, name)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        return path

    def test_speedup_factor_override(self):
        """测试自定义加速因子表"""
        path = self._write('scores.csv', 'CPUOperator,Score\nUnionExec,3\n')
        checker = PluginTypeChecker(speedup_factor_file=path)

        self.assertEqual(checker.get_speedup_factor('UnionExec'), 3.0)
        # 表中没有的算子按1.0计
        self.assertEqual(checker.get_speedup_factor('ProjectExec'), 1.0)

    def test_speedup_factor_bad_header(self):
        """测试表头错误"""
        path = self._write('scores.csv', 'Operator,Score\nUnionExec,3\n')
        with self.assertRaises(ConfigurationError):
            PluginTypeChecker(speedup_factor_file=path)

    def test_speedup_factor_column_count(self):
        """测试行的列数与表头不一致"""
        path = self._write('scores.csv', 'CPUOperator,Score\nUnionExec,3,extra\n')
        with self.assertRaises(ConfigurationError):
            PluginTypeChecker(speedup_factor_file=path)

    def test_speedup_factor_not_number(self):
        path = self._write('scores.csv', 'CPUOperator,Score\nUnionExec,fast\n')
        with self.assertRaises(ConfigurationError):
            PluginTypeChecker(speedup_factor_file=path)

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError):
            PluginTypeChecker(speedup_factor_file=os.path.join(self.temp_dir, 'missing.csv'))

    def test_platforms(self):
        """测试平台标识与别名"""
        self.assertEqual(normalize_platform('emr'), 'emr-t4')
        self.assertEqual(normalize_platform('Dataproc'), 'dataproc-t4')
        self.assertEqual(normalize_platform(None), 'onprem')
        with self.assertRaises(ConfigurationError):
            normalize_platform('mainframe')

        # 每个平台都有内置加速因子表
        for platform in ('onprem', 'dataproc-t4', 'dataproc-l4', 'emr-t4', 'emr-a10',
                         'databricks-aws', 'databricks-azure'):
            checker = PluginTypeChecker(platform)
            self.assertGreater(checker.get_speedup_factor('SortExec'), 1.0)

    def test_platform_factors_differ(self):
        onprem = PluginTypeChecker('onprem')
        emr = PluginTypeChecker('emr-t4')
        self.assertNotEqual(onprem.get_speedup_factor('FilterExec'),
                            emr.get_speedup_factor('FilterExec'))

    def test_read_scores(self):
        """测试读取类型得分"""
        score, types = self.checker.score_read_data_types('JSON', 'a:int,b:bigint,c:string')
        self.assertAlmostEqual(score, 1 / 3)
        self.assertEqual(types, {'int', 'bigint'})

        score, types = self.checker.score_read_data_types('parquet', 'struct<a:int,b:decimal(8,2)>')
        self.assertEqual(score, 1.0)
        self.assertEqual(types, set())

        # 未知格式整体不支持
        score, types = self.checker.score_read_data_types('text', 'a:string')
        self.assertEqual(score, 0.0)
        self.assertEqual(types, {'*'})

    def test_read_scores_complex_types(self):
        score, types = self.checker.score_read_data_types('JSON', 'a:map<string,int>,b:string')
        self.assertEqual(score, 0.5)
        self.assertEqual(types, {'map'})

    def test_write_formats(self):
        """测试写入格式"""
        self.assertTrue(self.checker.is_write_format_supported('Parquet'))
        self.assertTrue(self.checker.is_write_format_supported('orc'))
        self.assertFalse(self.checker.is_write_format_supported('JSON'))
        self.assertFalse(self.checker.is_write_format_supported(''))

    def test_exec_support(self):
        self.assertTrue(self.checker.is_exec_supported('ProjectExec'))
        self.assertTrue(self.checker.is_exec_supported('Project'))
        self.assertFalse(self.checker.is_exec_supported('BatchEvalPythonExec'))
        self.assertFalse(self.checker.is_exec_supported('NoSuchExec'))
        self.assertTrue(self.checker.get_exec_notes('RDDScanExec'))

    def test_expr_support(self):
        self.assertTrue(self.checker.is_expr_supported('upper'))
        self.assertTrue(self.checker.is_expr_supported('>'))
        self.assertFalse(self.checker.is_expr_supported('get_json_object'))
        self.assertFalse(self.checker.is_expr_supported('no_such_function'))

    def test_supported_exprs_table(self):
        """测试表达式表同时按类名和SQL函数名索引"""
        exprs = self.checker.get_supported_exprs()
        self.assertEqual(exprs['upper'], 'S')
        self.assertEqual(exprs['ucase'], 'S')
        self.assertEqual(exprs['getjsonobject'], 'NS')

        exprs['getjsonobject'] = 'S'
        self.assertFalse(self.checker.is_expr_supported('get_json_object'))

    def test_join_support(self):
        """测试Join类型，包装型Join只看包装类型"""
        self.assertTrue(self.checker.is_join_supported(
            'BroadcastNestedLoopJoinExec', 'ExistenceJoin(exists#12)'))
        self.assertTrue(self.checker.is_join_supported('SortMergeJoinExec', 'FullOuter'))
        self.assertTrue(self.checker.is_join_supported('SortMergeJoinExec', ''))
        self.assertFalse(self.checker.is_join_supported('SortMergeJoinExec', 'Foo'))

    def test_base_type_name(self):
        self.assertEqual(base_type_name('decimal(8,2)'), 'decimal')
        self.assertEqual(base_type_name('array<string>'), 'array')
        self.assertEqual(base_type_name(' BIGINT '), 'bigint')


if __name__ == '__main__':
    unittest.main()
