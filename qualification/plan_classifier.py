"""
算子分类模块 - 判断执行计划中的算子/表达式在GPU上是否支持
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from models.plan_node import OperatorKind
from models.summary import UnsupportedOperator

UDF_EXPRESSION = 'udf'

# 依赖会话时区的函数，按报告顺序排列
TIMEZONE_FUNCTIONS = (
    'to_timestamp', 'to_date', 'to_unix_timestamp', 'unix_timestamp', 'from_unixtime',
    'from_utc_timestamp', 'to_utc_timestamp', 'date_format', 'hour',
    'current_timestamp', 'current_date', 'now', 'second', 'minute',
)

PYTHON_UDF_OPERATORS = frozenset([
    OperatorKind.BATCH_EVAL_PYTHON,
    OperatorKind.ARROW_EVAL_PYTHON,
])


@dataclass(frozen=True)
class ExecClassification:
    """单个算子的分类结果"""
    exec_name: str
    display_name: str
    supported: bool
    speedup_factor: float
    unsupported_reason: Optional[str] = None
    exec_supported: bool = True
    unsupported_exprs: Tuple[str, ...] = ()
    read_format: str = ''
    unsupported_read_types: Tuple[str, ...] = ()
    write_format: str = ''
    write_supported: bool = True


class PlanClassifier:
    """基于 PluginTypeChecker 的算子分类器"""

    def __init__(self, checker):
        self.checker = checker

    def classify_expression(self, expr_name):
        """
        :return: (是否支持, 加速因子)
        """
        if expr_name == UDF_EXPRESSION:
            return False, 1.0
        return self.checker.is_expr_supported(expr_name), 1.0

    def classify_exec(self, node):
        """
        对单个算子分类，包装节点返回 None
        :param node: ExecNode
        :return: ExecClassification 或 None
        """
        operator = node.operator
        if operator.is_transparent:
            return None

        exec_name = node.exec_name
        display_name = node.display_name
        speedup = self.checker.get_speedup_factor(exec_name)

        if operator is OperatorKind.UNKNOWN:
            return ExecClassification(
                exec_name=exec_name, display_name=display_name, supported=False,
                speedup_factor=1.0, unsupported_reason='未知算子', exec_supported=False)

        unsupported_exprs = tuple(
            expr.name for expr in node.expressions
            if not self.classify_expression(expr.name)[0])

        reasons = []
        if operator.is_join:
            exec_supported = self.checker.is_join_supported(
                exec_name, node.metadata.get('JoinType', ''))
        else:
            exec_supported = self.checker.is_exec_supported(exec_name)
        if not exec_supported:
            reasons.append(self.checker.get_exec_notes(exec_name) or 'Exec not supported')
        if unsupported_exprs:
            reasons.append('Contains unsupported expressions: ' + ';'.join(unsupported_exprs))

        read_format = ''
        unsupported_types = ()
        if operator.is_scan and node.metadata.get('Format'):
            read_format = node.metadata['Format']
            score, types = self.checker.score_read_data_types(
                read_format, node.metadata.get('ReadSchema', ''))
            if score < 1.0 or types:
                unsupported_types = tuple(sorted(types))
                reasons.append(read_issue_text(unsupported_types))

        write_format = ''
        write_supported = True
        if operator is OperatorKind.DATA_WRITING_COMMAND:
            write_format = node.metadata.get('WriteFormat', '')
            if write_format:
                write_supported = self.checker.is_write_format_supported(write_format)
                if not write_supported:
                    reasons.append('Format not supported')

        supported = not reasons
        return ExecClassification(
            exec_name=exec_name,
            display_name=display_name,
            supported=supported,
            speedup_factor=speedup,
            unsupported_reason='; '.join(reasons) if reasons else None,
            exec_supported=exec_supported,
            unsupported_exprs=unsupported_exprs,
            read_format=read_format,
            unsupported_read_types=unsupported_types,
            write_format=write_format,
            write_supported=write_supported,
        )

    def unsupported_operator_rows(self, app_id, classification):
        """
        把不支持的分类结果展开为 unsupportedOperators 输出行
        :return: UnsupportedOperator 列表
        """
        rows = []
        if classification is None or classification.supported:
            return rows
        if not classification.exec_supported:
            rows.append(UnsupportedOperator(
                app_id, 'Exec', classification.display_name,
                self.checker.get_exec_notes(classification.exec_name)
                or 'Exec not supported'))
        for expr in classification.unsupported_exprs:
            notes = 'UDF' if expr == UDF_EXPRESSION else self.checker.get_expr_notes(expr)
            rows.append(UnsupportedOperator(
                app_id, 'Expression', expr, notes or 'Expression not supported'))
        if classification.unsupported_read_types:
            rows.append(UnsupportedOperator(
                app_id, 'Read', classification.read_format.upper(),
                read_issue_text(classification.unsupported_read_types)))
        if not classification.write_supported:
            rows.append(UnsupportedOperator(
                app_id, 'Write', classification.write_format, 'Format not supported'))
        return rows


def read_issue_text(unsupported_types):
    if '*' in unsupported_types:
        return 'Format not supported'
    return 'Types not supported - ' + ':'.join(unsupported_types)


def find_potential_problems(node):
    """
    算子中的潜在问题（UDF、时区相关函数）
    :param node: ExecNode
    :return: 问题标签列表，UDF在前，时区函数按 TIMEZONE_FUNCTIONS 顺序
    """
    names = {expr.name for expr in node.expressions}
    problems = ['UDF'] if UDF_EXPRESSION in names else []
    problems.extend(f'TIMEZONE {name}()' for name in TIMEZONE_FUNCTIONS if name in names)
    if node.operator in PYTHON_UDF_OPERATORS and 'UDF' not in problems:
        problems.append('UDF')
    return problems
