"""
Spark Qualification Tool - 数据模型
"""

from .app_model import (
    Application, Job, Stage, SqlExecution, ReadSchemaEntry,
    WriteOperation, MlFunctionCall, ClusterTagSet,
)
from .plan_node import OperatorKind, ExecNode, ExpressionNode
from .summary import (
    Outcome, Recommendation, AggregateSummary, PerSqlSummary,
    UnsupportedOperator, StatusRecord,
)

__all__ = [
    'Application', 'Job', 'Stage', 'SqlExecution', 'ReadSchemaEntry',
    'WriteOperation', 'MlFunctionCall', 'ClusterTagSet',
    'OperatorKind', 'ExecNode', 'ExpressionNode',
    'Outcome', 'Recommendation', 'AggregateSummary', 'PerSqlSummary',
    'UnsupportedOperator', 'StatusRecord',
]
