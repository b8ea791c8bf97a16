"""
执行计划节点数据模型
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set


class OperatorKind(Enum):
    """物理算子的规范名称，节点名称在解析时一次性解析为该枚举"""
    FILE_SOURCE_SCAN = 'FileSourceScanExec'
    BATCH_SCAN = 'BatchScanExec'
    RDD_SCAN = 'RDDScanExec'
    IN_MEMORY_TABLE_SCAN = 'InMemoryTableScanExec'
    LOCAL_TABLE_SCAN = 'LocalTableScanExec'
    HIVE_TABLE_SCAN = 'HiveTableScanExec'
    ROW_DATA_SOURCE_SCAN = 'RowDataSourceScanExec'
    FILTER = 'FilterExec'
    PROJECT = 'ProjectExec'
    HASH_AGGREGATE = 'HashAggregateExec'
    OBJECT_HASH_AGGREGATE = 'ObjectHashAggregateExec'
    SORT_AGGREGATE = 'SortAggregateExec'
    SORT = 'SortExec'
    UNION = 'UnionExec'
    COALESCE = 'CoalesceExec'
    COLLECT_LIMIT = 'CollectLimitExec'
    GLOBAL_LIMIT = 'GlobalLimitExec'
    LOCAL_LIMIT = 'LocalLimitExec'
    TAKE_ORDERED_AND_PROJECT = 'TakeOrderedAndProjectExec'
    EXPAND = 'ExpandExec'
    GENERATE = 'GenerateExec'
    RANGE = 'RangeExec'
    SAMPLE = 'SampleExec'
    WINDOW = 'WindowExec'
    SHUFFLE_EXCHANGE = 'ShuffleExchangeExec'
    BROADCAST_EXCHANGE = 'BroadcastExchangeExec'
    BROADCAST_HASH_JOIN = 'BroadcastHashJoinExec'
    SORT_MERGE_JOIN = 'SortMergeJoinExec'
    SHUFFLED_HASH_JOIN = 'ShuffledHashJoinExec'
    BROADCAST_NESTED_LOOP_JOIN = 'BroadcastNestedLoopJoinExec'
    CARTESIAN_PRODUCT = 'CartesianProductExec'
    DATA_WRITING_COMMAND = 'DataWritingCommandExec'
    EXECUTED_COMMAND = 'ExecutedCommandExec'
    SUBQUERY_BROADCAST = 'SubqueryBroadcastExec'
    SERIALIZE_FROM_OBJECT = 'SerializeFromObjectExec'
    DESERIALIZE_TO_OBJECT = 'DeserializeToObjectExec'
    MAP_ELEMENTS = 'MapElementsExec'
    MAP_PARTITIONS = 'MapPartitionsExec'
    APPEND_COLUMNS = 'AppendColumnsExec'
    BATCH_EVAL_PYTHON = 'BatchEvalPythonExec'
    ARROW_EVAL_PYTHON = 'ArrowEvalPythonExec'
    AGGREGATE_IN_PANDAS = 'AggregateInPandasExec'
    FLAT_MAP_GROUPS_IN_PANDAS = 'FlatMapGroupsInPandasExec'
    FLAT_MAP_COGROUPS_IN_PANDAS = 'FlatMapCoGroupsInPandasExec'
    MAP_IN_PANDAS = 'MapInPandasExec'
    WINDOW_IN_PANDAS = 'WindowInPandasExec'
    CUSTOM_SHUFFLE_READER = 'CustomShuffleReaderExec'
    AQE_SHUFFLE_READ = 'AQEShuffleReadExec'
    # 以下为包装节点，不参与评分
    COLUMNAR_TO_ROW = 'ColumnarToRowExec'
    WHOLE_STAGE_CODEGEN = 'WholeStageCodegenExec'
    INPUT_ADAPTER = 'InputAdapterExec'
    ADAPTIVE_SPARK_PLAN = 'AdaptiveSparkPlanExec'
    QUERY_STAGE = 'QueryStageExec'
    REUSED_EXCHANGE = 'ReusedExchangeExec'
    SUBQUERY = 'SubqueryExec'
    REUSED_SUBQUERY = 'ReusedSubqueryExec'
    UNKNOWN = 'Unknown'

    @classmethod
    def from_node_name(cls, node_name):
        """
        将Spark计划中的节点名称解析为规范算子
        :param node_name: 节点名称，如 "Scan parquet default.t1"、"WholeStageCodegen (1)"
        :return: OperatorKind
        """
        name = (node_name or '').strip()
        if not name:
            return cls.UNKNOWN

        if name.startswith('WholeStageCodegen'):
            return cls.WHOLE_STAGE_CODEGEN
        if name.startswith('Scan ') or name.startswith('FileScan') or name == 'Scan':
            if 'ExistingRDD' in name:
                return cls.RDD_SCAN
            if 'In-memory table' in name:
                return cls.IN_MEMORY_TABLE_SCAN
            if 'JDBCRelation' in name:
                return cls.ROW_DATA_SOURCE_SCAN
            if name.lower().startswith('scan hive'):
                return cls.HIVE_TABLE_SCAN
            if 'OneRowRelation' in name:
                return cls.LOCAL_TABLE_SCAN
            return cls.FILE_SOURCE_SCAN
        if name.startswith('BatchScan'):
            return cls.BATCH_SCAN
        if name.startswith('Execute '):
            if any(cmd in name for cmd in _WRITE_COMMANDS):
                return cls.DATA_WRITING_COMMAND
            return cls.EXECUTED_COMMAND
        if name.endswith('QueryStage'):
            return cls.QUERY_STAGE

        head = name.split()[0]
        alias = _NODE_NAME_ALIASES.get(head)
        if alias is not None:
            return alias
        try:
            return cls(head + 'Exec')
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_transparent(self):
        """包装节点：不单独评分，只传递子节点"""
        return self in _TRANSPARENT

    @property
    def is_scan(self):
        return self in _SCANS

    @property
    def is_join(self):
        return self in _JOINS


_WRITE_COMMANDS = (
    'InsertIntoHadoopFsRelationCommand',
    'CreateDataSourceTableAsSelectCommand',
    'InsertIntoHiveTable',
    'CreateHiveTableAsSelectCommand',
)

_NODE_NAME_ALIASES = {
    'Exchange': OperatorKind.SHUFFLE_EXCHANGE,
    'ColumnarToRow': OperatorKind.COLUMNAR_TO_ROW,
    'InputAdapter': OperatorKind.INPUT_ADAPTER,
    'AdaptiveSparkPlan': OperatorKind.ADAPTIVE_SPARK_PLAN,
    'ReusedExchange': OperatorKind.REUSED_EXCHANGE,
    'Subquery': OperatorKind.SUBQUERY,
    'ReusedSubquery': OperatorKind.REUSED_SUBQUERY,
    'AQEShuffleRead': OperatorKind.AQE_SHUFFLE_READ,
    'CustomShuffleReader': OperatorKind.CUSTOM_SHUFFLE_READER,
    'LocalTableScan': OperatorKind.LOCAL_TABLE_SCAN,
}

_TRANSPARENT = frozenset([
    OperatorKind.COLUMNAR_TO_ROW,
    OperatorKind.WHOLE_STAGE_CODEGEN,
    OperatorKind.INPUT_ADAPTER,
    OperatorKind.ADAPTIVE_SPARK_PLAN,
    OperatorKind.QUERY_STAGE,
    OperatorKind.REUSED_EXCHANGE,
    OperatorKind.SUBQUERY,
    OperatorKind.REUSED_SUBQUERY,
])

_SCANS = frozenset([
    OperatorKind.FILE_SOURCE_SCAN,
    OperatorKind.BATCH_SCAN,
    OperatorKind.RDD_SCAN,
    OperatorKind.IN_MEMORY_TABLE_SCAN,
    OperatorKind.LOCAL_TABLE_SCAN,
    OperatorKind.HIVE_TABLE_SCAN,
    OperatorKind.ROW_DATA_SOURCE_SCAN,
])

_JOINS = frozenset([
    OperatorKind.BROADCAST_HASH_JOIN,
    OperatorKind.SORT_MERGE_JOIN,
    OperatorKind.SHUFFLED_HASH_JOIN,
    OperatorKind.BROADCAST_NESTED_LOOP_JOIN,
    OperatorKind.CARTESIAN_PRODUCT,
])


@dataclass
class ExpressionNode:
    """表达式节点（函数或运算符，名称统一小写）"""
    name: str
    children: List['ExpressionNode'] = field(default_factory=list)


@dataclass
class ExecNode:
    """物理算子节点"""
    name: str
    operator: OperatorKind
    simple_string: str = ''
    children: List['ExecNode'] = field(default_factory=list)
    expressions: List[ExpressionNode] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)
    accumulator_ids: Set[int] = field(default_factory=set)
    node_id: Optional[int] = None
    cluster_id: Optional[int] = None

    @property
    def exec_name(self):
        """规范算子名，未知算子返回原始节点名"""
        if self.operator is OperatorKind.UNKNOWN:
            return self.name.strip()
        return self.operator.value

    @property
    def display_name(self):
        """输出中使用的短名称，如 Filter、Scan"""
        name = self.name.strip()
        if self.operator.is_scan:
            return name.split()[0] if name else 'Scan'
        if self.operator is OperatorKind.DATA_WRITING_COMMAND:
            return 'DataWritingCommand'
        return name

    def walk(self):
        """前序遍历当前节点及所有子孙节点"""
        yield self
        for child in self.children:
            yield from child.walk()
