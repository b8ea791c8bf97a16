"""
评估结果数据模型（创建后只读）
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class Outcome(Enum):
    """单个EventLog的处理结果"""
    SUCCESS = 'SUCCESS'
    FAILURE = 'FAILURE'
    UNKNOWN = 'UNKNOWN'


class Recommendation(Enum):
    """推荐等级"""
    STRONGLY_RECOMMENDED = 'Strongly Recommended'
    RECOMMENDED = 'Recommended'
    NOT_RECOMMENDED = 'Not Recommended'
    NOT_APPLICABLE = 'Not Applicable'


@dataclass(frozen=True)
class UnsupportedOperator:
    """不支持的算子/表达式/读写格式"""
    app_id: str
    unsupported_type: str
    details: str
    notes: str = ''


@dataclass(frozen=True)
class PerSqlSummary:
    """单条SQL执行的评估结果"""
    app_name: str
    app_id: str
    sql_id: int
    description: str
    sql_dataframe_duration: int
    gpu_opportunity: int
    estimated_gpu_duration: float
    estimated_gpu_speedup: Optional[float]
    estimated_gpu_time_saved: float
    recommendation: Recommendation
    sql_task_duration: int = 0
    supported_task_duration: int = 0
    unsupported_task_duration: int = 0
    task_speedup_factor: float = 1.0
    duration_estimated: bool = False


@dataclass(frozen=True)
class AggregateSummary:
    """应用级评估结果"""
    app_name: str
    app_id: str
    recommendation: Recommendation
    estimated_gpu_speedup: Optional[float]
    estimated_gpu_duration: float
    estimated_gpu_time_saved: float
    sql_dataframe_duration: int
    sql_dataframe_task_duration: int
    app_duration: int
    gpu_opportunity: int
    executor_cpu_percent: float
    failed_sql_ids: str = ''
    read_file_format_and_types_not_supported: str = ''
    write_data_format: str = ''
    complex_types: str = ''
    nested_complex_types: str = ''
    potential_problems: str = ''
    longest_sql_duration: int = 0
    non_sql_task_duration_plus_overhead: int = 0
    unsupported_task_duration: int = 0
    supported_sql_task_duration: int = 0
    task_speedup_factor: float = 1.0
    end_duration_estimated: bool = False
    unsupported_execs: str = ''
    unsupported_exprs: str = ''
    estimated_frequency: int = 30
    read_schema: str = ''
    cluster_tags: Tuple[Tuple[str, str], ...] = ()
    ml_function_durations: Tuple[Tuple[str, int], ...] = ()
    start_time: int = 0
    per_sql: Tuple[PerSqlSummary, ...] = field(default_factory=tuple)
    unsupported_operators: Tuple[UnsupportedOperator, ...] = field(default_factory=tuple)

    @property
    def cluster_tag_map(self):
        return dict(self.cluster_tags)


@dataclass(frozen=True)
class StatusRecord:
    """单个EventLog的处理状态"""
    path: str
    outcome: Outcome
    detail: str = ''
