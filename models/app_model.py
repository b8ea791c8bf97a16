"""
应用模型 - 由EventLog重放构建的应用、Job、Stage、SQL执行等实体
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from models.plan_node import ExecNode


@dataclass
class Job:
    """Job实体"""
    job_id: int
    stage_ids: List[int] = field(default_factory=list)
    sql_id: Optional[int] = None
    submission_time: Optional[int] = None
    completion_time: Optional[int] = None
    failed: bool = False


@dataclass
class Stage:
    """Stage实体（多次attempt的Task指标累加到同一Stage）"""
    stage_id: int
    name: str = ''
    details: str = ''
    num_tasks: int = 0
    task_duration: int = 0
    executor_run_time: int = 0
    executor_cpu_time: float = 0.0  # 毫秒，由纳秒换算
    submission_time: Optional[int] = None
    completion_time: Optional[int] = None
    accumulator_ids: Set[int] = field(default_factory=set)
    failed: bool = False
    has_tasks: bool = False

    @property
    def wall_duration(self):
        """Stage墙钟时长（毫秒）"""
        if self.submission_time is None or self.completion_time is None:
            return 0
        return max(0, self.completion_time - self.submission_time)


@dataclass
class SqlExecution:
    """SQL执行实体"""
    sql_id: int
    description: str = ''
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    duration_estimated: bool = False
    plan: Optional[ExecNode] = None
    plan_description: str = ''
    stage_ids: List[int] = field(default_factory=list)
    job_ids: List[int] = field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def duration(self):
        """SQL墙钟时长（毫秒），不会为负"""
        if self.start_time is None or self.end_time is None:
            return 0
        return max(0, self.end_time - self.start_time)

    @property
    def failed(self):
        return bool(self.error_message)


@dataclass
class ReadSchemaEntry:
    """扫描节点读取的数据格式与Schema"""
    format: str
    schema: str
    fields: List[Tuple[str, str]] = field(default_factory=list)
    sql_id: Optional[int] = None


@dataclass
class WriteOperation:
    """写入命令"""
    sql_id: int
    format: str
    command: str = ''


@dataclass
class MlFunctionCall:
    """包含Spark ML调用栈的Stage"""
    stage_id: int
    ml_ops: Tuple[str, ...]
    duration: int


class ClusterTagSet(dict):
    """集群标签：标签名 -> 值，只包含能解析到的标签"""


@dataclass
class Application:
    """单个Spark应用的完整模型"""
    app_id: Optional[str] = None
    app_name: str = ''
    user: str = ''
    spark_version: str = ''
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    end_time_estimated: bool = False
    jobs: Dict[int, Job] = field(default_factory=dict)
    stages: Dict[int, Stage] = field(default_factory=dict)
    sql_executions: Dict[int, SqlExecution] = field(default_factory=dict)
    read_schemas: List[ReadSchemaEntry] = field(default_factory=list)
    write_operations: List[WriteOperation] = field(default_factory=list)
    cluster_tags: ClusterTagSet = field(default_factory=ClusterTagSet)
    ml_function_calls: List[MlFunctionCall] = field(default_factory=list)
    potential_problems: List[str] = field(default_factory=list)
    spark_properties: Dict[str, str] = field(default_factory=dict)
    malformed_records: int = 0
    truncated: bool = False

    @property
    def duration(self):
        """应用时长（毫秒）"""
        if self.start_time is None or self.end_time is None:
            return 0
        return max(0, self.end_time - self.start_time)

    def add_potential_problem(self, problem):
        """记录潜在问题，保持首次出现顺序"""
        if problem not in self.potential_problems:
            self.potential_problems.append(problem)
