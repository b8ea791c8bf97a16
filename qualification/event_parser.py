"""
事件解析模块 - 重放EventLog构建应用模型

ApplicationState 按事件到达顺序更新模型；build() 在流结束（或实时模式下按需）时
补全缺失的结束时间、建立 Job/SQL/Stage 关联并提取读写格式、潜在问题等派生信息。
"""

import json
import logging
import re
from contextlib import closing

from models.app_model import (
    Application, Job, Stage, SqlExecution, ReadSchemaEntry,
    WriteOperation, MlFunctionCall,
)
from models.plan_node import OperatorKind
from models.summary import Outcome
from qualification.cluster_tags import extract_cluster_tags
from qualification.errors import (
    EnvironmentMismatchError, RecoverableRecordError, TruncatedLogError,
    UnsupportedCodecError,
)
from qualification.event_reader import EventReader
from qualification.plan_classifier import find_potential_problems
from qualification.plan_parser import PlanParser
from qualification.schema_parser import (
    parse_read_schema_for_nested_types, split_schema_fields,
)

logger = logging.getLogger(__name__)

GPU_PLUGIN_CLASS = 'com.nvidia.spark.SQLPlugin'

SQL_START_SUFFIX = 'SQLExecutionStart'
SQL_END_SUFFIX = 'SQLExecutionEnd'
SQL_ADAPTIVE_SUFFIX = 'SQLAdaptiveExecutionUpdate'

RUN_TIME_ACCUMULABLE = 'internal.metrics.executorRunTime'
CPU_TIME_ACCUMULABLE = 'internal.metrics.executorCpuTime'

NESTED_COMPLEX_TYPE = 'NESTED COMPLEX TYPE'

_ML_FRAME_PATTERN = re.compile(
    r'((?:org\.apache\.spark\.ml|ml\.dmlc\.xgboost4j\.scala\.spark)\.[\w.$]+)')


def parse_properties(props):
    """解析属性，兼容列表格式和字典格式"""
    result = {}
    if not props:
        return result
    if isinstance(props, dict):
        # 字典格式: {"key1": "value1", "key2": "value2"}
        for key, value in props.items():
            result[key] = value
    elif isinstance(props, list):
        # 列表格式: [["key1", "value1"], ["key2", "value2"]]
        for item in props:
            if isinstance(item, (list, tuple)) and len(item) >= 2:
                result[item[0]] = item[1]
    return result


def is_gpu_environment(spark_properties):
    """spark.plugins 包含RAPIDS插件且未显式关闭，说明日志来自GPU运行"""
    plugins = str(spark_properties.get('spark.plugins', ''))
    if GPU_PLUGIN_CLASS not in plugins:
        return False
    enabled = str(spark_properties.get('spark.rapids.sql.enabled', 'true')).strip().lower()
    return enabled != 'false'


def to_int(value):
    if value is None:
        return None
    return int(value)


def _accumulable_value(value):
    """Accumulable的Value可能是数字或数字字符串"""
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class ApplicationState:
    """应用状态管理器"""

    def __init__(self, ml_functions=False):
        self.ml_functions = ml_functions
        self.app = Application()
        self.app_started = False
        self.app_end_seen = False
        self.last_timestamp = None

        self.sql_end_seen = set()
        self.stage_fallback = {}  # stage_id -> (executorRunTime, executorCpuTime纳秒)
        self.stage_cpu_ns = {}  # stage_id -> Task累计CPU纳秒

    def observe_time(self, timestamp):
        """记录流中出现过的最大时间戳，用于估算缺失的结束时间"""
        if isinstance(timestamp, (int, float)) and timestamp > 0:
            if self.last_timestamp is None or timestamp > self.last_timestamp:
                self.last_timestamp = int(timestamp)

    def get_stage(self, stage_id, create=False):
        stage = self.app.stages.get(stage_id)
        if stage is None and create:
            stage = Stage(stage_id=stage_id)
            self.app.stages[stage_id] = stage
        return stage

    def evict_sql(self, sql_id):
        """
        移除一条SQL执行及其拥有的Stage和Job
        :return: 是否存在该SQL
        """
        if sql_id not in self.app.sql_executions:
            return False
        owned_stages = self._owned_stages().get(sql_id, [])
        del self.app.sql_executions[sql_id]
        self.sql_end_seen.discard(sql_id)
        for stage_id in owned_stages:
            self.app.stages.pop(stage_id, None)
            self.stage_fallback.pop(stage_id, None)
            self.stage_cpu_ns.pop(stage_id, None)
        for job_id in [j.job_id for j in self.app.jobs.values() if j.sql_id == sql_id]:
            del self.app.jobs[job_id]
        return True

    def _owned_stages(self):
        """
        Stage归属：按Job开始顺序，第一个关联了SQL的Job所属的SQL拥有该Stage
        :return: {sql_id: [stage_id, ...]}
        """
        owner = {}
        owned = {}
        for job in self.app.jobs.values():
            if job.sql_id is None or job.sql_id not in self.app.sql_executions:
                continue
            for stage_id in job.stage_ids:
                if stage_id in owner or stage_id not in self.app.stages:
                    continue
                owner[stage_id] = job.sql_id
                owned.setdefault(job.sql_id, []).append(stage_id)
        return owned

    def build(self):
        """
        补全派生信息并返回应用模型；可重复调用（实时模式下每次读取前调用）
        :return: Application，未出现 ApplicationStart 时返回 None
        """
        if not self.app_started:
            return None
        app = self.app

        if not self.app_end_seen:
            app.end_time = self.last_timestamp
            app.end_time_estimated = True

        for sql_id, sql in app.sql_executions.items():
            if sql_id not in self.sql_end_seen:
                sql.end_time = self.last_timestamp
                sql.duration_estimated = True
            sql.job_ids = [job.job_id for job in app.jobs.values() if job.sql_id == sql_id]
            sql.stage_ids = []

        for sql_id, stage_ids in self._owned_stages().items():
            app.sql_executions[sql_id].stage_ids = stage_ids

        for stage_id, (run_time, cpu_ns) in self.stage_fallback.items():
            stage = app.stages.get(stage_id)
            if stage is not None and not stage.has_tasks:
                stage.task_duration = run_time
                stage.executor_run_time = run_time
                stage.executor_cpu_time = cpu_ns / 1000000.0
        for stage_id, cpu_ns in self.stage_cpu_ns.items():
            stage = app.stages.get(stage_id)
            if stage is not None:
                stage.executor_cpu_time = cpu_ns / 1000000.0

        self._collect_plan_info()
        app.cluster_tags = extract_cluster_tags(app.spark_properties)
        app.ml_function_calls = self._collect_ml_functions() if self.ml_functions else []
        return app

    def _collect_plan_info(self):
        """从执行计划中提取读取Schema、写入格式和潜在问题"""
        app = self.app
        app.read_schemas = []
        app.write_operations = []
        app.potential_problems = []

        for sql_id in sorted(app.sql_executions):
            plan = app.sql_executions[sql_id].plan
            if plan is None:
                continue
            for node in plan.walk():
                if node.operator.is_scan and node.metadata.get('Format'):
                    schema = node.metadata.get('ReadSchema', '')
                    app.read_schemas.append(ReadSchemaEntry(
                        format=node.metadata['Format'],
                        schema=schema,
                        fields=split_schema_fields(schema),
                        sql_id=sql_id,
                    ))
                elif node.operator is OperatorKind.DATA_WRITING_COMMAND:
                    app.write_operations.append(WriteOperation(
                        sql_id=sql_id,
                        format=node.metadata.get('WriteFormat', ''),
                        command=node.simple_string,
                    ))
                for problem in find_potential_problems(node):
                    app.add_potential_problem(problem)

        _, nested = parse_read_schema_for_nested_types(
            [entry.schema for entry in app.read_schemas])
        if nested:
            app.add_potential_problem(NESTED_COMPLEX_TYPE)

    def _collect_ml_functions(self):
        """扫描Stage调用栈中的Spark ML / XGBoost调用"""
        calls = []
        for stage_id in sorted(self.app.stages):
            stage = self.app.stages[stage_id]
            frames = []
            for frame in _ML_FRAME_PATTERN.findall(stage.details or ''):
                if frame not in frames:
                    frames.append(frame)
            if frames:
                calls.append(MlFunctionCall(
                    stage_id=stage_id,
                    ml_ops=tuple(frames),
                    duration=stage.wall_duration,
                ))
        return calls


class EventLogParser:
    """EventLog解析器"""

    @staticmethod
    def parse_file(paths, ml_functions=False):
        """
        解析单个EventLog（可以由多个分片组成）
        :param paths: 文件路径或按顺序排列的分片路径列表
        :param ml_functions: 是否分析Spark ML调用
        :return: (Application 或 None, Outcome, 说明)
        """
        if isinstance(paths, str):
            paths = [paths]
        try:
            with closing(EventReader.iter_lines(paths)) as lines:
                return EventLogParser.ingest(lines, ml_functions)
        except UnsupportedCodecError as e:
            return None, Outcome.FAILURE, str(e)
        except OSError as e:
            return None, Outcome.FAILURE, f"读取文件失败: {e}"

    @staticmethod
    def ingest(lines, ml_functions=False):
        """
        重放事件流
        :param lines: 行的可迭代对象（bytes 或 str）
        :param ml_functions: 是否分析Spark ML调用
        :return: (Application 或 None, Outcome, 说明)
        """
        app_state = ApplicationState(ml_functions)
        try:
            for line in lines:
                try:
                    event = EventLogParser.decode_record(line)
                    if event is None:
                        continue
                    EventLogParser.apply_event(event, app_state)
                except RecoverableRecordError as e:
                    app_state.app.malformed_records += 1
                    logger.debug("跳过无法解析的记录: %s", e)
        except TruncatedLogError as e:
            app_state.app.truncated = True
            logger.debug("日志不完整，使用已解析部分: %s", e)
        except EnvironmentMismatchError as e:
            return None, Outcome.UNKNOWN, str(e)

        app = app_state.build()
        return (app,) + EventLogParser.outcome_of(app)

    @staticmethod
    def outcome_of(app):
        """
        根据模型完整性判断处理结果
        :return: (Outcome, 说明)
        """
        if app is None:
            return Outcome.UNKNOWN, "缺少 ApplicationStart 事件"
        damaged = app.malformed_records > 0 or app.truncated
        if not damaged:
            return Outcome.SUCCESS, ''

        problems = []
        if app.malformed_records:
            problems.append(f"跳过 {app.malformed_records} 条无法解析的记录")
        if app.truncated:
            problems.append("日志被截断")
        detail = '，'.join(problems)
        if app.sql_executions:
            return Outcome.SUCCESS, detail
        return Outcome.UNKNOWN, detail + "，且没有完整的SQL执行"

    @staticmethod
    def decode_record(line):
        """
        解码单行记录
        :return: 事件字典，空行返回 None
        """
        try:
            if isinstance(line, bytes):
                line = line.decode('utf-8')
            line = line.strip()
            if not line:
                return None
            event = json.loads(line)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise RecoverableRecordError(f"{type(e).__name__}: {e}") from e
        if not isinstance(event, dict):
            raise RecoverableRecordError(f"记录不是JSON对象: {line[:80]}")
        return event

    @staticmethod
    def apply_event(event, app_state):
        """处理单个事件，字段类型错误的记录视为无法解析"""
        event_type = event.get('Event')
        if not isinstance(event_type, str):
            raise RecoverableRecordError("记录缺少 Event 字段")
        try:
            EventLogParser._handle_event(event_type, event, app_state)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise RecoverableRecordError(f"{event_type}: {type(e).__name__}: {e}") from e

    @staticmethod
    def _handle_event(event_type, event, app_state):
        """处理单个事件"""
        app = app_state.app

        if event_type == 'SparkListenerLogStart':
            app.spark_version = event.get('Spark Version', '')

        elif event_type == 'SparkListenerApplicationStart':
            app.app_id = event.get('App ID') or app.app_id or 'unknown'
            app.app_name = event.get('App Name') or ''
            app.start_time = event.get('Timestamp')
            app.user = event.get('User') or ''
            app_state.app_started = True
            app_state.observe_time(app.start_time)

        elif event_type == 'SparkListenerApplicationEnd':
            app.end_time = event.get('Timestamp')
            app.end_time_estimated = False
            app_state.app_end_seen = True
            app_state.observe_time(app.end_time)

        elif event_type == 'SparkListenerEnvironmentUpdate':
            spark_properties = parse_properties(event.get('Spark Properties'))
            app.spark_properties.update(spark_properties)
            if is_gpu_environment(app.spark_properties):
                raise EnvironmentMismatchError("EventLog来自GPU运行，跳过评估")

        elif event_type == 'SparkListenerJobStart':
            job_id = int(event['Job ID'])
            stage_ids = [int(s) for s in event.get('Stage IDs') or []]
            sql_id = None
            properties = parse_properties(event.get('Properties'))
            if properties.get('spark.sql.execution.id') not in (None, ''):
                sql_id = int(properties['spark.sql.execution.id'])
            app.jobs[job_id] = Job(
                job_id=job_id,
                stage_ids=list(dict.fromkeys(stage_ids)),
                sql_id=sql_id,
                submission_time=event.get('Submission Time'),
            )
            for stage_info in event.get('Stage Infos') or []:
                stage = app_state.get_stage(int(stage_info['Stage ID']), create=True)
                stage.name = stage_info.get('Stage Name', stage.name)
                stage.details = stage_info.get('Details', stage.details)
                stage.num_tasks = stage_info.get('Number of Tasks', stage.num_tasks)
            for stage_id in stage_ids:
                app_state.get_stage(stage_id, create=True)
            app_state.observe_time(event.get('Submission Time'))

        elif event_type == 'SparkListenerJobEnd':
            job = app.jobs.get(to_int(event.get('Job ID')))
            if job is None:
                return
            job.completion_time = event.get('Completion Time')
            result = event.get('Job Result') or {}
            result_type = result.get('Result', 'JobSucceeded') if isinstance(result, dict) else str(result)
            job.failed = 'succeed' not in result_type.lower()
            app_state.observe_time(job.completion_time)

        elif event_type == 'SparkListenerStageSubmitted':
            stage_info = event.get('Stage Info') or {}
            stage = app_state.get_stage(int(stage_info['Stage ID']), create=True)
            stage.name = stage_info.get('Stage Name', stage.name)
            stage.details = stage_info.get('Details', stage.details)
            stage.num_tasks = stage_info.get('Number of Tasks', stage.num_tasks)
            if stage.submission_time is None:
                stage.submission_time = stage_info.get('Submission Time')
            app_state.observe_time(stage_info.get('Submission Time'))

        elif event_type == 'SparkListenerStageCompleted':
            stage_info = event.get('Stage Info') or {}
            stage = app_state.get_stage(to_int(stage_info.get('Stage ID')))
            if stage is None:
                return
            if stage.submission_time is None:
                stage.submission_time = stage_info.get('Submission Time')
            stage.completion_time = stage_info.get('Completion Time')
            stage.failed = bool(stage_info.get('Failure Reason'))
            if stage_info.get('Details'):
                stage.details = stage_info['Details']

            run_time, cpu_ns = 0, 0
            for acc in stage_info.get('Accumulables') or []:
                if acc.get('ID') is not None:
                    stage.accumulator_ids.add(int(acc['ID']))
                if acc.get('Name') == RUN_TIME_ACCUMULABLE:
                    run_time = _accumulable_value(acc.get('Value'))
                elif acc.get('Name') == CPU_TIME_ACCUMULABLE:
                    cpu_ns = _accumulable_value(acc.get('Value'))
            app_state.stage_fallback[stage.stage_id] = (run_time, cpu_ns)
            app_state.observe_time(stage.completion_time)

        elif event_type == 'SparkListenerTaskEnd':
            stage = app_state.get_stage(to_int(event.get('Stage ID')))
            if stage is None:
                return
            task_info = event.get('Task Info') or {}
            launch_time = task_info.get('Launch Time') or 0
            finish_time = task_info.get('Finish Time') or 0
            stage.task_duration += max(0, finish_time - launch_time)
            stage.has_tasks = True

            task_metrics = event.get('Task Metrics') or {}
            stage.executor_run_time += task_metrics.get('Executor Run Time', 0) or 0
            cpu_ns = task_metrics.get('Executor CPU Time', 0) or 0
            app_state.stage_cpu_ns[stage.stage_id] = app_state.stage_cpu_ns.get(stage.stage_id, 0) + cpu_ns

            for acc in task_info.get('Accumulables') or []:
                if acc.get('ID') is not None:
                    stage.accumulator_ids.add(int(acc['ID']))
            app_state.observe_time(finish_time)

        elif event_type.endswith(SQL_START_SUFFIX):
            sql_id = int(event['executionId'])
            plan_description = event.get('physicalPlanDescription') or ''
            app.sql_executions[sql_id] = SqlExecution(
                sql_id=sql_id,
                description=event.get('description') or '',
                start_time=event.get('time'),
                plan=PlanParser.parse(event.get('sparkPlanInfo'), plan_description),
                plan_description=plan_description,
            )
            app_state.observe_time(event.get('time'))

        elif event_type.endswith(SQL_END_SUFFIX):
            sql = app.sql_executions.get(to_int(event.get('executionId')))
            if sql is None:
                return
            sql.end_time = event.get('time')
            sql.duration_estimated = False
            sql.error_message = event.get('errorMessage') or None
            app_state.sql_end_seen.add(sql.sql_id)
            app_state.observe_time(sql.end_time)

        elif event_type.endswith(SQL_ADAPTIVE_SUFFIX):
            sql = app.sql_executions.get(to_int(event.get('executionId')))
            if sql is None:
                return
            plan_description = event.get('physicalPlanDescription') or sql.plan_description
            plan = PlanParser.parse(event.get('sparkPlanInfo'), plan_description)
            if plan is not None:
                sql.plan = plan
                sql.plan_description = plan_description
