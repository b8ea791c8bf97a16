"""
汇总计算模块 - 由应用模型和算子分类结果计算每条SQL和整个应用的GPU加速评估

Stage时长只计一次：每个Stage归属于按Job开始顺序第一个引用它的SQL执行。
"""

import dataclasses
import re

from models.plan_node import OperatorKind
from models.summary import AggregateSummary, PerSqlSummary
from qualification.metrics_calculator import MetricsCalculator
from qualification.plan_classifier import PlanClassifier
from qualification.schema_parser import (
    format_complex_types, parse_read_schema_for_nested_types,
)
from utils.date_utils import DateUtils

XGBOOST_PACKAGE = 'ml.dmlc.xgboost4j.scala.spark.'
XGBOOST_NAME = 'XGBoost'


def ml_function_name(ml_ops, checker=None):
    """
    从调用栈帧中确定ML函数名
    org.apache.spark.ml.feature.PCA.fit -> PCA
    ml.dmlc.xgboost4j.scala.spark.XGBoostClassifier.train -> XGBoost
    """
    names = []
    for frame in ml_ops:
        if frame.startswith(XGBOOST_PACKAGE):
            return XGBOOST_NAME
        parts = frame.split('.')
        if len(parts) >= 2:
            names.append(parts[-2].split('$')[0])
    if checker is not None:
        for name in names:
            if checker.get_speedup_factor(name) > 1.0:
                return name
    return names[0] if names else ''


def frequency_key(summary):
    """同一作业的识别键：集群标签 JobId，否则为去掉数字的小写应用名"""
    job_id = summary.cluster_tag_map.get('JobId')
    if job_id:
        return 'job:' + job_id
    return 'name:' + re.sub(r'\d', '', (summary.app_name or '').lower())


def assign_frequencies(summaries):
    """
    估算每个应用的每月运行次数
    :param summaries: AggregateSummary 列表
    :return: 新的 AggregateSummary 列表（顺序不变）
    """
    groups = {}
    for summary in summaries:
        groups.setdefault(frequency_key(summary), []).append(summary)

    frequencies = {}
    for members in groups.values():
        span = DateUtils.span_days([m.start_time for m in members])
        frequency = MetricsCalculator.monthly_frequency(len(members), span)
        for member in members:
            frequencies[id(member)] = frequency

    return [dataclasses.replace(s, estimated_frequency=frequencies[id(s)]) for s in summaries]


class _SqlResult:
    """单条SQL的中间计算结果"""

    def __init__(self, sql, stages):
        self.sql = sql
        self.stages = stages
        self.task_duration = sum(stage.task_duration for stage in stages)
        self.supported_duration = 0
        self.unsupported_duration = 0
        self.speedup_factor = 1.0
        self.classified = []  # [(node, classification)]
        self.opportunity = 0
        self.estimated_duration = 0.0


class AggregationEngine:
    """汇总计算引擎"""

    def __init__(self, checker, config):
        """
        :param checker: PluginTypeChecker
        :param config: QualConfig（读取推荐阈值）
        """
        self.checker = checker
        self.classifier = PlanClassifier(checker)
        self.lower_bound = config.lower_bound_recommended
        self.strong_bound = config.lower_bound_strongly_recommended

    # ---------- 单条SQL ----------

    def _classify_plan(self, plan):
        """分类计划中的所有非包装算子，同时收集 WholeStageCodegen 节点"""
        classified = []
        codegen_nodes = []
        if plan is None:
            return classified, codegen_nodes
        for node in plan.walk():
            if node.operator is OperatorKind.WHOLE_STAGE_CODEGEN:
                codegen_nodes.append(node)
            classification = self.classifier.classify_exec(node)
            if classification is not None:
                classified.append((node, classification))
        return classified, codegen_nodes

    @staticmethod
    def _map_stages(classified, codegen_nodes, stages):
        """
        算子 -> 涉及的Stage集合
        通过指标的 accumulator id 匹配；自身没有匹配的算子继承所在 WholeStageCodegen 的Stage；
        整条SQL都没有任何匹配时，每个算子都涉及该SQL的所有Stage
        """
        def stages_of(node):
            return {stage.stage_id for stage in stages
                    if node.accumulator_ids & stage.accumulator_ids}

        cluster_stages = {}
        for node in codegen_nodes:
            cluster_stages.setdefault(node.cluster_id, set()).update(stages_of(node))
        own = {}
        for node, _ in classified:
            own[node.node_id] = stages_of(node)
            if node.cluster_id is not None and own[node.node_id]:
                cluster_stages.setdefault(node.cluster_id, set()).update(own[node.node_id])

        mapping = {}
        for node, _ in classified:
            mapped = own[node.node_id] or cluster_stages.get(node.cluster_id, set())
            mapping[node.node_id] = mapped

        if not any(mapping.values()) and not any(cluster_stages.values()):
            all_stages = {stage.stage_id for stage in stages}
            mapping = {node.node_id: all_stages for node, _ in classified}
        return mapping

    def _summarize_sql(self, sql, stages):
        result = _SqlResult(sql, stages)
        result.classified, codegen_nodes = self._classify_plan(sql.plan)
        mapping = self._map_stages(result.classified, codegen_nodes, stages)

        weighted_factor = 0.0
        weight = 0.0
        for stage in stages:
            duration = stage.task_duration
            touching = [c for node, c in result.classified if stage.stage_id in mapping[node.node_id]]
            if any(not c.supported for c in touching):
                result.unsupported_duration += duration
                continue
            result.supported_duration += duration
            if not touching:
                weighted_factor += duration * 1.0
                weight += duration
                continue
            share = duration / len(touching)
            for classification in touching:
                weighted_factor += share * classification.speedup_factor
                weight += share

        result.speedup_factor = weighted_factor / weight if weight > 0 else 1.0
        sql_duration = sql.duration
        result.opportunity = int(round(
            sql_duration * MetricsCalculator.safe_divide(result.supported_duration, result.task_duration)))
        result.estimated_duration = MetricsCalculator.estimate_accelerated_duration(
            sql_duration, result.opportunity, result.speedup_factor)
        return result

    def _per_sql_summary(self, app, result):
        sql = result.sql
        speedup = MetricsCalculator.calculate_speedup(sql.duration, result.estimated_duration)
        return PerSqlSummary(
            app_name=app.app_name,
            app_id=app.app_id,
            sql_id=sql.sql_id,
            description=sql.description,
            sql_dataframe_duration=sql.duration,
            gpu_opportunity=result.opportunity,
            estimated_gpu_duration=result.estimated_duration,
            estimated_gpu_speedup=speedup,
            estimated_gpu_time_saved=MetricsCalculator.calculate_time_saved(
                sql.duration, result.estimated_duration),
            recommendation=MetricsCalculator.recommendation(
                speedup, self.lower_bound, self.strong_bound, applicable=bool(result.stages)),
            sql_task_duration=result.task_duration,
            supported_task_duration=result.supported_duration,
            unsupported_task_duration=result.unsupported_duration,
            task_speedup_factor=result.speedup_factor,
            duration_estimated=sql.duration_estimated,
        )

    def summarize_sql(self, app, sql_id):
        """
        单条SQL的评估结果（实时模式在SQL结束时调用）
        :return: PerSqlSummary
        """
        sql = app.sql_executions[sql_id]
        stages = [app.stages[s] for s in sql.stage_ids if s in app.stages]
        return self._per_sql_summary(app, self._summarize_sql(sql, stages))

    # ---------- 应用级 ----------

    def summarize(self, app):
        """
        计算应用级评估结果
        :param app: build() 之后的 Application
        :return: AggregateSummary
        """
        results = []
        owned_stage_ids = set()
        for sql_id in sorted(app.sql_executions):
            sql = app.sql_executions[sql_id]
            stages = [app.stages[s] for s in sql.stage_ids if s in app.stages]
            owned_stage_ids.update(stage.stage_id for stage in stages)
            results.append(self._summarize_sql(sql, stages))

        app_duration = app.duration
        with_stages = [r for r in results if r.stages]
        sql_total = sum(r.sql.duration for r in with_stages)
        sql_df_duration = min(app_duration, sql_total)
        estimated_total = sum(r.estimated_duration for r in with_stages)
        supported_total = sum(r.supported_duration for r in with_stages)
        unsupported_total = sum(r.unsupported_duration for r in with_stages)
        sql_task_duration = sum(r.task_duration for r in with_stages)
        gpu_opportunity = min(sql_df_duration, sum(r.opportunity for r in with_stages))

        ml_durations, ml_saved = self._ml_function_durations(app)
        non_sql_duration = app_duration - sql_df_duration
        ratio = MetricsCalculator.safe_divide(estimated_total, sql_total) if sql_total else 1.0
        estimated_gpu = max(0.0, non_sql_duration - ml_saved) + sql_df_duration * ratio

        speedup = MetricsCalculator.calculate_speedup(app_duration, estimated_gpu)
        applicable = bool(with_stages) or ml_saved > 0
        task_factor = MetricsCalculator.safe_divide(
            sum(r.speedup_factor * r.supported_duration for r in with_stages), supported_total) \
            if supported_total else 1.0

        complex_types, nested_types = self._complex_types(app)
        classified = [c for r in results for _, c in r.classified]
        unsupported = [c for c in classified if not c.supported]

        return AggregateSummary(
            app_name=app.app_name,
            app_id=app.app_id,
            recommendation=MetricsCalculator.recommendation(
                speedup, self.lower_bound, self.strong_bound, applicable),
            estimated_gpu_speedup=speedup,
            estimated_gpu_duration=estimated_gpu,
            estimated_gpu_time_saved=MetricsCalculator.calculate_time_saved(app_duration, estimated_gpu),
            sql_dataframe_duration=sql_df_duration,
            sql_dataframe_task_duration=sql_task_duration,
            app_duration=app_duration,
            gpu_opportunity=gpu_opportunity,
            executor_cpu_percent=MetricsCalculator.calculate_percent(
                sum(s.executor_cpu_time for s in app.stages.values()),
                sum(s.executor_run_time for s in app.stages.values())),
            failed_sql_ids=','.join(str(sql_id) for sql_id in self._failed_sql_ids(app)),
            read_file_format_and_types_not_supported=self._unsupported_read_formats(app),
            write_data_format=self._unsupported_write_formats(app),
            complex_types=complex_types,
            nested_complex_types=nested_types,
            potential_problems=':'.join(app.potential_problems),
            longest_sql_duration=max([r.sql.duration for r in results], default=0),
            non_sql_task_duration_plus_overhead=self._non_sql_task_duration(app, owned_stage_ids),
            unsupported_task_duration=unsupported_total,
            supported_sql_task_duration=supported_total,
            task_speedup_factor=task_factor,
            end_duration_estimated=app.end_time_estimated,
            unsupported_execs=';'.join(_distinct(c.display_name for c in unsupported)),
            unsupported_exprs=';'.join(_distinct(e for c in unsupported for e in c.unsupported_exprs)),
            read_schema=';'.join(_distinct(e.schema for e in app.read_schemas if e.schema)),
            cluster_tags=tuple(app.cluster_tags.items()),
            ml_function_durations=tuple(sorted(ml_durations.items())),
            start_time=app.start_time or 0,
            per_sql=tuple(self._per_sql_summary(app, r) for r in results),
            unsupported_operators=tuple(_distinct(
                row for c in unsupported
                for row in self.classifier.unsupported_operator_rows(app.app_id, c))),
        )

    def _ml_function_durations(self, app):
        """
        :return: ({ML函数名: Stage时长之和}, 可节省时长)
        """
        durations = {}
        for call in app.ml_function_calls:
            name = ml_function_name(call.ml_ops, self.checker)
            if name:
                durations[name] = durations.get(name, 0) + call.duration
        saved = 0.0
        for name, duration in durations.items():
            saved += duration - MetricsCalculator.estimate_accelerated_duration(
                duration, duration, self.checker.get_speedup_factor(name))
        return durations, saved

    @staticmethod
    def _failed_sql_ids(app):
        failed_jobs = {job.job_id for job in app.jobs.values() if job.failed}
        return [sql_id for sql_id in sorted(app.sql_executions)
                if app.sql_executions[sql_id].failed
                or failed_jobs.intersection(app.sql_executions[sql_id].job_ids)]

    def _unsupported_read_formats(self, app):
        """FORMAT[类型1:类型2]，按首次出现去重后分号连接"""
        entries = []
        for entry in app.read_schemas:
            _, types = self.checker.score_read_data_types(entry.format, entry.fields)
            if types:
                entries.append(f"{entry.format.upper()}[{':'.join(sorted(types))}]")
        return ';'.join(_distinct(entries))

    def _unsupported_write_formats(self, app):
        formats = [op.format for op in app.write_operations
                   if op.format and not self.checker.is_write_format_supported(op.format)]
        return ';'.join(_distinct(formats))

    @staticmethod
    def _complex_types(app):
        complex_types, nested_types = parse_read_schema_for_nested_types(
            [entry.schema for entry in app.read_schemas])
        return format_complex_types(complex_types), format_complex_types(nested_types)

    @staticmethod
    def _non_sql_task_duration(app, owned_stage_ids):
        """非SQL Stage的Task时长 + 应用时长中没有任何Job运行的时间"""
        non_sql = sum(stage.task_duration for stage_id, stage in app.stages.items()
                      if stage_id not in owned_stage_ids)

        intervals = sorted(
            (job.submission_time, job.completion_time) for job in app.jobs.values()
            if job.submission_time is not None and job.completion_time is not None)
        covered = 0
        current_start, current_end = None, None
        for start, end in intervals:
            if current_end is None or start > current_end:
                if current_end is not None:
                    covered += current_end - current_start
                current_start, current_end = start, end
            else:
                current_end = max(current_end, end)
        if current_end is not None:
            covered += current_end - current_start
        return non_sql + max(0, app.duration - covered)


def _distinct(values):
    """去重并保持首次出现顺序"""
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen
