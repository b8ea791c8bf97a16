#!/usr/bin/env python3
"""
Spark EventLog GPU加速评估主程序

使用方式:
    qualify-spark-logs --output-directory ./qual_output --per-sql /path/to/eventlogs

    # 使用Spark并行处理大量日志
    spark-submit qualify_spark_logs.py --spark hdfs:///spark-history/app-1 ...
"""

import argparse
import logging
import sys
import traceback
from concurrent.futures import ProcessPoolExecutor

from models.summary import Outcome
from qualification.aggregation import AggregationEngine, assign_frequencies
from qualification.config_loader import ConfigLoader
from qualification.errors import ConfigurationError
from qualification.event_parser import EventLogParser
from qualification.file_scanner import FileScanner
from qualification.plugin_type_checker import PluginTypeChecker
from qualification.report_writer import ReportWriter
from qualification.status_tracker import StatusTracker

logger = logging.getLogger(__name__)


def qualify_log(log, checker, config):
    """
    处理单个EventLog
    :return: (状态, 路径, AggregateSummary 或 说明, Application统计)
    """
    app, outcome, detail = EventLogParser.parse_file(log.parts, config.ml_functions)
    if outcome is not Outcome.SUCCESS or app is None:
        return outcome.value, log.path, detail, 0
    summary = AggregationEngine(checker, config).summarize(app)
    return outcome.value, log.path, summary, len(app.sql_executions)


def qualify_log_wrapper(args):
    """包装处理函数，单个日志的异常不影响其他日志"""
    log, checker, config = args
    try:
        return qualify_log(log, checker, config)
    except Exception as e:
        logger.debug("处理失败: %s\n%s", log.path, traceback.format_exc())
        return Outcome.FAILURE.value, log.path, f"{type(e).__name__}: {e}", 0


def run_sequential(logs, checker, config):
    results = []
    for index, log in enumerate(logs, start=1):
        print(f"[{index}/{len(logs)}] 处理 {log.path}")
        results.append(qualify_log_wrapper((log, checker, config)))
    return results


def run_process_pool(logs, checker, config):
    print(f"使用 {config.num_workers} 个进程并行处理")
    with ProcessPoolExecutor(max_workers=config.num_workers) as executor:
        return list(executor.map(qualify_log_wrapper, [(log, checker, config) for log in logs]))


def run_spark(logs, checker, config):
    """使用Spark并行化处理日志（日志路径需要在各节点可读，如HDFS）"""
    from pyspark.sql import SparkSession

    spark = SparkSession.builder.appName("SparkQualificationTool").getOrCreate()
    try:
        sc = spark.sparkContext
        num_partitions = max(1, min(config.num_workers, len(logs)))
        print(f"使用 {num_partitions} 个并行任务处理文件")

        logs_rdd = sc.parallelize([(log, checker, config) for log in logs], num_partitions)
        return logs_rdd.map(qualify_log_wrapper).collect()
    finally:
        spark.stop()


def qualify_eventlogs(paths, config):
    """
    评估一组EventLog
    :param paths: 命令行给出的路径
    :param config: QualConfig
    :return: (AggregateSummary 列表, StatusTracker)
    """
    print("\n" + "=" * 60)
    print("Spark GPU 加速评估")
    print("=" * 60)
    print(config)

    # 支持表在处理任何日志之前加载，格式错误直接终止
    checker = PluginTypeChecker(config.platform, config.speedup_factor_file)
    tracker = StatusTracker()

    print("步骤 1: 扫描EventLog文件...")
    logs = FileScanner.scan(paths, config.application_name)
    if not logs:
        print("未找到任何文件")
        return [], tracker

    print("\n步骤 2: 解析并评估EventLog...")
    if config.use_spark:
        results = run_spark(logs, checker, config)
    elif config.num_workers > 1 and len(logs) > 1:
        results = run_process_pool(logs, checker, config)
    else:
        results = run_sequential(logs, checker, config)

    print("\n步骤 3: 汇总评估结果...")
    summaries = []
    for outcome, path, result, sql_count in results:
        if outcome == Outcome.SUCCESS.value:
            tracker.record(path, Outcome.SUCCESS)
            summaries.append(result)
            tracker.total_apps += 1
            tracker.total_sql_executions += sql_count
        else:
            tracker.record(path, Outcome(outcome), result)

    summaries.sort(key=lambda s: s.app_id)
    return assign_frequencies(summaries), tracker


def build_arg_parser():
    parser = argparse.ArgumentParser(
        prog='qualify-spark-logs',
        description='根据Spark EventLog评估应用迁移到GPU后的加速效果')
    parser.add_argument('eventlog', nargs='+', help='EventLog文件或目录（支持 hdfs:// 路径）')
    parser.add_argument('--config', help='YAML配置文件路径')
    parser.add_argument('--output-directory', dest='output_directory', help='输出目录')
    parser.add_argument('--per-sql', dest='per_sql', action='store_true', default=None,
                        help='输出每条SQL的评估结果')
    parser.add_argument('--order', choices=['asc', 'desc'], help='按加速比排序方式')
    parser.add_argument('-n', '--num-output-rows', dest='limit', type=int, help='最多输出的行数')
    parser.add_argument('--application-name', dest='application_name',
                        help='按应用名子串过滤，"~"开头表示排除')
    parser.add_argument('--report-read-schema', dest='report_read_schema', action='store_true',
                        default=None, help='输出读取Schema列')
    parser.add_argument('--ml-functions', dest='ml_functions', help='是否分析Spark ML函数 (true/false)')
    parser.add_argument('--platform', help='目标平台，如 onprem、dataproc-t4、emr-a10')
    parser.add_argument('--speedup-factor-file', dest='speedup_factor_file', help='自定义加速因子表')
    parser.add_argument('--num-workers', dest='num_workers', type=int, help='并行处理的进程数')
    parser.add_argument('--spark', dest='use_spark', action='store_true', default=None,
                        help='使用Spark并行处理')
    parser.add_argument('--verbose', action='store_true', help='输出调试日志')
    return parser


def main(argv=None):
    """
    主函数
    :return: 退出码
    """
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    overrides = {key: value for key, value in vars(args).items()
                 if key not in ('eventlog', 'config', 'verbose')}

    try:
        config = ConfigLoader.load(args.config, overrides)
        summaries, tracker = qualify_eventlogs(args.eventlog, config)
        text = ReportWriter(config).write_all(summaries, tracker)
    except ConfigurationError as e:
        print(f"配置错误: {e}")
        return 1

    print(text)
    tracker.print_summary()

    if config.fail_on_all_failed and tracker.all_failed():
        print("所有EventLog都处理失败")
        return 1

    print("程序执行成功!")
    return 0


if __name__ == '__main__':
    sys.exit(main())
