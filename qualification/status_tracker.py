"""
处理状态统计模块 - 记录每个EventLog的处理结果
"""

import time

from models.summary import Outcome, StatusRecord


class StatusTracker:
    """处理状态统计"""

    def __init__(self):
        self.start_time = time.time()
        self._records = []
        self.total_apps = 0
        self.total_sql_executions = 0

    def record(self, path, outcome, detail=None):
        """
        记录单个EventLog的处理结果
        :param path: EventLog路径
        :param outcome: Outcome
        :param detail: 说明（失败原因等）
        """
        self._records.append(StatusRecord(path, outcome, detail or ''))

    def counts(self):
        """
        :return: (成功数, 失败数, 未知数)
        """
        success = sum(1 for r in self._records if r.outcome is Outcome.SUCCESS)
        failure = sum(1 for r in self._records if r.outcome is Outcome.FAILURE)
        unknown = sum(1 for r in self._records if r.outcome is Outcome.UNKNOWN)
        return success, failure, unknown

    def records(self):
        """按路径排序的记录列表（与并行处理顺序无关）"""
        return sorted(self._records, key=lambda r: r.path)

    def all_failed(self):
        """所有日志都处理失败"""
        return bool(self._records) and all(r.outcome is Outcome.FAILURE for r in self._records)

    def get_duration(self):
        """获取执行时长（秒）"""
        return time.time() - self.start_time

    def print_summary(self):
        """打印统计摘要"""
        duration = self.get_duration()
        success, failure, unknown = self.counts()
        total = len(self._records)

        print("\n" + "=" * 60)
        print("评估统计摘要")
        print("=" * 60)
        print(f"总日志数: {total}")
        print(f"成功: {success}")
        print(f"失败: {failure}")
        print(f"未知: {unknown}")
        print(f"成功率: {success / max(total, 1) * 100:.2f}%")
        print("-" * 60)
        print(f"应用数: {self.total_apps}")
        print(f"SQL执行数: {self.total_sql_executions}")
        print("-" * 60)
        print(f"执行时长: {duration:.2f} 秒")
        print("=" * 60 + "\n")

        problems = [r for r in self.records() if r.outcome is not Outcome.SUCCESS]
        if problems:
            print("失败/未知日志列表:")
            for record in problems[:10]:  # 最多显示10个
                print(f"  - [{record.outcome.value}] {record.path}")
                if record.detail:
                    print(f"    原因: {record.detail}")
            if len(problems) > 10:
                print(f"  ... 还有 {len(problems) - 10} 个日志")
            print()
