"""
指标计算模块 - 加速比、推荐等级等数值计算
"""

from models.summary import Recommendation

# 每日运行一次的作业按每月30次计
DEFAULT_MONTHLY_FREQUENCY = 30


class MetricsCalculator:
    """指标计算器"""

    @staticmethod
    def safe_divide(numerator, denominator):
        """安全除法，避免除零"""
        if denominator == 0:
            return 0.0
        return numerator / denominator

    @staticmethod
    def calculate_percent(part, whole, digits=2):
        """百分比，保留两位小数"""
        return round(MetricsCalculator.safe_divide(part, whole) * 100, digits)

    @staticmethod
    def estimate_accelerated_duration(duration, accelerable, speedup_factor):
        """
        可加速部分按加速因子缩短，其余部分保持不变
        :param duration: 总时长
        :param accelerable: 可加速部分时长
        :param speedup_factor: 加速因子（小于等于0时按1处理）
        :return: 估算时长
        """
        accelerable = min(accelerable, duration)
        factor = speedup_factor if speedup_factor > 0 else 1.0
        return (duration - accelerable) + accelerable / factor

    @staticmethod
    def calculate_speedup(duration, estimated_duration):
        """
        加速比
        :return: 加速比，估算时长不大于0时返回 None（输出为 N/A）
        """
        if estimated_duration <= 0:
            return None
        return duration / estimated_duration

    @staticmethod
    def calculate_time_saved(duration, estimated_duration):
        return max(0.0, duration - estimated_duration)

    @staticmethod
    def recommendation(speedup, lower_bound, strong_bound, applicable=True):
        """
        根据加速比和阈值确定推荐等级
        :param speedup: 加速比，None 表示无法计算
        :param lower_bound: Recommended 阈值
        :param strong_bound: Strongly Recommended 阈值
        :param applicable: 是否有可评估的SQL/ML时长
        :return: Recommendation
        """
        if not applicable or speedup is None:
            return Recommendation.NOT_APPLICABLE
        if speedup >= strong_bound:
            return Recommendation.STRONGLY_RECOMMENDED
        if speedup >= lower_bound:
            return Recommendation.RECOMMENDED
        return Recommendation.NOT_RECOMMENDED

    @staticmethod
    def monthly_frequency(run_count, span_days):
        """
        估算每月运行次数
        :param run_count: 同一作业在本次输入中出现的次数
        :param span_days: 这些运行覆盖的天数（>= 1）
        :return: 每月运行次数（至少为1）
        """
        if run_count <= 1:
            return DEFAULT_MONTHLY_FREQUENCY
        return max(1, int(round(run_count * DEFAULT_MONTHLY_FREQUENCY / max(span_days, 1.0))))
