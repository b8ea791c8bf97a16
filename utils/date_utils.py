"""
日期工具类
"""

MS_PER_DAY = 24 * 60 * 60 * 1000


class DateUtils:
    """日期处理工具"""

    @staticmethod
    def span_days(timestamps_ms):
        """
        一组时间戳覆盖的天数，不足1天按1天计
        :param timestamps_ms: 毫秒时间戳列表（忽略 None）
        :return: 天数（float，>= 1.0）
        """
        values = [t for t in timestamps_ms if t is not None]
        if len(values) < 2:
            return 1.0
        return max(1.0, (max(values) - min(values)) / MS_PER_DAY)
