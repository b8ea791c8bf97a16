"""
异常定义模块

单条记录错误只在单个EventLog内部处理；只有ConfigurationError会终止整个运行。
"""


class QualificationError(Exception):
    """评估工具异常基类"""


class RecoverableRecordError(QualificationError):
    """单条事件记录无法解析（跳过该记录，继续处理）"""


class TruncatedLogError(QualificationError):
    """日志流在记录中途结束（保留已解析的部分模型）"""


class EnvironmentMismatchError(QualificationError):
    """EventLog来自GPU运行（放弃该日志，状态记为UNKNOWN）"""


class UnsupportedCodecError(QualificationError):
    """本地文件使用了无法直接读取的压缩格式"""

    def __init__(self, path, codec):
        super().__init__(f"不支持的压缩格式 '{codec}': {path}，请通过 hdfs dfs -text 读取")
        self.path = path
        self.codec = codec


class ConfigurationError(QualificationError):
    """配置错误（覆盖表格式错误、未知平台等），在处理任何日志之前终止运行"""
