"""
执行计划解析模块

把 sparkPlanInfo (JSON) 或 physicalPlanDescription (文本) 解析为 ExecNode 树，
节点名称在这里一次性解析为 OperatorKind。
"""

import re

from models.plan_node import OperatorKind, ExecNode, ExpressionNode
from qualification.schema_parser import split_top_level

# 携带表达式的算子
EXPRESSION_OPERATORS = frozenset([
    OperatorKind.FILTER,
    OperatorKind.PROJECT,
    OperatorKind.HASH_AGGREGATE,
    OperatorKind.OBJECT_HASH_AGGREGATE,
    OperatorKind.SORT_AGGREGATE,
    OperatorKind.SORT,
    OperatorKind.WINDOW,
    OperatorKind.GENERATE,
    OperatorKind.EXPAND,
    OperatorKind.TAKE_ORDERED_AND_PROJECT,
    OperatorKind.BROADCAST_HASH_JOIN,
    OperatorKind.SORT_MERGE_JOIN,
    OperatorKind.SHUFFLED_HASH_JOIN,
    OperatorKind.BROADCAST_NESTED_LOOP_JOIN,
    OperatorKind.CARTESIAN_PRODUCT,
])

JOIN_TYPES = ('Inner', 'Cross', 'LeftOuter', 'RightOuter', 'FullOuter',
              'LeftSemi', 'LeftAnti', 'ExistenceJoin')

_FUNCTION_PATTERN = re.compile(r'(?<![\w$#.])([A-Za-z_][A-Za-z0-9_]*)\(')
_BINARY_OPERATOR_PATTERN = re.compile(r'(?<=\s)(AND|OR|<=>|>=|<=|=|>|<|\+|-|\*|/|%)(?=\s)')
_KEYWORD_PATTERN = re.compile(r'\b(NOT|IN|INSET|LIKE|CASE WHEN)\b')
_JOIN_TYPE_PATTERN = re.compile(r'\b(' + '|'.join(JOIN_TYPES) + r')\b(\([^)]*\))?')
_FORMAT_PATTERN = re.compile(r'Format: (\w+)')
_READ_SCHEMA_PATTERN = re.compile(r'ReadSchema: (\S.*?)\s*$')
_CODEGEN_ID_PATTERN = re.compile(r'\((\d+)\)')
_AGG_PREFIXES = ('partial_', 'merge_', 'finalmerge_')

_FS_WRITE_COMMAND = 'InsertIntoHadoopFsRelationCommand'
_HIVE_WRITE_COMMANDS = ('InsertIntoHiveTable', 'CreateHiveTableAsSelectCommand')
_HIVE_SERDE_FORMATS = (
    ('OrcSerde', 'ORC'),
    ('ParquetHiveSerDe', 'Parquet'),
    ('LazySimpleSerDe', 'HiveText'),
)
_PROVIDER_PATTERN = re.compile(r'\b(?:Provider:|USING)\s+`?(\w+)`?', re.IGNORECASE)

# 不属于表达式的括号写法：类型、分区方式、窗口帧、包装
_IGNORED_CALLS = frozenset([
    'decimal', 'array', 'map', 'struct', 'varchar', 'char',
    'some', 'none',
    'hashpartitioning', 'rangepartitioning', 'roundrobinpartitioning', 'singlepartition',
    'specifiedwindowframe', 'existencejoin',
    'promote_precision', 'checkoverflow', 'knownfloatingpointnormalized',
    'normalizenanandzero', 'unscaledvalue', 'makedecimal', 'make_decimal',
])

# 表达式在计划中的显示名 -> 对外名称
_EXPRESSION_ALIASES = {
    'gettimestamp': 'to_timestamp',
}


def is_udf_name(name):
    return name.lower().endswith('udf')


def extract_expressions(node_name, simple_string):
    """
    从算子的 simpleString 中提取表达式
    :param node_name: 节点名称（simpleString中的前缀会被去掉）
    :param simple_string: 算子描述文本
    :return: ExpressionNode 列表（名称小写，按首次出现去重）
    """
    text = simple_string or ''
    head = (node_name or '').strip()
    if head and text.startswith(head):
        text = text[len(head):]

    names = []

    def add(name):
        name = name.lower()
        for prefix in _AGG_PREFIXES:
            if name.startswith(prefix):
                name = name[len(prefix):]
                break
        if is_udf_name(name):
            name = 'udf'
        name = _EXPRESSION_ALIASES.get(name, name)
        if name and name not in _IGNORED_CALLS and name not in names:
            names.append(name)

    for match in _FUNCTION_PATTERN.finditer(text):
        add(match.group(1))
    for match in _BINARY_OPERATOR_PATTERN.finditer(text):
        add(match.group(1))
    for match in _KEYWORD_PATTERN.finditer(text):
        add(match.group(1).replace(' ', ''))

    return [ExpressionNode(name) for name in names]


def extract_join_type(simple_string):
    """SortMergeJoin [a#1], [b#2], Inner -> Inner; ExistenceJoin(exists#5) 原样保留"""
    match = _JOIN_TYPE_PATTERN.search(simple_string or '')
    if not match:
        return ''
    return match.group(1) + (match.group(2) or '')


def get_write_format_string(command_text):
    """
    从写入命令描述中提取目标格式
    字段依次为: 路径, 标志, [可选的列列表], 格式, 选项, 保存模式, 分区列
    :param command_text: 如 "Execute InsertIntoHadoopFsRelationCommand path, false, Parquet, ..."
    :return: 格式字符串，无法识别时返回空字符串
    """
    fields = [f.strip() for f in split_top_level(command_text or '', ',', '([', ')]')]
    if len(fields) < 3:
        return ''
    candidate = fields[2]
    if candidate.startswith('['):
        if len(fields) < 4:
            return ''
        candidate = fields[3]
    return candidate


def get_write_format(command_text):
    """
    按写入命令的类型提取目标格式
    InsertIntoHadoopFsRelationCommand 按字段位置解析；Hive表由 SerDe 推断；
    数据源表 CTAS 取 Provider
    :return: 格式字符串，无法识别时返回空字符串
    """
    text = command_text or ''
    if _FS_WRITE_COMMAND in text:
        return get_write_format_string(text)
    if any(cmd in text for cmd in _HIVE_WRITE_COMMANDS):
        for serde, fmt in _HIVE_SERDE_FORMATS:
            if serde in text:
                return fmt
        return ''
    match = _PROVIDER_PATTERN.search(text)
    return match.group(1) if match else ''


def _scan_format(node_name, metadata, simple_string):
    fmt = metadata.get('Format')
    if not fmt:
        match = _FORMAT_PATTERN.search(simple_string or '')
        if match:
            fmt = match.group(1)
    if not fmt:
        tokens = (node_name or '').split()
        if len(tokens) > 1 and tokens[0] in ('Scan', 'FileScan') and tokens[1] != 'ExistingRDD':
            fmt = tokens[1]
    return fmt or ''


def _read_schema(metadata, simple_string):
    schema = metadata.get('ReadSchema')
    if not schema:
        match = _READ_SCHEMA_PATTERN.search(simple_string or '')
        if match:
            schema = match.group(1)
    return schema or ''


def build_node(name, simple_string='', metadata=None, accumulator_ids=None, children=None):
    """构建单个 ExecNode 并补充读/写/Join元数据"""
    operator = OperatorKind.from_node_name(name)
    metadata = dict(metadata or {})
    text = simple_string or name

    if operator.is_scan and operator is not OperatorKind.RDD_SCAN:
        fmt = _scan_format(name, metadata, text)
        if fmt:
            metadata['Format'] = fmt
        schema = _read_schema(metadata, text)
        if schema:
            metadata['ReadSchema'] = schema
    elif operator is OperatorKind.DATA_WRITING_COMMAND:
        metadata['WriteFormat'] = get_write_format(text)
    elif operator.is_join:
        join_type = extract_join_type(text)
        if join_type:
            metadata['JoinType'] = join_type

    expressions = []
    if operator in EXPRESSION_OPERATORS:
        expressions = extract_expressions(name, text)

    return ExecNode(
        name=name,
        operator=operator,
        simple_string=text,
        children=list(children or []),
        expressions=expressions,
        metadata=metadata,
        accumulator_ids=set(accumulator_ids or ()),
    )


class PlanParser:
    """执行计划解析器"""

    @staticmethod
    def parse(plan_info=None, plan_description=''):
        """
        解析执行计划，优先使用 sparkPlanInfo
        :param plan_info: sparkPlanInfo 字典
        :param plan_description: physicalPlanDescription 文本
        :return: 根 ExecNode，无计划时返回 None
        """
        root = None
        if isinstance(plan_info, dict) and plan_info.get('nodeName'):
            root = PlanParser.from_plan_info(plan_info)
        elif plan_description:
            root = PlanParser.from_text(plan_description)
        if root is not None:
            PlanParser._assign_ids(root)
        return root

    @staticmethod
    def from_plan_info(plan_info):
        """递归解析 sparkPlanInfo"""
        children = [PlanParser.from_plan_info(child)
                    for child in plan_info.get('children') or []]
        accumulator_ids = set()
        for metric in plan_info.get('metrics') or []:
            acc_id = metric.get('accumulatorId')
            if acc_id is not None:
                accumulator_ids.add(int(acc_id))
        return build_node(
            plan_info.get('nodeName', ''),
            plan_info.get('simpleString', ''),
            plan_info.get('metadata'),
            accumulator_ids,
            children,
        )

    @staticmethod
    def from_text(plan_description):
        """
        解析文本执行计划（树形部分 + formatted 模式下的节点详情）
        """
        lines = plan_description.splitlines()
        start = 0
        for i, line in enumerate(lines):
            if line.strip() == '== Physical Plan ==':
                start = i + 1
                break

        tree_lines = []
        index = start
        while index < len(lines) and lines[index].strip():
            tree_lines.append(lines[index])
            index += 1

        details = PlanParser._parse_details(lines[index:])

        root = None
        stack = []  # [(depth, node)]
        for line in tree_lines:
            depth, text, codegen_id, op_id = PlanParser._split_tree_line(line)
            if not text:
                continue
            detail = details.get(op_id, {}) if op_id is not None else {}
            name = PlanParser._node_name(text)
            simple_string = text
            if detail.get('text'):
                simple_string = text + ' ' + detail['text']
            node = build_node(name, simple_string, detail.get('metadata'))
            node.cluster_id = codegen_id if codegen_id is not None else detail.get('codegen_id')

            while stack and stack[-1][0] >= depth:
                stack.pop()
            if stack:
                stack[-1][1].children.append(node)
            elif root is None:
                root = node
            stack.append((depth, node))
        return root

    @staticmethod
    def _split_tree_line(line):
        """
        "   +- *(2) Project [a#1]" -> (深度, "Project [a#1]", 2, None)
        "+- * Filter (2)" -> (深度, "Filter", None, 2)
        """
        match = re.match(r'^([\s:|]*(?:[+:]-\s)?)', line)
        prefix = match.group(1) if match else ''
        depth = len(prefix)
        text = line[len(prefix):].strip()

        codegen_id = None
        codegen = re.match(r'^\*\((\d+)\)\s*', text)
        if codegen:
            codegen_id = int(codegen.group(1))
            text = text[codegen.end():]
        elif text.startswith('* '):
            text = text[2:]

        op_id = None
        trailing = re.search(r'\s\((\d+)\)$', text)
        if trailing:
            op_id = int(trailing.group(1))
            text = text[:trailing.start()]
        return depth, text.strip(), codegen_id, op_id

    @staticmethod
    def _node_name(text):
        """从节点文本中取节点名称"""
        tokens = text.split()
        if not tokens:
            return ''
        if tokens[0] in ('Scan', 'FileScan') and len(tokens) > 1:
            return f'{tokens[0]} {tokens[1]}'
        if tokens[0] == 'Execute' and len(tokens) > 1:
            return f'Execute {tokens[1]}'
        return re.split(r'[\s(\[]', text, maxsplit=1)[0]

    @staticmethod
    def _parse_details(lines):
        """
        formatted 模式的节点详情:
        (3) Project [codegen id : 1]
        Output [2]: [a#1, b#2]
        Input [2]: [a#1, b#2]
        """
        details = {}
        current = None
        for line in lines:
            header = re.match(r'^\((\d+)\)\s+(.*)$', line.strip())
            if header:
                codegen = re.search(r'\[codegen id : (\d+)\]', header.group(2))
                current = {'metadata': {}, 'text': '',
                           'codegen_id': int(codegen.group(1)) if codegen else None}
                details[int(header.group(1))] = current
                continue
            if current is None or not line.strip():
                continue
            key, sep, value = line.partition(':')
            if not sep:
                continue
            key = re.sub(r'\s*\[\d+\]\s*$', '', key).strip()
            value = value.strip()
            current['metadata'][key] = value
            if key not in ('Output', 'Input', 'Location', 'Batched'):
                current['text'] = (current['text'] + ' ' + value).strip()
        return details

    @staticmethod
    def _assign_ids(root):
        """前序编号，并把 WholeStageCodegen 的编号传递给其内部节点"""
        counter = 0

        def visit(node, cluster_id):
            nonlocal counter
            node.node_id = counter
            counter += 1
            if node.operator is OperatorKind.WHOLE_STAGE_CODEGEN:
                match = _CODEGEN_ID_PATTERN.search(node.name)
                cluster_id = int(match.group(1)) if match else node.node_id
                node.cluster_id = cluster_id
            elif node.operator is OperatorKind.INPUT_ADAPTER:
                cluster_id = None
            elif node.cluster_id is None:
                node.cluster_id = cluster_id
            for child in node.children:
                visit(child, cluster_id)

        visit(root, None)
