"""
读取Schema解析 - 字段拆分与复杂类型/嵌套复杂类型识别
"""

_COMPLEX_PREFIXES = ('array<', 'map<', 'struct<')


def unwrap_struct(schema):
    """计划元数据中的 struct<...> 外层包装去掉"""
    text = (schema or '').strip()
    if text.lower().startswith('struct<') and text.endswith('>'):
        return text[len('struct<'):-1]
    return text


def split_top_level(text, delimiter=',', opening='<([', closing='>)]'):
    """
    按顶层分隔符拆分，括号内的分隔符不拆分
    :param text: 待拆分字符串
    :param delimiter: 分隔符
    :param opening: 计入深度的左括号
    :param closing: 对应的右括号
    :return: 拆分后的片段列表（未去空白）
    """
    parts = []
    depth = 0
    current = []
    for ch in text:
        if ch in opening:
            depth += 1
        elif ch in closing:
            depth = max(0, depth - 1)
        if ch == delimiter and depth == 0:
            parts.append(''.join(current))
            current = []
        else:
            current.append(ch)
    parts.append(''.join(current))
    return parts


def split_schema_fields(schema):
    """
    "a:int,b:array<string>" -> [('a', 'int'), ('b', 'array<string>')]
    """
    fields = []
    for part in split_top_level(unwrap_struct(schema)):
        part = part.strip()
        if not part:
            continue
        name, sep, type_string = part.partition(':')
        if not sep:
            name, type_string = '', part
        fields.append((name.strip(), type_string.strip()))
    return fields


def is_complex_type(field_text):
    return '<' in field_text


def is_nested_complex_type(field_text):
    """复杂类型内部还包含复杂类型"""
    start = field_text.find('<')
    end = field_text.rfind('>')
    if start < 0 or end <= start:
        return False
    inner = field_text[start + 1:end].lower()
    return any(prefix in inner for prefix in _COMPLEX_PREFIXES)


def parse_read_schema_for_nested_types(schemas):
    """
    从一组Schema字符串中找出复杂类型字段和嵌套复杂类型字段
    :param schemas: Schema字符串列表（可以包含空字符串）
    :return: (复杂类型字段列表, 嵌套复杂类型字段列表)
    """
    distinct = []
    for schema in schemas:
        schema = unwrap_struct(schema)
        if schema and schema not in distinct:
            distinct.append(schema)

    complex_types = []
    nested_types = []
    for part in split_top_level(','.join(distinct)):
        part = part.strip()
        if not part or not is_complex_type(part):
            continue
        complex_types.append(part)
        if is_nested_complex_type(part):
            nested_types.append(part)
    return complex_types, nested_types


def format_complex_types(fields, delimiter=';'):
    """
    取每个字段冒号后的类型部分，去重后按首次出现顺序用分号连接
    :param fields: parse_read_schema_for_nested_types 返回的字段列表
    :param delimiter: 连接符
    :return: 格式化后的字符串
    """
    seen = []
    for field in fields:
        _, sep, type_string = field.partition(':')
        type_string = (type_string if sep else field).strip()
        if type_string and type_string not in seen:
            seen.append(type_string)
    return delimiter.join(seen)
