"""
集群标签解析（Databricks clusterUsageTags）

聚合属性被脱敏时，从单独的原始属性推导同一标签；两处都没有的标签不输出。
"""

import json
import logging
import re

from models.app_model import ClusterTagSet

logger = logging.getLogger(__name__)

TAG_PREFIX = 'spark.databricks.clusterUsageTags.'
ALL_TAGS_KEY = TAG_PREFIX + 'clusterAllTags'
CLUSTER_ID_KEY = TAG_PREFIX + 'clusterId'
CLUSTER_NAME_KEY = TAG_PREFIX + 'clusterName'

REDACTED_MARKER = '(redacted)'

PROJECTED_TAGS = ('ClusterId', 'JobId', 'RunName')

_JOB_NAME_PATTERN = re.compile(r'job-(\d+)-run-(\d+)')


def is_redacted(value):
    return value is None or REDACTED_MARKER in str(value)


def parse_all_tags(raw_value):
    """
    解析 clusterAllTags 的JSON列表 [{"key": ..., "value": ...}, ...]
    :return: 有序的 (key, value) 列表，无法解析时返回空列表
    """
    try:
        items = json.loads(raw_value)
    except (TypeError, ValueError):
        logger.debug("clusterAllTags 不是合法JSON: %.80s", raw_value)
        return []
    if not isinstance(items, list):
        return []
    pairs = []
    for item in items:
        if isinstance(item, dict) and 'key' in item:
            pairs.append((str(item['key']), str(item.get('value', ''))))
    return pairs


def extract_cluster_tags(spark_properties):
    """
    从Spark属性中提取集群标签
    :param spark_properties: Spark属性字典
    :return: ClusterTagSet
    """
    tags = ClusterTagSet()

    all_tags = spark_properties.get(ALL_TAGS_KEY)
    if all_tags is not None and not is_redacted(all_tags):
        for key, value in parse_all_tags(all_tags):
            if key in PROJECTED_TAGS and not is_redacted(value):
                tags[key] = value

    if 'ClusterId' not in tags:
        cluster_id = spark_properties.get(CLUSTER_ID_KEY)
        if cluster_id and not is_redacted(cluster_id):
            tags['ClusterId'] = cluster_id

    if 'JobId' not in tags:
        cluster_name = spark_properties.get(CLUSTER_NAME_KEY)
        if cluster_name and not is_redacted(cluster_name):
            match = _JOB_NAME_PATTERN.search(cluster_name)
            if match:
                tags['JobId'] = match.group(1)

    return tags
