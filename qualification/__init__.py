"""
Spark Qualification Tool - 评估引擎
"""
