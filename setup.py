"""
Spark Qualification Tool - 安装配置
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="spark-qualification-tool",
    version="1.0.0",
    author="Asp BigData Team",
    description="根据Spark EventLog评估应用迁移到GPU后的加速效果",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["qualify_spark_logs"],
    package_data={
        "qualification": ["resources/*.csv"],
    },
    python_requires=">=3.8",
    install_requires=[
        "pyyaml>=5.4.0",
        "zstandard>=0.15.0",
    ],
    extras_require={
        "spark": ["pyspark>=3.0.0"],
        "test": ["pytest>=6.0"],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
    ],
    entry_points={
        'console_scripts': [
            'qualify-spark-logs=qualify_spark_logs:main',
        ],
    },
)
