"""
Configuration module for the Indicator Dependency Resolver.
Loads settings from environment variables or .env file.
指标依赖解析器配置模块。
从环境变量或 .env 文件加载所有配置项。
"""

import os
from dotenv import load_dotenv

load_dotenv()  # 自动读取项目根目录的 .env 文件（若存在），优先级低于系统环境变量

# --- Graph Limits ---
# --- 依赖图限制 ---
MAX_DEPENDENCY_DEPTH = int(os.getenv("MAX_DEPENDENCY_DEPTH", "10"))  # 依赖链深度上限，超出仅产生警告
MAX_GRAPH_NODES = int(os.getenv("MAX_GRAPH_NODES", "1000"))          # 图中节点数上限，超出时拒绝添加

# --- Validation ---
# --- 校验 ---
# When true, add/update run full validation first and reject unknown references or cycles.
# 为 true 时，添加/更新节点前强制执行完整校验，拒绝未知依赖与环。
ENFORCE_VALIDATION = os.getenv("ENFORCE_VALIDATION", "true").lower() == "true"

# --- Bottleneck Heuristics ---
# --- 瓶颈识别阈值 ---
BOTTLENECK_DEPENDENT_THRESHOLD = int(os.getenv("BOTTLENECK_DEPENDENT_THRESHOLD", "3"))      # 下游依赖数超过该值即视为瓶颈
BOTTLENECK_TIME_THRESHOLD = float(os.getenv("BOTTLENECK_TIME_THRESHOLD", "100"))            # 预计处理时间超过该值即视为瓶颈

# --- Node Metadata Defaults ---
# --- 节点元数据默认值 ---
DEFAULT_PRIORITY = int(os.getenv("DEFAULT_PRIORITY", "50"))                        # 默认优先级
DEFAULT_PROCESSING_TIME = float(os.getenv("DEFAULT_PROCESSING_TIME", "10"))        # 默认预计处理时间
DEFAULT_MEMORY_USAGE = int(os.getenv("DEFAULT_MEMORY_USAGE", str(1024 * 1024)))    # 默认内存占用（字节，1MB）

# --- Plan Execution ---
# --- 计划执行参数 ---
MAX_PARALLEL_NODES = int(os.getenv("MAX_PARALLEL_NODES", "3"))  # 每个层级一次最多并行执行的指标数
EXECUTOR_FAILURE_POLICY = os.getenv("EXECUTOR_FAILURE_POLICY", "skip_dependents")  # "abort"=终止后续层级 | "skip_dependents"=仅跳过下游
