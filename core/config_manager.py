"""
Configuration Manager for TaskFlow.

集中管理排序、生命周期与展示相关的策略常量。
所有经验值必须显式声明，并可通过 config/runtime.yaml 覆盖。

使用方式:
    from core.config_manager import config
    limit = config.TOP_PRIORITY_LIMIT
"""
from dataclasses import dataclass
from pathlib import Path

import yaml


CONFIG_DIR = Path(__file__).parent.parent / "config"
RUNTIME_CONFIG_PATH = CONFIG_DIR / "runtime.yaml"


@dataclass
class SystemConfig:
    """
    系统运行时常量配置。

    评分权重与阈值属于策略，不是正确性约束；调整建议已在注释中说明。
    """

    # === 评分权重 (和为 1.0) ===
    # 经验值依据：截止时间与声明优先级主导排序，其余因素用于同分区分
    SCORE_WEIGHTS: dict = None

    # === 重要度映射 ===
    IMPORTANCE_BY_PRIORITY: dict = None

    # === 紧迫度参数 ===

    # 无截止日期时的基线紧迫度
    URGENCY_NO_DUE_DATE: float = 0.3

    # 高紧迫度窗口 (天)
    # 调整建议：节奏快的团队可降至 2
    URGENCY_HORIZON_DAYS: float = 3.0

    # 窗口内紧迫度区间：截止当下 -> 窗口边界
    URGENCY_HORIZON_MAX: float = 0.9
    URGENCY_HORIZON_MIN: float = 0.7

    # 窗口外紧迫度的上下限 (按距离反比缩放)
    URGENCY_FAR_CEILING: float = 0.6
    URGENCY_FAR_FLOOR: float = 0.1

    # === 工作量参数 ===

    # 无预估时长时的中性值
    EFFORT_NEUTRAL: float = 0.5

    # (上限分钟, 得分)，按顺序匹配；超出最后一档取 EFFORT_LONG_TASK
    # 经验值依据：30 分钟内完成的任务视为 quick win
    EFFORT_BANDS: tuple = ((30, 0.9), (60, 0.7), (120, 0.5), (240, 0.3))
    EFFORT_LONG_TASK: float = 0.2

    # === 情境参数 ===
    CONTEXT_EXACT_MATCH: float = 1.0
    CONTEXT_ADJACENT: float = 0.6
    CONTEXT_OPPOSITE: float = 0.2
    CONTEXT_FLEXIBLE: float = 0.6

    # 时段边界 (小时)：[MORNING_START, AFTERNOON_START) 为上午，
    # [AFTERNOON_START, EVENING_START) 为下午，其余为晚间
    MORNING_START_HOUR: int = 5
    AFTERNOON_START_HOUR: int = 12
    EVENING_START_HOUR: int = 17

    # === 协作参数 ===
    # 参与人数 -> 得分，超过最大键取最大键对应值
    COLLABORATION_BY_SIZE: dict = None

    # === 艾森豪威尔象限阈值 (固定策略，不按用户配置) ===
    URGENCY_THRESHOLD: float = 0.7
    IMPORTANCE_THRESHOLD: float = 0.75

    # === 展示上限 ===
    # 经验值依据：认知负荷理论，短清单更易执行
    TOP_PRIORITY_LIMIT: int = 3
    QUICK_WIN_LIMIT: int = 5
    TIME_SLOT_LIMIT: int = 3

    # 工作量因子达到该值且非 roadblock 时也进入 quick wins
    QUICK_WIN_EFFORT_THRESHOLD: float = 0.8

    # === Rescue 参数 ===
    RESCUE_MIN_RESOLUTION_LENGTH: int = 10
    RESCUE_TITLE_PREFIX: str = "[RESCUED]"

    # === 调度器 ===
    # 进程内是否启动午夜扫描定时器
    SCHEDULER_ENABLED: bool = True

    def __post_init__(self):
        if self.SCORE_WEIGHTS is None:
            self.SCORE_WEIGHTS = {
                "urgency": 0.30,
                "importance": 0.25,
                "effort": 0.20,
                "context": 0.15,
                "collaboration": 0.10,
            }
        if self.IMPORTANCE_BY_PRIORITY is None:
            self.IMPORTANCE_BY_PRIORITY = {
                "urgent": 1.0,
                "high": 0.75,
                "medium": 0.5,
                "low": 0.25,
            }
        if self.COLLABORATION_BY_SIZE is None:
            self.COLLABORATION_BY_SIZE = {
                1: 0.3,   # 独立工作
                2: 0.6,
                3: 0.75,
                4: 0.9,   # 4 人及以上
            }


def _load_runtime_config() -> dict:
    """加载运行时配置覆盖（如果存在）。"""
    if not RUNTIME_CONFIG_PATH.exists():
        return {}

    try:
        with open(RUNTIME_CONFIG_PATH, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (yaml.YAMLError, OSError):
        return {}


def get_config() -> SystemConfig:
    """
    获取系统配置实例。

    优先级：runtime.yaml > 默认值
    """
    base = SystemConfig()
    overrides = _load_runtime_config()

    for key, value in overrides.items():
        if hasattr(base, key):
            setattr(base, key, value)

    return base


# 全局配置实例（单例模式）
config = get_config()
