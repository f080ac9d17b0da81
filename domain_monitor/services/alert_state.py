"""告警状态跟踪器

维护每个端点是否处于“已告警”状态（ALERTED），未在集合中的端点即为 OK。
只由检查轮次串行修改，调度器保证两轮检查不会重叠。

配置了 state_file 时，已告警集合在每次状态变化后写入JSON文件，
启动时重新加载，跨越重启的故障不会重复告警；未配置时仅在进程内存中保存。
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Optional, Set

from ..utils.log_manager import get_logger


class AlertStateTracker:
    """端点告警状态集合"""

    def __init__(self, state_file: Optional[str] = None):
        """
        初始化告警状态跟踪器

        Args:
            state_file: 状态持久化文件路径，为None时不持久化
        """
        self.state_file = state_file
        self._alerted: Set[int] = set()
        self.logger = get_logger('alert_state')

        if self.state_file:
            self._load_state()

    def is_alerted(self, endpoint_id: int) -> bool:
        return endpoint_id in self._alerted

    def mark_alerted(self, endpoint_id: int) -> None:
        """OK -> ALERTED"""
        if endpoint_id in self._alerted:
            return
        self._alerted.add(endpoint_id)
        self.logger.debug(f"端点 {endpoint_id} 进入告警状态")
        self._save_state()

    def clear(self, endpoint_id: int) -> bool:
        """
        ALERTED -> OK

        Returns:
            bool: 端点之前是否处于告警状态
        """
        if endpoint_id not in self._alerted:
            return False
        self._alerted.discard(endpoint_id)
        self.logger.debug(f"端点 {endpoint_id} 恢复为正常状态")
        self._save_state()
        return True

    def get_alerted(self) -> Set[int]:
        return set(self._alerted)

    def reset(self) -> None:
        self._alerted.clear()
        self._save_state()

    def _save_state(self) -> None:
        """保存已告警集合到文件"""
        if not self.state_file:
            return

        try:
            Path(self.state_file).parent.mkdir(parents=True, exist_ok=True)
            state_data = {
                'alerted_endpoints': sorted(self._alerted),
                'last_updated': datetime.now().isoformat()
            }
            tmp_path = f"{self.state_file}.tmp"
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(state_data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.state_file)
        except OSError as e:
            self.logger.error(f"保存告警状态失败: {e}")

    def _load_state(self) -> None:
        """从文件加载已告警集合"""
        if not self.state_file or not os.path.exists(self.state_file):
            return

        try:
            with open(self.state_file, 'r', encoding='utf-8') as f:
                state_data = json.load(f)
            self._alerted = {int(endpoint_id)
                             for endpoint_id in state_data.get('alerted_endpoints', [])}
            self.logger.info(
                f"从 {self.state_file} 加载了 {len(self._alerted)} 个处于告警状态的端点")
        except (OSError, ValueError, TypeError, AttributeError) as e:
            self.logger.error(f"加载告警状态失败: {e}")
            self._alerted = set()
