"""arq worker settings module.

Import path for arq CLI: arq badgebound.workers.settings.WorkerSettings
"""

from __future__ import annotations

from badgebound.workers.quest_worker import WorkerSettings

__all__ = ["WorkerSettings"]
