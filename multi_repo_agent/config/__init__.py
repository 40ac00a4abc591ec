"""設定モジュール。"""

from .settings import ModelDefaults, Settings, load_settings_for_project

__all__ = [
    "ModelDefaults",
    "Settings",
    "load_settings_for_project",
]
