"""
HookSync 放置层

包含载荷解压和运行时组件包提取。
"""

from hooksync.packager.placer import ArchivePlacer, recreate_directory

__all__ = [
    "ArchivePlacer",
    "recreate_directory",
]
