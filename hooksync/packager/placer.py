"""
压缩包放置器

实现载荷压缩包的整体解压，以及运行时组件包中指定子树的平铺提取。
"""

import shutil
import zipfile
from pathlib import Path, PurePosixPath

from loguru import logger

from hooksync.exceptions import ExtractError

RUNTIME_PLATFORM = "win-x64"


def recreate_directory(directory: Path) -> None:
    """删除并重新创建目录"""
    if directory.exists():
        shutil.rmtree(directory)
    directory.mkdir(parents=True, exist_ok=True)


class ArchivePlacer:
    """压缩包放置器"""

    def __init__(self, platform: str = RUNTIME_PLATFORM):
        self.platform = platform

    def extract(self, archive_path: Path, target_dir: Path) -> Path:
        """
        把载荷压缩包解压到全新的目录

        目标目录会先被删除再重建，保证不会残留旧文件。

        Args:
            archive_path: 压缩包路径
            target_dir: 目标目录

        Returns:
            目标目录
        """
        target_dir = Path(target_dir)
        try:
            recreate_directory(target_dir)
            root = target_dir.resolve()
            with zipfile.ZipFile(archive_path) as archive:
                for member in archive.infolist():
                    self._check_member(member.filename, root)
                archive.extractall(target_dir)
        except ExtractError:
            raise
        except (OSError, zipfile.BadZipFile) as e:
            raise ExtractError(
                f"解压载荷失败: {e}",
                context={"archive": str(archive_path), "target": str(target_dir)},
            ) from e

        logger.debug(f"[解压] {archive_path} -> {target_dir}")
        return target_dir

    @staticmethod
    def _check_member(name: str, root: Path) -> None:
        path = PurePosixPath(name.replace("\\", "/"))
        if path.is_absolute():
            raise ExtractError(
                "压缩包包含绝对路径", context={"entry": name}
            )
        destination = (root / Path(*path.parts)).resolve() if path.parts else root
        try:
            destination.relative_to(root)
        except ValueError:
            raise ExtractError(
                "压缩包包含越界的相对路径", context={"entry": name}
            )

    def subtree_prefixes(self, framework_major_minor: str) -> tuple:
        """组件包中需要提取的两个子树"""
        return (
            f"runtimes/{self.platform}/native/",
            f"runtimes/{self.platform}/lib/net{framework_major_minor}/",
        )

    def extract_package_subtree(
        self,
        package_path: Path,
        runtime_root: Path,
        version: str,
        framework_major_minor: str,
        component_name: str,
    ) -> Path:
        """
        从组件包中提取 native 与 lib 子树

        匹配的文件只保留文件名，平铺写入
        runtime_root/shared/<component_name>/<version>/，已存在的文件直接覆盖。

        Args:
            package_path: 组件包路径 (.nupkg)
            runtime_root: 运行时根目录
            version: 运行时版本
            framework_major_minor: 框架主次版本号，例如 "9.0"
            component_name: 组件名，例如 "Microsoft.NETCore.App"

        Returns:
            组件目标目录
        """
        target_dir = Path(runtime_root, "shared", component_name, version)
        prefixes = tuple(p.lower() for p in self.subtree_prefixes(framework_major_minor))
        extracted = 0

        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(package_path) as archive:
                for member in archive.infolist():
                    entry_name = member.filename.replace("\\", "/")
                    leaf = entry_name.rsplit("/", 1)[-1]
                    if not leaf:
                        continue
                    if not entry_name.lower().startswith(prefixes):
                        continue

                    with archive.open(member) as source, open(
                        target_dir / leaf, "wb"
                    ) as target:
                        shutil.copyfileobj(source, target)
                    extracted += 1
        except (OSError, zipfile.BadZipFile) as e:
            raise ExtractError(
                f"提取组件包失败: {e}",
                context={"package": str(package_path), "component": component_name},
            ) from e

        logger.debug(f"[解压] {component_name} {version}: 提取 {extracted} 个文件")
        return target_dir
