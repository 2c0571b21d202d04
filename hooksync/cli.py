"""
CLI 模块

命令行接口实现。
"""

import json
import sys
from pathlib import Path
from typing import Optional

import click
import toml
import yaml
from loguru import logger

from hooksync import __version__
from hooksync.exceptions import ConfigParseError, HookSyncError
from hooksync.logger import setup_logger
from hooksync.models import HookSyncConfig, UpdateState
from hooksync.orchestrator import UpdateOrchestrator


def load_config(config_path: str) -> dict:
    """加载配置文件"""
    path = Path(config_path)

    if not path.exists():
        raise click.ClickException(f"配置文件不存在: {config_path}")

    suffix = path.suffix.lower()

    try:
        if suffix == ".toml":
            return toml.load(config_path)
        elif suffix == ".json":
            return json.loads(path.read_text(encoding="utf-8"))
        elif suffix in (".yaml", ".yml"):
            return yaml.safe_load(path.read_text(encoding="utf-8"))
    except (toml.TomlDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigParseError(
            f"配置文件解析失败: {e}", context={"path": config_path}
        )

    raise click.ClickException(f"不支持的配置文件格式: {suffix}")


def run_update(
    config: HookSyncConfig,
    beta_kind: Optional[str],
    beta_key: Optional[str],
    force_proxy: bool,
    check_game: bool,
) -> UpdateState:
    """运行更新并等待结束"""
    orchestrator = UpdateOrchestrator.from_config(config)

    def on_manifest_changed(manifest):
        if manifest is not None:
            logger.info(f"[更新] 生效版本: {manifest.assembly_version}")

    orchestrator.subscribe(on_manifest_changed)

    orchestrator.run(beta_kind, beta_key, force_proxy)
    state = orchestrator.wait()

    if state is UpdateState.DONE:
        click.echo(f"注入器: {orchestrator.runner}")
        if check_game:
            if config.paths.game_dir is None:
                raise click.ClickException("--check-game 需要配置 paths.game_dir")
            supported = orchestrator.recheck_version(config.paths.game_dir)
            click.echo(f"支持当前游戏版本: {'是' if supported else '否'}")
    else:
        error = orchestrator.fatal_error
        logger.error(f"更新失败: {error}")

    return state


@click.command()
@click.argument("config", type=click.Path(exists=True), default="hooksync.toml")
@click.option("--beta-kind", default=None, help="测试通道名称")
@click.option("--beta-key", default=None, help="测试通道密钥")
@click.option("--force-proxy", is_flag=True, help="从第一次尝试起就使用代理下载")
@click.option("--check-game", is_flag=True, help="更新后检查游戏版本是否受支持")
@click.option("--debug", is_flag=True, help="启用调试模式")
@click.version_option(version=__version__)
def main(
    config: str,
    beta_kind: Optional[str],
    beta_key: Optional[str],
    force_proxy: bool,
    check_game: bool,
    debug: bool,
):
    """HookSync - 插件载荷与运行时更新工具"""
    setup_logger(level="DEBUG" if debug else None)

    try:
        cfg = HookSyncConfig.from_dict(load_config(config))
    except HookSyncError as e:
        logger.error(f"配置错误: {e}")
        raise click.ClickException(str(e))

    state = run_update(
        cfg,
        beta_kind if beta_kind is not None else cfg.update.beta_kind,
        beta_key if beta_key is not None else cfg.update.beta_key,
        force_proxy or cfg.update.force_proxy,
        check_game,
    )

    if state is not UpdateState.DONE:
        sys.exit(1)


if __name__ == "__main__":
    main()
