#!/usr/bin/env python3
"""
dvt-ceremony CLI

Commands:
- run: join the ceremony, run it and start the service
- identity: print the local identity, generating it if needed
"""

import asyncio
import logging
import os
import sys
from typing import Dict, Optional

import click

from . import __version__
from .config import ENV_PREFIX, NodeConfig
from .errors import CeremonyError
from .execution.artifact_store import ArtifactStore
from .execution.ceremony_engine import CeremonyExecutionEngine
from .execution.runtime import DockerProcessRuntime
from .node import CeremonyNode

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stdout
    )


def load_config(overrides: Dict[str, Optional[str]], defaults: Optional[Dict[str, str]] = None) -> NodeConfig:
    """Build node configuration from the environment plus CLI overrides"""
    env = dict(os.environ)
    for name, value in (defaults or {}).items():
        env.setdefault(f"{ENV_PREFIX}{name}", value)
    for name, value in overrides.items():
        if value is not None:
            env[f"{ENV_PREFIX}{name}"] = str(value)
    return NodeConfig.from_env(env)


@click.group()
@click.version_option(version=__version__, prog_name="dvt-ceremony")
@click.option('--log-level', default='INFO', show_default=True,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
def main(log_level: str):
    """Distributed validator key ceremony coordinator"""
    configure_logging(log_level)


@main.command()
@click.option('--position', type=int, help='Ordinal position of this node (0 is the leader)')
@click.option('--operator-count', type=int, help='Number of participating nodes')
@click.option('--data-dir', type=click.Path(file_okay=False), help='Node data directory')
@click.option('--name', help='Ceremony name')
@click.option('--nats-servers', help='Comma separated NATS server URLs')
@click.option('--receive-timeout', help='Seconds to wait per protocol message, or "none"')
def run(
    position: Optional[int],
    operator_count: Optional[int],
    data_dir: Optional[str],
    name: Optional[str],
    nats_servers: Optional[str],
    receive_timeout: Optional[str]
):
    """Run the ceremony and start the service"""
    try:
        config = load_config({
            "POSITION": position,
            "OPERATOR_COUNT": operator_count,
            "DATA_DIR": data_dir,
            "NAME": name,
            "NATS_SERVERS": nats_servers,
            "RECEIVE_TIMEOUT": receive_timeout,
        })
        node = CeremonyNode(config)
        service = asyncio.run(node.run())
    except CeremonyError as e:
        click.echo(f"Ceremony failed: {e}", err=True)
        sys.exit(1)

    click.echo(service)


@main.command()
@click.option('--data-dir', type=click.Path(file_okay=False), help='Node data directory')
def identity(data_dir: Optional[str]):
    """Print the local identity, generating it if needed"""
    try:
        config = load_config(
            {"DATA_DIR": data_dir},
            defaults={"POSITION": "0", "OPERATOR_COUNT": "1"}
        )
        engine = CeremonyExecutionEngine(
            DockerProcessRuntime(),
            ArtifactStore(config.ensure_data_dir()),
            config
        )
        value = asyncio.run(engine.identity())
    except CeremonyError as e:
        click.echo(f"Identity generation failed: {e}", err=True)
        sys.exit(1)

    click.echo(value)


if __name__ == "__main__":
    main()
