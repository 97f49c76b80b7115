"""
flowgraph - Command-Line Entry Point

Loads a serialized DAG, runs it once and prints the exit outputs as JSON.

Usage:
    flowgraph pipeline.yaml --input '{"query": "hello"}' --config run.yaml
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from ..config.loader import DAGLoader
from ..config.settings import RunConfig, merge_configs
from ..dag.registry import NodeRegistry
from ..errors import RunError, StructuralError
from ..events import LoggingSink
from ..nodes.builtin import register_builtin_nodes
from .coordinator import RunCoordinator

logger = logging.getLogger(__name__)


def setup_node_registry() -> NodeRegistry:
    """
    Set up node registry and register all available node types.

    Returns:
        Configured NodeRegistry with the built-in node types registered
    """
    registry = register_builtin_nodes(NodeRegistry())
    logger.info(f"Registered {len(registry.list_types())} node types: {registry.list_types()}")
    return registry


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowgraph",
        description="Run a DAG described in a YAML or JSON file",
    )
    parser.add_argument("dag_file", type=Path, help="Serialized DAG (YAML or JSON)")
    parser.add_argument(
        "--input", dest="initial_input", default=None,
        help="Initial input as JSON (default: null)",
    )
    parser.add_argument(
        "--config", type=Path, default=None,
        help="Run config YAML, merged over FLOWGRAPH_* environment variables",
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser


async def main(dag_file: Path, initial_input=None, config_file: Optional[Path] = None) -> int:
    """
    Load, run and print one DAG.

    Args:
        dag_file: Serialized DAG path
        initial_input: Decoded initial input
        config_file: Optional run config YAML

    Returns:
        Process exit code (0 on success, 1 on a failed run)
    """
    config = merge_configs(
        RunConfig.from_env(),
        RunConfig.from_yaml(config_file) if config_file else None,
    )
    logger.info(f"Environment: {config.environment}")

    loader = DAGLoader(setup_node_registry())
    dag = loader.load_file(dag_file)

    coordinator = RunCoordinator(config, sink=LoggingSink())
    try:
        result = await coordinator.run(dag, initial_input)
    except StructuralError as e:
        for error in e.errors:
            logger.error(f"Invalid DAG: {error}")
        return 1
    except RunError as e:
        logger.error(f"Run failed: {e}", exc_info=e.cause)
        return 1

    print(json.dumps(result.outputs, indent=2, default=str))
    return 0


def cli(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        initial_input = json.loads(args.initial_input) if args.initial_input is not None else None
    except json.JSONDecodeError as e:
        logger.error(f"--input is not valid JSON: {e}")
        return 1

    try:
        return asyncio.run(main(args.dag_file, initial_input, args.config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(cli())
