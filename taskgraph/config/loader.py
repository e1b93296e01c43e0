"""
Config Loader

Loads scheduler settings and declarative task graphs from YAML files.
Converts YAML graph specifications to TaskDef objects for GraphBuilder.
"""

import os
import yaml
from pathlib import Path
from typing import Any, List, Dict, Mapping, Optional
from pydantic import BaseModel, Field
import logging

from ..adapters.nats_client import NatsConfig
from ..dag.node import TaskDef

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


class RemoteSettings(BaseModel):
    """Connection to the distributed worker pool"""
    enabled: bool = False
    servers: List[str] = Field(default_factory=lambda: ["nats://localhost:4222"])
    client_name: str = "taskgraph"
    pool: str = "default"
    request_timeout: float = Field(default=30.0, gt=0)
    heartbeat_interval: float = Field(default=5.0, gt=0)

    def nats_config(self) -> NatsConfig:
        return NatsConfig(servers=list(self.servers), name=self.client_name)


class SchedulerSettings(BaseModel):
    """Settings for one Context (or one worker process)"""
    worker_id: str = "local"
    threads: int = Field(default_factory=lambda: os.cpu_count() or 1, ge=1)
    remote: RemoteSettings = Field(default_factory=RemoteSettings)
    functions: List[str] = Field(default_factory=list)  # "module:attribute" to register


class TaskConfig(BaseModel):
    """Configuration for a single named task"""
    id: str
    function: str
    args: List[Any] = Field(default_factory=list)
    kwargs: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list)
    remote: bool = False


class GraphConfig(BaseModel):
    """One YAML file of a graph definition"""
    name: str
    tasks: List[TaskConfig] = Field(default_factory=list)


class ConfigLoader:
    """
    Loads settings and graph definitions from a config directory.

    Layout:
        <config_dir>/scheduler.yaml          - SchedulerSettings (optional)
        <config_dir>/graphs/<name>/*.yaml    - GraphConfig files, merged

    Example usage:
        loader = ConfigLoader(Path("config"))
        settings = loader.load_settings()
        task_defs = loader.load_graph("etl")
    """

    SETTINGS_FILE = "scheduler.yaml"

    def __init__(self, config_dir: Path):
        """
        Initialize loader with config directory.

        Args:
            config_dir: Root config directory (contains graphs/ subdirectory)
        """
        self.config_dir = Path(config_dir)
        logger.info(f"Initialized ConfigLoader with config_dir: {self.config_dir}")

    def load_settings(self, env: Optional[Mapping[str, str]] = None) -> SchedulerSettings:
        """
        Load scheduler.yaml (if present) and apply environment overrides.

        Environment Variables:
            TASKGRAPH_WORKER_ID: worker_id
            TASKGRAPH_THREADS: threads
            TASKGRAPH_FUNCTIONS: comma-separated "module:attribute" list
            TASKGRAPH_REMOTE: enable remote dispatch ("1", "true", "yes", "on")
            TASKGRAPH_POOL: remote.pool
            NATS_SERVERS: comma-separated remote.servers

        Raises:
            ValueError: If the file or an override is invalid
        """
        env = os.environ if env is None else env
        path = self.config_dir / self.SETTINGS_FILE

        raw: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path) as f:
                    raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Failed to load {path}: {e}")
            logger.debug(f"Loaded settings from {path}")

        remote = dict(raw.get("remote") or {})

        if "TASKGRAPH_WORKER_ID" in env:
            raw["worker_id"] = env["TASKGRAPH_WORKER_ID"]
        if "TASKGRAPH_THREADS" in env:
            raw["threads"] = env["TASKGRAPH_THREADS"]
        if "TASKGRAPH_FUNCTIONS" in env:
            raw["functions"] = [
                p.strip() for p in env["TASKGRAPH_FUNCTIONS"].split(",") if p.strip()
            ]
        if "TASKGRAPH_REMOTE" in env:
            remote["enabled"] = env["TASKGRAPH_REMOTE"].strip().lower() in _TRUE_VALUES
        if "TASKGRAPH_POOL" in env:
            remote["pool"] = env["TASKGRAPH_POOL"]
        if "NATS_SERVERS" in env:
            remote["servers"] = [
                s.strip() for s in env["NATS_SERVERS"].split(",") if s.strip()
            ]
        raw["remote"] = remote

        try:
            settings = SchedulerSettings(**raw)
        except ValueError as e:
            raise ValueError(f"Invalid scheduler settings: {e}")

        logger.info(
            f"Loaded settings: worker_id={settings.worker_id}, "
            f"threads={settings.threads}, remote={settings.remote.enabled}"
        )
        return settings

    def load_graph(self, name: str) -> List[TaskDef]:
        """
        Load all YAML files for a graph and merge into a TaskDef list.

        Args:
            name: Graph name (directory under graphs/)

        Returns:
            List of TaskDef objects in definition order

        Raises:
            ValueError: If no config found, conflicts exist, or validation fails
        """
        graph_dir = self.config_dir / "graphs" / name

        if not graph_dir.exists():
            raise ValueError(
                f"No config directory for graph: {name}. "
                f"Expected: {graph_dir}"
            )

        yaml_files = sorted(graph_dir.glob("*.yaml"))
        if not yaml_files:
            raise ValueError(f"No YAML files found in {graph_dir}")

        logger.info(f"Loading {len(yaml_files)} YAML files for graph {name}")

        configs = []
        for yaml_file in yaml_files:
            try:
                with open(yaml_file) as f:
                    raw = yaml.safe_load(f) or {}
                config = GraphConfig(**raw)
            except Exception as e:
                logger.error(f"Failed to load {yaml_file}: {e}")
                raise ValueError(f"Failed to load {yaml_file}: {e}")

            if config.name != name:
                logger.warning(
                    f"Graph name mismatch in {yaml_file.name}: "
                    f"expected {name}, got {config.name}"
                )

            configs.append(config)
            logger.debug(f"Loaded {yaml_file.name}: {len(config.tasks)} tasks")

        task_defs = self._merge_configs(configs)

        logger.info(f"Loaded graph {name}: {len(task_defs)} total tasks")
        return task_defs

    def _merge_configs(self, configs: List[GraphConfig]) -> List[TaskDef]:
        """
        Merge multiple configs, validating uniqueness.

        Identical duplicate definitions are merged; conflicting ones are rejected.

        Raises:
            ValueError: If two files define the same id differently
        """
        merged: Dict[str, TaskConfig] = {}

        for config in configs:
            for task in config.tasks:
                if task.id in merged:
                    existing = merged[task.id]
                    if existing != task:
                        raise ValueError(
                            f"Conflicting definitions for task: {task.id}\n"
                            f"First: {existing}\n"
                            f"Second: {task}"
                        )
                    logger.debug(f"Task {task.id} already defined (identical), skipping")
                else:
                    merged[task.id] = task

        return [
            TaskDef(
                id=task.id,
                function=task.function,
                args=list(task.args),
                kwargs=dict(task.kwargs),
                depends_on=list(task.depends_on),
                remote=task.remote,
            )
            for task in merged.values()
        ]
