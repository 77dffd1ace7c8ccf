# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
flakebump Core - Init file

Exports the session building blocks: locator, oracle, patch generator,
apply engine and the follow-on action runner.
"""

from .actions import ActionRunner, CommandRunner
from .config import FlakeBumpConfig, get_config, load_config
from .engine import ApplyEngine, EngineState
from .exceptions import (
    ConfigError,
    ConfigValidationError,
    ExternalActionFailedError,
    FlakeBumpError,
    InputNotFoundError,
    OracleUnavailableError,
    PatternNotFoundError,
    SessionAborted,
    TargetError,
    TargetNotFoundError,
)
from .gcroots import scan_gcroots
from .locator import locate
from .models import (
    ApplyDecision,
    FlakeTarget,
    FollowOnAction,
    Hunk,
    Reference,
    SessionState,
    TargetLabel,
    UpdateProposal,
)
from .oracle import RevisionOracle, build_source
from .patch import generate_hunks
from .prompter import Prompter
from .session import SessionOrchestrator, SessionReport, TargetReport

__all__ = [
    # Session
    "SessionOrchestrator",
    "SessionReport",
    "TargetReport",
    "ApplyEngine",
    "EngineState",
    "ActionRunner",
    "CommandRunner",
    "Prompter",
    # Discovery and lookup
    "scan_gcroots",
    "locate",
    "RevisionOracle",
    "build_source",
    "generate_hunks",
    # Models
    "FlakeTarget",
    "TargetLabel",
    "Reference",
    "UpdateProposal",
    "Hunk",
    "ApplyDecision",
    "FollowOnAction",
    "SessionState",
    # Config
    "FlakeBumpConfig",
    "get_config",
    "load_config",
    # Errors
    "FlakeBumpError",
    "ConfigError",
    "ConfigValidationError",
    "TargetError",
    "TargetNotFoundError",
    "InputNotFoundError",
    "PatternNotFoundError",
    "OracleUnavailableError",
    "SessionAborted",
    "ExternalActionFailedError",
]
