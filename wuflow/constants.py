"""Shared names for branches, remotes, files, and environment variables."""

from __future__ import annotations

MAIN_BRANCH = "main"
ORIGIN_REMOTE = "origin"
TEMP_BRANCH_PREFIX = "tmp/"

CONFIG_FILENAME = ".wuflow.yaml"
DEFAULT_STATE_DIR = ".wuflow/state"
WU_EVENTS_FILE_NAME = "wu-events.jsonl"
DELEGATION_REGISTRY_FILE_NAME = "delegation-registry.jsonl"
PIPELINE_SNAPSHOT_DIR = "pipeline"
# Untracked runtime state kept under the git common dir.
GIT_STATE_DIR = "wuflow"

# Set around micro-worktree pushes so protect-main hooks let the sanctioned writer through.
FORCE_ENV = "WUFLOW_FORCE"
FORCE_REASON_ENV = "WUFLOW_FORCE_REASON"
WU_TOOL_ENV = "WUFLOW_WU_TOOL"

LOG_LEVEL_ENV = "WUFLOW_LOG_LEVEL"
LOG_FORMAT_ENV = "WUFLOW_LOG_FORMAT"
