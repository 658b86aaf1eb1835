from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from wuflow.constants import DEFAULT_STATE_DIR, MAIN_BRANCH, ORIGIN_REMOTE, TEMP_BRANCH_PREFIX


class PushRetryConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    enabled: bool = True
    retries: int = Field(default=3, ge=1)
    min_delay_ms: int = Field(default=100, ge=0)
    max_delay_ms: int = Field(default=1000, ge=0)
    jitter: bool = True

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> "PushRetryConfig":
        if self.max_delay_ms < self.min_delay_ms:
            raise ValueError("max_delay_ms must be >= min_delay_ms")
        return self


class LocalLockConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    enabled: bool = True
    wait_seconds: float = Field(default=30.0, gt=0)
    stale_seconds: float = Field(default=300.0, gt=0)
    retry_seconds: float = Field(default=0.05, gt=0)


class GitSettings(BaseModel):
    model_config = ConfigDict(extra="allow")
    remote: str = ORIGIN_REMOTE
    main_branch: str = MAIN_BRANCH
    temp_branch_prefix: str = TEMP_BRANCH_PREFIX
    # False runs micro-worktree operations local-only: no fetch, no push.
    require_remote: bool = True
    merge_retries: int = Field(default=3, ge=1)
    push_retry: PushRetryConfig = PushRetryConfig()
    local_lock: LocalLockConfig = LocalLockConfig()


class FormatterConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    # Empty list disables formatting of micro-worktree files.
    command: List[str] = ["prettier", "--write"]


class StateConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    dir: str = DEFAULT_STATE_DIR


class WuflowConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    project_name: Optional[str] = None
    git: GitSettings = GitSettings()
    formatter: FormatterConfig = FormatterConfig()
    state: StateConfig = StateConfig()
