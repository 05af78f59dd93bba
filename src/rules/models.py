from typing import Literal

from pydantic import BaseModel, Field


class ProjectRules(BaseModel):
    slug: str
    rules_version: str

class DedupeRules(BaseModel):
    strategy: Literal["session", "daily"] = "session"

class AggregationRules(BaseModel):
    interval_minutes: int = Field(default=30, ge=1)
    run_in_api: bool = False
    max_backfill_days: int = Field(default=366, ge=1)

class QueryRules(BaseModel):
    default_limit: int = Field(default=10, ge=1)
    max_limit: int = Field(default=100, ge=1)
    max_range_days: int = Field(default=366, ge=1)

class AnalyticsRules(BaseModel):
    enabled: bool = True
    anonymous_token_prefix: str = "anonymous"
    dedupe: DedupeRules = Field(default_factory=DedupeRules)
    aggregation: AggregationRules = Field(default_factory=AggregationRules)
    query: QueryRules = Field(default_factory=QueryRules)

class SecurityRules(BaseModel):
    admin_token_env: str = "ANALYTICS_ADMIN_TOKEN"
    read_permission: str = "ReadAnalytics"

class OpsRules(BaseModel):
    data_dir_required: bool = True
    required_env: list[str] = Field(default_factory=list)

class Rules(BaseModel):
    project: ProjectRules
    analytics: AnalyticsRules = Field(default_factory=AnalyticsRules)
    security: SecurityRules = Field(default_factory=SecurityRules)
    ops: OpsRules = Field(default_factory=OpsRules)
