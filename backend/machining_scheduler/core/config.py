import warnings
from datetime import time
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self

WEIGHT_SUM_TOLERANCE = 0.01


def parse_weekdays(v: Any) -> list[int] | Any:
    if isinstance(v, str) and not v.startswith("["):
        return [int(i.strip()) for i in v.split(",") if i.strip()]
    return v


def parse_breaks(v: Any) -> list[tuple[str, str]] | Any:
    # "12:00-13:00,15:00-15:15"
    if isinstance(v, str) and not v.startswith("["):
        breaks = []
        for chunk in v.split(","):
            if not chunk.strip():
                continue
            start, end = chunk.split("-")
            breaks.append((start.strip(), end.strip()))
        return breaks
    return v


class _Weights(BaseModel):
    """Shared behaviour for weight sets that are expected to sum to 1.0."""

    def total(self) -> float:
        return sum(self.model_dump().values())

    @model_validator(mode="after")
    def _warn_on_unbalanced_weights(self) -> Self:
        total = self.total()
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            warnings.warn(
                f"{self.__class__.__name__} sum to {total:.3f}, expected 1.0",
                UserWarning,
                stacklevel=2,
            )
        return self


class PriorityWeights(_Weights):
    due_date: float = Field(default=0.4, ge=0)
    customer: float = Field(default=0.3, ge=0)
    dependency: float = Field(default=0.2, ge=0)
    setup: float = Field(default=0.1, ge=0)


class MatchingWeights(_Weights):
    capability: float = Field(default=0.4, ge=0)
    load_balance: float = Field(default=0.3, ge=0)
    setup: float = Field(default=0.2, ge=0)
    efficiency: float = Field(default=0.1, ge=0)


class BreakWindow(BaseModel):
    start: time
    end: time

    @model_validator(mode="after")
    def _check_order(self) -> Self:
        if self.end <= self.start:
            raise ValueError("break end must be after break start")
        return self


class AvailabilityConfig(BaseModel):
    """Facility calendar used by slot search when a machine has no override."""

    start_time: time = time(8, 0)
    end_time: time = time(17, 0)
    # ISO weekday numbers, Monday=1 .. Sunday=7
    working_days: frozenset[int] = frozenset({1, 2, 3, 4, 5})
    break_times: list[BreakWindow] = Field(
        default_factory=lambda: [BreakWindow(start=time(12, 0), end=time(13, 0))]
    )
    buffer_time_percentage: float = Field(default=10.0, ge=0)
    search_horizon_days: int = Field(default=14, ge=1, le=30)
    multi_day_horizon_days: int = Field(default=30, ge=1, le=60)
    max_slots: int = Field(default=5, ge=1, le=10)
    after_hours_start: time = time(6, 0)
    after_hours_end: time = time(22, 0)


class EmergencySettings(BaseModel):
    allow_emergency_after_hours: bool = True
    allow_emergency_weekends: bool = True
    emergency_start_time: time = time(6, 0)
    emergency_end_time: time = time(22, 0)
    require_approval_for_emergency: bool = True
    emergency_approvers: list[str] = Field(default_factory=list)
    max_consecutive_emergency_hours: int = Field(default=16, ge=1, le=24)
    search_horizon_days: int = Field(default=7, ge=1, le=14)
    max_slots: int = Field(default=10, ge=1, le=20)


class SchedulingOptions(BaseModel):
    """Per-run switches for the orchestrators."""

    apply_buffer: bool = False
    allow_after_hours: bool = False
    allow_weekends: bool = False
    utilization_baseline_hours: float = Field(default=8.0, gt=0)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "Machining Scheduler"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "console"
    DATABASE_URL: str = "sqlite://"

    WORKING_HOURS_START: time = time(8, 0)
    WORKING_HOURS_END: time = time(17, 0)
    WORKING_DAYS: Annotated[list[int] | str, BeforeValidator(parse_weekdays)] = [
        1,
        2,
        3,
        4,
        5,
    ]
    BREAK_TIMES: Annotated[
        list[tuple[time, time]] | str, BeforeValidator(parse_breaks)
    ] = [(time(12, 0), time(13, 0))]
    BUFFER_TIME_PERCENTAGE: float = 10.0
    SEARCH_HORIZON_DAYS: int = 14
    MULTI_DAY_HORIZON_DAYS: int = 30
    MAX_SLOTS: int = 5

    PRIORITY_WEIGHT_DUE_DATE: float = 0.4
    PRIORITY_WEIGHT_CUSTOMER: float = 0.3
    PRIORITY_WEIGHT_DEPENDENCY: float = 0.2
    PRIORITY_WEIGHT_SETUP: float = 0.1

    MATCH_WEIGHT_CAPABILITY: float = 0.4
    MATCH_WEIGHT_LOAD_BALANCE: float = 0.3
    MATCH_WEIGHT_SETUP: float = 0.2
    MATCH_WEIGHT_EFFICIENCY: float = 0.1

    EMERGENCY_ALLOW_AFTER_HOURS: bool = True
    EMERGENCY_ALLOW_WEEKENDS: bool = True
    EMERGENCY_REQUIRE_APPROVAL: bool = True
    EMERGENCY_MAX_CONSECUTIVE_HOURS: int = 16

    @model_validator(mode="after")
    def _check_working_window(self) -> Self:
        if self.WORKING_HOURS_END <= self.WORKING_HOURS_START:
            raise ValueError("WORKING_HOURS_END must be after WORKING_HOURS_START")
        invalid_days = [d for d in self.WORKING_DAYS if d < 1 or d > 7]
        if invalid_days:
            raise ValueError(f"WORKING_DAYS must be ISO weekdays 1-7: {invalid_days}")
        return self

    def availability_config(self) -> AvailabilityConfig:
        return AvailabilityConfig(
            start_time=self.WORKING_HOURS_START,
            end_time=self.WORKING_HOURS_END,
            working_days=frozenset(self.WORKING_DAYS),
            break_times=[
                BreakWindow(start=start, end=end) for start, end in self.BREAK_TIMES
            ],
            buffer_time_percentage=self.BUFFER_TIME_PERCENTAGE,
            search_horizon_days=self.SEARCH_HORIZON_DAYS,
            multi_day_horizon_days=self.MULTI_DAY_HORIZON_DAYS,
            max_slots=self.MAX_SLOTS,
        )

    def priority_weights(self) -> PriorityWeights:
        return PriorityWeights(
            due_date=self.PRIORITY_WEIGHT_DUE_DATE,
            customer=self.PRIORITY_WEIGHT_CUSTOMER,
            dependency=self.PRIORITY_WEIGHT_DEPENDENCY,
            setup=self.PRIORITY_WEIGHT_SETUP,
        )

    def matching_weights(self) -> MatchingWeights:
        return MatchingWeights(
            capability=self.MATCH_WEIGHT_CAPABILITY,
            load_balance=self.MATCH_WEIGHT_LOAD_BALANCE,
            setup=self.MATCH_WEIGHT_SETUP,
            efficiency=self.MATCH_WEIGHT_EFFICIENCY,
        )

    def emergency_settings(self) -> EmergencySettings:
        return EmergencySettings(
            allow_emergency_after_hours=self.EMERGENCY_ALLOW_AFTER_HOURS,
            allow_emergency_weekends=self.EMERGENCY_ALLOW_WEEKENDS,
            require_approval_for_emergency=self.EMERGENCY_REQUIRE_APPROVAL,
            max_consecutive_emergency_hours=self.EMERGENCY_MAX_CONSECUTIVE_HOURS,
        )


settings = Settings()
