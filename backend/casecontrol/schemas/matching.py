from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.exceptions import ConfigurationError


class MatchingMethod(str, Enum):
    """Consistency discipline used when sampling controls."""
    INCIDENCE_DENSITY = "incidence_density"  # pool fixed for the run, controls reusable
    EXACT = "exact"                          # assigned controls leave the pool


class MatchOptions(BaseModel):
    """Serializable matching options shared by the engine and the HTTP API."""
    model_config = ConfigDict(extra="forbid")

    n_controls: int = Field(..., gt=0, description="Target number of controls per case")
    match_vars: List[str] = Field(..., min_length=1, description="Columns matched by exact equality")
    extra_vars: List[str] = Field(default_factory=list, description="Columns carried to the output")
    extra_conditions: Optional[str] = Field(
        None, description="Restricted boolean expression over case.* and control.* fields"
    )
    method: MatchingMethod = MatchingMethod.INCIDENCE_DENSITY
    index_date_field: Optional[str] = Field(None, description="Case index/diagnosis date column")
    control_date_field: Optional[str] = Field(
        None, description="Control event date column (defaults to index_date_field)"
    )
    id_field: Optional[str] = Field(None, description="Record identifier column")
    cores: Optional[int] = Field(None, gt=0, description="Worker processes (incidence_density only)")
    seed: Optional[int] = None

    @field_validator("match_vars", "extra_vars")
    @classmethod
    def _unique_names(cls, names: List[str]) -> List[str]:
        seen = []
        for name in names:
            if not isinstance(name, str) or not name.strip():
                raise ValueError("column names must be non-empty strings")
            if name not in seen:
                seen.append(name)
        return seen


class MatchConfig(MatchOptions):
    """Full run configuration, including the progress observer."""
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    track: bool = False
    tracker: Optional[Callable[[int, Any], None]] = Field(default=None, exclude=True)


class MatchRequest(MatchOptions):
    """Request body for the matching endpoint."""
    cases: List[Dict[str, Any]] = Field(..., description="Case records")
    control_pool: List[Dict[str, Any]] = Field(..., description="Candidate control records")


class MatchResponse(BaseModel):
    """Matched-set table returned by the matching endpoint."""
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    shortfalls: Dict[str, int] = Field(default_factory=dict)
    n_cases: int = 0
    n_matched_controls: int = 0


def load_match_config(**options: Any) -> MatchConfig:
    """
    Build a MatchConfig, reporting invalid options as ConfigurationError.

    Example:
        config = load_match_config(n_controls=4, match_vars=["sex", "yob"])
    """
    try:
        return MatchConfig(**options)
    except ValidationError as e:
        problems = []
        for error in e.errors():
            location = ".".join(str(part) for part in error.get("loc", ())) or "config"
            problems.append(f"{location}: {error.get('msg')}")
        first_column = None
        if e.errors() and e.errors()[0].get("loc"):
            first_column = str(e.errors()[0]["loc"][0])
        raise ConfigurationError(
            "Invalid matching configuration: " + "; ".join(problems),
            column=first_column,
        ) from e
