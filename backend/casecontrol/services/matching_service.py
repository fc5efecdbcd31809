import json
from typing import Optional

import pandas as pd

from ..core.config import Settings, settings as default_settings
from ..matching.orchestrator import MatchOrchestrator
from ..schemas.matching import MatchRequest, MatchResponse, load_match_config


class MatchingService:
    """
    Runs matching requests that arrive as JSON records.

    Converts records to tables, runs the orchestrator and converts the
    matched-set table back to JSON-safe records (ISO dates, nulls).
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.orchestrator = MatchOrchestrator(self.settings)

    def match(self, request: MatchRequest) -> MatchResponse:
        options = request.model_dump(exclude={"cases", "control_pool"})
        config = load_match_config(**options)

        cases = pd.DataFrame.from_records(request.cases)
        control_pool = pd.DataFrame.from_records(request.control_pool)
        result = self.orchestrator.run(cases, control_pool, config)

        rows = json.loads(result.table.to_json(orient="records", date_format="iso"))
        return MatchResponse(
            rows=rows,
            shortfalls={str(case_id): missing for case_id, missing in result.shortfalls.items()},
            n_cases=result.n_cases,
            n_matched_controls=result.n_matched_controls,
        )


matching_service = MatchingService()
