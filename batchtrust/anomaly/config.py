import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Tuple

from dotenv import load_dotenv

from batchtrust.anomaly import thresholds

load_dotenv()

logger = logging.getLogger("batchtrust.anomaly")


def _norm(location: str) -> str:
    return " ".join(location.strip().lower().split())


@dataclass(frozen=True)
class RuleConfig:
    """
    Thresholds and optional reference data for the rule catalogue.

    Location checks that need geography are off unless data is supplied:
    `travel_times` enables the minimum travel time check and
    `route_allowlist` enables the expected route check.
    """
    pending_max_hours: float = thresholds.PENDING_MAX_HOURS
    pending_high_multiplier: float = thresholds.PENDING_HIGH_MULTIPLIER
    in_transit_max_hours: float = thresholds.IN_TRANSIT_MAX_HOURS
    event_gap_max_hours: float = thresholds.EVENT_GAP_MAX_HOURS
    expiry_warning_days: int = thresholds.EXPIRY_WARNING_DAYS
    max_quantity: int = thresholds.MAX_QUANTITY
    travel_times: Dict[FrozenSet[str], float] = field(default_factory=dict)
    route_allowlist: Optional[FrozenSet[str]] = None

    @staticmethod
    def build_travel_times(pairs: Dict[Tuple[str, str], float]) -> Dict[FrozenSet[str], float]:
        """
        Normalises {(a, b): hours} into a symmetric, case-insensitive table.
        """
        return {frozenset({_norm(a), _norm(b)}): float(hours) for (a, b), hours in pairs.items()}

    @staticmethod
    def build_allowlist(locations) -> FrozenSet[str]:
        return frozenset(_norm(loc) for loc in locations)

    def min_travel_hours(self, origin: str, destination: str) -> Optional[float]:
        if not self.travel_times:
            return None
        return self.travel_times.get(frozenset({_norm(origin), _norm(destination)}))

    def is_on_route(self, location: str) -> bool:
        if self.route_allowlist is None:
            return True
        return _norm(location) in self.route_allowlist

    @classmethod
    def from_env(cls) -> "RuleConfig":
        """
        Reads BATCHTRUST_* overrides. BATCHTRUST_LOCATION_RULES_FILE points to
        a JSON document:

            {"travel_times": [{"from": "Mumbai", "to": "Delhi", "hours": 20}],
             "route_allowlist": ["Mumbai", "Delhi"]}
        """
        travel_times: Dict[FrozenSet[str], float] = {}
        allowlist = None

        rules_file = os.getenv("BATCHTRUST_LOCATION_RULES_FILE")
        if rules_file:
            path = Path(rules_file)
            if not path.exists():
                raise FileNotFoundError(f"Location rules file not found: {rules_file}")
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            travel_times = cls.build_travel_times({
                (entry["from"], entry["to"]): entry["hours"]
                for entry in data.get("travel_times", [])
            })
            if data.get("route_allowlist") is not None:
                allowlist = cls.build_allowlist(data["route_allowlist"])
            logger.info(
                f"Loaded location rules: {len(travel_times)} travel times, "
                f"allowlist={'on' if allowlist is not None else 'off'}"
            )

        return cls(
            pending_max_hours=float(os.getenv("BATCHTRUST_PENDING_HOURS", thresholds.PENDING_MAX_HOURS)),
            in_transit_max_hours=float(os.getenv("BATCHTRUST_TRANSIT_HOURS", thresholds.IN_TRANSIT_MAX_HOURS)),
            event_gap_max_hours=float(os.getenv("BATCHTRUST_GAP_HOURS", thresholds.EVENT_GAP_MAX_HOURS)),
            expiry_warning_days=int(os.getenv("BATCHTRUST_EXPIRY_WARNING_DAYS", thresholds.EXPIRY_WARNING_DAYS)),
            max_quantity=int(os.getenv("BATCHTRUST_MAX_QUANTITY", thresholds.MAX_QUANTITY)),
            travel_times=travel_times,
            route_allowlist=allowlist,
        )
