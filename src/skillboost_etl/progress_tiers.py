"""skillboost_etl.progress_tiers

YAML-based progress tier policy for display.

Responsibilities:
  - Load and validate tier policy files from config/progress_tiers/*.yml
  - Classify a participant's (badges, arcade games) into a tier
  - Compute the badges remaining to the tier's next milestone
  - Bucket a roster into a tier distribution
  - Hash YAML content for traceability

Usage:
    from pathlib import Path
    from skillboost_etl.progress_tiers import load_tier_policy

    policy = load_tier_policy(Path("config/progress_tiers/default.yml"))
    result = policy.classify(skill_badges=16, arcade_games=0)
    # result.key == "almost_there", result.remaining == 3

Tiers are checked in file order and the first match wins, so the most
demanding tier goes first.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import yaml

from skillboost_etl.models import Participant

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REQUIRED_YAML_KEYS = frozenset({"version", "total_skill_badges", "tiers", "default_tier"})

REQUIRED_TIER_KEYS = frozenset({"key", "label", "min_badges"})

OPTIONAL_TIER_KEYS = frozenset({"max_badges", "min_arcade_games", "next_milestone"})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class TierPolicyValidationError(ValueError):
    """Raised when a YAML tier policy fails schema validation."""


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Tier:
    key: str
    label: str
    min_badges: int
    max_badges: int | None = None
    min_arcade_games: int = 0
    next_milestone: int | None = None

    def matches(self, skill_badges: int, arcade_games: int) -> bool:
        if skill_badges < self.min_badges:
            return False
        if self.max_badges is not None and skill_badges > self.max_badges:
            return False
        return arcade_games >= self.min_arcade_games


@dataclass(frozen=True)
class TierResult:
    key: str
    label: str
    remaining: int | None = None


@dataclass
class TierPolicy:
    """Parsed, validated tier policy loaded from a YAML file."""

    version: str
    total_skill_badges: int
    tiers: list[Tier]
    default_tier: TierResult
    yaml_hash: str = ""
    raw_yaml: str = field(repr=False, default="")

    def classify(self, skill_badges: int, arcade_games: int) -> TierResult:
        for tier in self.tiers:
            if tier.matches(skill_badges, arcade_games):
                remaining = None
                if tier.next_milestone is not None:
                    remaining = max(0, tier.next_milestone - skill_badges)
                return TierResult(tier.key, tier.label, remaining)
        return self.default_tier

    def classify_participant(self, participant: Participant) -> TierResult:
        return self.classify(participant.skill_badges_count, participant.arcade_games_count)

    def distribution(self, participants: Iterable[Participant]) -> dict[str, int]:
        """Count participants per tier key, every tier present (default last)."""
        counts = {t.key: 0 for t in self.tiers}
        counts.setdefault(self.default_tier.key, 0)
        for p in participants:
            counts[self.classify_participant(p).key] += 1
        return counts


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_tier_policy(yaml_path: Path) -> TierPolicy:
    """Load, validate, and return a TierPolicy from a YAML file.

    Raises:
        TierPolicyValidationError: If any required field is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    return parse_tier_policy(raw)


def parse_tier_policy(raw: str) -> TierPolicy:
    data: Any = yaml.safe_load(raw)
    validate_tier_policy(data)
    default = data["default_tier"]
    return TierPolicy(
        version=str(data["version"]),
        total_skill_badges=int(data["total_skill_badges"]),
        tiers=[
            Tier(
                key=str(t["key"]),
                label=str(t["label"]),
                min_badges=int(t["min_badges"]),
                max_badges=int(t["max_badges"]) if t.get("max_badges") is not None else None,
                min_arcade_games=int(t.get("min_arcade_games") or 0),
                next_milestone=(
                    int(t["next_milestone"]) if t.get("next_milestone") is not None else None
                ),
            )
            for t in data["tiers"]
        ],
        default_tier=TierResult(str(default["key"]), str(default.get("label") or "")),
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
        raw_yaml=raw,
    )


def _non_negative_int(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TierPolicyValidationError(f"{where} value {value!r} is not an integer.")
    if value < 0:
        raise TierPolicyValidationError(f"{where} value {value} must be >= 0.")
    return value


def validate_tier_policy(data: Any) -> None:
    """Raise TierPolicyValidationError if data does not match the required schema.

    Validates:
      - Required top-level keys present
      - tiers is a non-empty list with unique keys
      - integer bounds are non-negative and min_badges <= max_badges
      - next_milestone, when given, is above min_badges
    """
    if not isinstance(data, dict):
        raise TierPolicyValidationError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise TierPolicyValidationError(f"Missing required YAML keys: {sorted(missing_keys)}")

    _non_negative_int(data["total_skill_badges"], "total_skill_badges")

    default = data["default_tier"]
    if not isinstance(default, dict) or not default.get("key"):
        raise TierPolicyValidationError("'default_tier' must be a mapping with a 'key'.")

    tiers = data["tiers"]
    if not isinstance(tiers, list) or not tiers:
        raise TierPolicyValidationError("'tiers' must be a non-empty list.")

    seen: set[str] = {str(default["key"])}
    for idx, tier in enumerate(tiers):
        if not isinstance(tier, dict):
            raise TierPolicyValidationError(f"tier #{idx} must be a mapping.")
        missing = REQUIRED_TIER_KEYS - set(tier.keys())
        if missing:
            raise TierPolicyValidationError(f"tier #{idx} missing keys: {sorted(missing)}")
        unknown = set(tier.keys()) - REQUIRED_TIER_KEYS - OPTIONAL_TIER_KEYS
        if unknown:
            raise TierPolicyValidationError(f"tier #{idx} has unknown keys: {sorted(unknown)}")
        key = str(tier["key"])
        if key in seen:
            raise TierPolicyValidationError(f"duplicate tier key '{key}'.")
        seen.add(key)

        lo = _non_negative_int(tier["min_badges"], f"tier '{key}' min_badges")
        if tier.get("max_badges") is not None:
            hi = _non_negative_int(tier["max_badges"], f"tier '{key}' max_badges")
            if hi < lo:
                raise TierPolicyValidationError(
                    f"tier '{key}' max_badges ({hi}) must be >= min_badges ({lo})."
                )
        if tier.get("min_arcade_games") is not None:
            _non_negative_int(tier["min_arcade_games"], f"tier '{key}' min_arcade_games")
        if tier.get("next_milestone") is not None:
            nxt = _non_negative_int(tier["next_milestone"], f"tier '{key}' next_milestone")
            if nxt <= lo:
                raise TierPolicyValidationError(
                    f"tier '{key}' next_milestone ({nxt}) must be > min_badges ({lo})."
                )
