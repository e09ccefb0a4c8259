"""
ProgressSnapshot — immutable value for the five onboarding/production steps.

The only way two snapshots combine is ``merge`` (per-step OR), so a step
that any source has reported complete stays complete. ``merge`` is
idempotent, commutative and associative; reconciliation relies on that.
"""

from __future__ import annotations

from dataclasses import dataclass

from portal.models.client import MILESTONE_STEPS
from portal.models.progress import STEP_COUNT, STEP_NAMES


@dataclass(frozen=True)
class ProgressSnapshot:
    steps: tuple[bool, ...] = (False,) * STEP_COUNT

    def __post_init__(self):
        if len(self.steps) != STEP_COUNT:
            raise ValueError(f"ProgressSnapshot needs {STEP_COUNT} steps, got {len(self.steps)}")
        object.__setattr__(self, "steps", tuple(bool(s) for s in self.steps))

    # ── Construction ─────────────────────────────────────────────────────

    @classmethod
    def empty(cls) -> ProgressSnapshot:
        return cls()

    @classmethod
    def single(cls, step: int) -> ProgressSnapshot:
        """Snapshot with only ``step`` (1-based) completed."""
        if not isinstance(step, int) or isinstance(step, bool) or not 1 <= step <= STEP_COUNT:
            raise ValueError(f"step must be 1..{STEP_COUNT}")
        return cls(tuple(n == step for n in range(1, STEP_COUNT + 1)))

    @classmethod
    def from_mapping(cls, data: dict | None) -> ProgressSnapshot:
        """Build from ``{step_number: bool}``; keys may be ints or strings."""
        data = data or {}
        return cls(tuple(
            bool(data.get(n, data.get(str(n), False))) for n in range(1, STEP_COUNT + 1)
        ))

    @classmethod
    def from_milestones(cls, milestones: dict) -> ProgressSnapshot:
        """Server view: milestone flags cover steps 1–3; steps 4–5 stay False."""
        flags = [False] * STEP_COUNT
        for name, step in MILESTONE_STEPS.items():
            flags[step - 1] = bool(milestones.get(name))
        return cls(tuple(flags))

    # ── Lattice ──────────────────────────────────────────────────────────

    def merge(self, other: ProgressSnapshot) -> ProgressSnapshot:
        return ProgressSnapshot(tuple(a or b for a, b in zip(self.steps, other.steps)))

    __or__ = merge

    # ── Derived values ───────────────────────────────────────────────────

    @property
    def completed_count(self) -> int:
        return sum(self.steps)

    @property
    def current_step(self) -> int:
        return min(STEP_COUNT, self.completed_count + 1)

    def to_mapping(self) -> dict:
        return {str(n): flag for n, flag in enumerate(self.steps, start=1)}

    def to_dict(self) -> dict:
        return {
            "steps": list(self.steps),
            "current_step": self.current_step,
            "current_step_name": STEP_NAMES[self.current_step],
        }
