"""
Heuristic Scoring for alternative appointment slots.

Every alternative handed to the caller is already conflict-free; this module
only ranks them. The score is a confidence in [0.0, 1.0] that the patient
will accept the slot.
"""

from datetime import datetime
from typing import List, Optional

from homecare_models import AlternativeTimeSuggestion, PatientPreference
from .constraints import is_preferred_time


class SlotScorer:
    """Ranks conflict-free alternatives by preference fit and closeness to the request."""

    BASE_CONFIDENCE = 0.5
    PREFERENCE_BONUS = 0.3
    PENALTY_PER_HOUR = 0.02
    MAX_DISTANCE_PENALTY = 0.2

    def score(
        self,
        candidate: datetime,
        requested: datetime,
        duration_minutes: int,
        preference: Optional[PatientPreference]
    ) -> AlternativeTimeSuggestion:
        """Build the suggestion for one accepted candidate."""
        preferred = is_preferred_time(preference, candidate, duration_minutes)
        return AlternativeTimeSuggestion(
            scheduled_at=candidate,
            reason="Matches patient preferences" if preferred else "Available slot",
            is_preferred=preferred,
            confidence=self.confidence(candidate, requested, preferred)
        )

    def confidence(self, candidate: datetime, requested: datetime, preferred: bool) -> float:
        score = self.BASE_CONFIDENCE
        if preferred:
            score += self.PREFERENCE_BONUS

        # Whole hours away from the requested time, in either direction
        hours = int(abs((candidate - requested).total_seconds()) // 3600)
        score -= min(hours * self.PENALTY_PER_HOUR, self.MAX_DISTANCE_PENALTY)

        # Clamp result
        return round(max(0.0, min(1.0, score)), 4)

    @staticmethod
    def rank(suggestions: List[AlternativeTimeSuggestion], limit: int) -> List[AlternativeTimeSuggestion]:
        """Preferred first, then by confidence, then chronologically."""
        ordered = sorted(
            suggestions,
            key=lambda s: (not s.is_preferred, -s.confidence, s.scheduled_at)
        )
        return ordered[:limit]
