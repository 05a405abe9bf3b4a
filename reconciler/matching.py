from datetime import date
import logging
from typing import Protocol

from reconciler.schemas import MATCHED, PARTIAL, UNMATCHED, BookingCandidate, CanonicalRecord, MatchVerdict
from reconciler.similarity import best_name_score


logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 80
PARTIAL_THRESHOLD = 50

POLICY_FIRST = "first"
POLICY_BEST = "best"


class BookingLookup(Protocol):
    def find_booking_by_reference(self, reference: str) -> BookingCandidate | None: ...

    def find_bookings_by_flight_and_date(self, flight_number: str, day: date) -> list[BookingCandidate]: ...


class MatchEngine:
    """Exact reference first, then flight/date plus fuzzy name."""

    def __init__(self, lookup: BookingLookup, *, policy: str = POLICY_FIRST) -> None:
        if policy not in (POLICY_FIRST, POLICY_BEST):
            raise ValueError(f"unknown match policy: {policy!r}")
        self.lookup = lookup
        self.policy = policy

    def match(self, record: CanonicalRecord) -> MatchVerdict:
        if record.airline_reference:
            booking = self.lookup.find_booking_by_reference(record.airline_reference)
            if booking is not None:
                return MatchVerdict(
                    status=MATCHED,
                    score=100,
                    details={"matchType": "exact_reference"},
                    booking_id=booking.id,
                )

        if record.flight_number and record.flight_date is not None:
            candidates = self.lookup.find_bookings_by_flight_and_date(
                record.flight_number, record.flight_date.date()
            )
            verdict = self._match_candidates(record, candidates)
            if verdict is not None:
                return verdict

        return MatchVerdict(status=UNMATCHED, score=0, details={"reason": "no_match_found"})

    def _match_candidates(self, record: CanonicalRecord, candidates: list[BookingCandidate]) -> MatchVerdict | None:
        scored = [(candidate, best_name_score(record.passenger_name, candidate.passenger_names)) for candidate in candidates]
        logger.debug(
            "scored flight/date candidates",
            extra={"flight_number": record.flight_number, "candidates": len(scored)},
        )

        if self.policy == POLICY_BEST:
            chosen = max(scored, key=lambda pair: pair[1], default=None)
            if chosen is None or chosen[1] < PARTIAL_THRESHOLD:
                return None
            candidate, score = chosen
            status = MATCHED if score >= MATCH_THRESHOLD else PARTIAL
            return self._fuzzy_verdict(candidate, score, status, len(scored))

        for threshold, status in ((MATCH_THRESHOLD, MATCHED), (PARTIAL_THRESHOLD, PARTIAL)):
            for candidate, score in scored:
                if score >= threshold:
                    return self._fuzzy_verdict(candidate, score, status, len(scored))
        return None

    def _fuzzy_verdict(self, candidate: BookingCandidate, score: int, status: str, candidate_count: int) -> MatchVerdict:
        return MatchVerdict(
            status=status,
            score=score,
            details={
                "matchType": "flight_date_passenger" if status == MATCHED else "partial_match",
                "nameScore": score,
                "candidateCount": candidate_count,
            },
            booking_id=candidate.id,
        )
