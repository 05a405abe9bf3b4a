from collections.abc import Iterable

from rapidfuzz.distance import Levenshtein


def normalize_name(name: str) -> str:
    return " ".join(name.lower().split())


def similarity(a: str, b: str) -> int:
    longest = max(len(a), len(b))
    if longest == 0:
        return 100

    distance = Levenshtein.distance(a, b)
    # Floored so a score of 80 means the raw ratio reached 0.8.
    return (longest - distance) * 100 // longest


def best_name_score(name: str, candidates: Iterable[str]) -> int:
    target = normalize_name(name)
    if not target:
        # A blank manifest name must not pair with a blank passenger record.
        return 0

    best = 0
    for candidate in candidates:
        normalized = normalize_name(candidate)
        if normalized == target:
            return 100
        best = max(best, similarity(target, normalized))
    return best
