from typing import Optional

from core.errors import InvalidInputError

MIN_RATING = 0
MAX_RATING = 5

# Windows Explorer convention for the RatingPercent companion value.
RATING_TO_PERCENT = {0: 0, 1: 1, 2: 25, 3: 50, 4: 75, 5: 99}


def validate_rating(rating) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise InvalidInputError(f"Rating must be an integer, got {rating!r}")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise InvalidInputError(f"Rating must be in the range {MIN_RATING}-{MAX_RATING}, got {rating}")
    return rating


def rating_to_percent(rating: int) -> int:
    return RATING_TO_PERCENT[validate_rating(rating)]


def percent_to_rating(percent: int) -> Optional[int]:
    """Quantize a RatingPercent value to stars; None when outside 0-100."""
    if percent < 0 or percent > 100:
        return None
    if percent == 0:
        return 0
    if percent < 25:
        return 1
    if percent < 50:
        return 2
    if percent < 75:
        return 3
    if percent < 99:
        return 4
    return 5


def resolve_rating(rating: Optional[int], percent: Optional[int]) -> Optional[int]:
    """Prefer the direct rating, falling back to the quantized percent."""
    if rating is not None and MIN_RATING <= rating <= MAX_RATING:
        return rating
    if percent is not None:
        return percent_to_rating(percent)
    return None
