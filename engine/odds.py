"""American odds conversions shared by the grader and detectors."""


def validate_american(american: int) -> int:
    """American odds are at least +100 or at most -100."""
    if -100 < american < 100:
        raise ValueError(f"Invalid American odds: {american}")
    return american


def payout_multiplier(american: int) -> float:
    """Profit per unit staked on a win."""
    if american >= 100:
        return american / 100
    return 100 / abs(american)


def implied_probability(american: int) -> float:
    """Implied win probability (0-1, vig included) from American odds."""
    if american < 0:
        return abs(american) / (abs(american) + 100)
    return 100 / (american + 100)
