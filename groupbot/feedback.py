from groupbot.constants import NEGATIVE_FEEDBACK_STEP, POSITIVE_FEEDBACK_STEP


def adjust_confidence(confidence: float, positive: bool) -> float:
    """
    Move a knowledge entry's confidence after a 👍/👎 reaction.

    The result is clamped to [0, 1] and rounded so repeated steps land on
    stable values (0.85, 0.7, ...) rather than drifting float sums.
    """
    step = POSITIVE_FEEDBACK_STEP if positive else -NEGATIVE_FEEDBACK_STEP
    return round(max(0.0, min(1.0, confidence + step)), 4)
