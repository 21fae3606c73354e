"""
Error taxonomy for the edge engine.

Nothing here terminates a whole aggregation: callers isolate these per unit
and report them alongside whatever results did complete.
"""


class EdgeEngineError(Exception):
    """Base class for engine errors."""


class IncompleteResult(EdgeEngineError):
    """Grading was attempted before the game reached a final score."""

    def __init__(self, game_id: str, status: str):
        self.game_id = game_id
        self.status = status
        super().__init__(f"Game {game_id} is not final (status={status})")


class InsufficientData(EdgeEngineError):
    """Too few snapshots or splits to evaluate a detector."""


class DataSourceUnavailable(EdgeEngineError):
    """The historical store (or another collaborator) failed or timed out."""


class InvalidPredicate(EdgeEngineError, ValueError):
    """A trend rule predicate references an unknown feature, op or operand."""


class InvalidSeries(EdgeEngineError, ValueError):
    """Line snapshots in one book series are not strictly time-ordered."""


class PickAlreadyGraded(EdgeEngineError):
    """A pick can move from pending to graded only once."""

    def __init__(self, pick_id: str):
        self.pick_id = pick_id
        super().__init__(f"Pick {pick_id} has already been graded")
