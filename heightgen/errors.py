"""Exceptions raised by the height-field reconstruction pipeline."""


class ImageShapeError(ValueError):
    """An image field has malformed dimensions or does not match its counterpart."""


class SolverSetupError(RuntimeError):
    """The sparse linear system could not be assembled for a solve."""
