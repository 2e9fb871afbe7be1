"""Error taxonomy for the comorbidity selection pipeline.

Errors raised inside a single (strategy, family, cohort) unit are caught by the
unit runner and recorded in the run manifest. Partitioning errors and input
read errors are fatal to the whole run.
"""


class SelectionError(Exception):
    """Base class for all pipeline errors."""


class InvalidFractionError(SelectionError, ValueError):
    """Train fraction outside the open interval (0, 1)."""


class EmptyInputError(SelectionError, ValueError):
    """Patient table has no rows, or no usable cohort column."""


class NoMatchingColumnsError(SelectionError, ValueError):
    """No indicator columns match the requested predictor family."""


class FitDivergenceError(SelectionError, RuntimeError):
    """A logistic regression fit failed to converge."""


class DegenerateFoldError(SelectionError, ValueError):
    """A cross-validation fold lacks positive or negative outcomes."""


class InsufficientPredictorsError(SelectionError, ValueError):
    """The family yields no candidate predictors for the model."""


class IOFailureError(SelectionError, OSError):
    """Reading an input file or writing an export failed."""
