class ConfigurationError(ValueError):
    """
    Fatal error raised when the configuration or the input data make the analysis meaningless
    (empty matrix after filtering, unsupported method, non-positive module size, ...)
    """
    pass


class DataQualityWarning(UserWarning):
    """
    Recoverable data issue: genes or samples dropped, soft threshold fallback, undefined trait correlation
    """
    pass


class NumericalDegeneracyWarning(RuntimeWarning):
    """
    A zero-variance gene reached the correlation step; its correlations are set to zero
    """
    pass


class ComputationCancelled(RuntimeError):
    """
    Raised when the cancellation hook or the timeout stops a long matrix computation
    """
    pass
