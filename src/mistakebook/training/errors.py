"""Training engine errors."""


class TrainingConfigError(Exception):
    """Raised when a training configuration is rejected."""
