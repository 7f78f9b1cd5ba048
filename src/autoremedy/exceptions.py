"""Custom exceptions for the autoremedy repair pipeline."""


class AutoremedyError(Exception):
    """Base exception for all autoremedy errors."""

    pass


class ConfigError(AutoremedyError):
    """Exception raised when settings are missing or invalid."""

    pass


class RegistryError(AutoremedyError):
    """Exception raised when an error pattern or fix definition is invalid."""

    pass


class UnknownFixError(AutoremedyError):
    """Exception raised for a fix name the catalog has never heard of."""

    def __init__(self, fix_name: str):
        """
        Initialize unknown fix error.

        Args:
            fix_name: The fix name that failed to resolve
        """
        super().__init__(f"Unknown fix: {fix_name!r}")
        self.fix_name = fix_name


class InvalidTransitionError(AutoremedyError):
    """Exception raised for an illegal pipeline phase transition."""

    def __init__(self, current, target):
        super().__init__(f"Illegal phase transition: {current} -> {target}")
        self.current = current
        self.target = target


class RepairMemoryError(AutoremedyError):
    """Exception raised when the repair memory file cannot be written."""

    pass
