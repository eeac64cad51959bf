"""Post tool findings that fall inside a diff as code review comments."""

__version__ = "0.1.0"