"""Export SQL Server schema objects to one script file per object."""

__version__ = "0.1.0"
