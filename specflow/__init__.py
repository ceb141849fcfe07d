"""SpecFlow - spec workflow engine (requirements, design, tasks)."""

__version__ = "0.1.0"
