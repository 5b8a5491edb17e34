"""kreep: a local credential vault that hands out sealed, short-lived capsules."""

__version__ = "0.1.0"
