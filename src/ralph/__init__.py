"""Ralph: supervised multi-turn driver for CLI coding agents."""

__version__ = "0.1.0"
