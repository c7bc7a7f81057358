"""DEX buy tracker - live swap alerts for configured tokens across EVM chains."""

__version__ = "0.1.0"
