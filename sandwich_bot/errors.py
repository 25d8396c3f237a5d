"""Base exception for the sandwich bot."""


class SandwichBotError(Exception):
    """Base error for the sandwich bot."""
    pass
