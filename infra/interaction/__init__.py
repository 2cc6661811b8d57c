from .console_operator_channel import ConsoleOperatorChannel

__all__ = ["ConsoleOperatorChannel"]
