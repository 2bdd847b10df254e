"""Write-command surface: schemas and the guarded processor."""

from vortex.commands.processor import CommandOutcome, CommandProcessor, command_fingerprint
from vortex.commands.schemas import Command, parse_command

__all__ = [
    "Command",
    "CommandOutcome",
    "CommandProcessor",
    "command_fingerprint",
    "parse_command",
]
