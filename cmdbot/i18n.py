from __future__ import annotations

HELP_SUMMARY = "The following commands are currently supported:"

COMMAND_HELP: dict[str, str] = {
    "help": "Get command help",
    "new": "Start a new conversation",
    "start": "Get your ID and start a new conversation",
    "img": "Generate an image, the complete command format is `/img image description`, for example `/img beach at moonlight`",
    "version": "Get the current version number to determine whether to update",
    "setenv": "Set user configuration, the complete command format is /setenv KEY=VALUE",
    "setenvs": 'Batch set user configurations, the full format of the command is /setenvs {"KEY1": "VALUE1", "KEY2": "VALUE2"}',
    "delenv": "Delete user configuration, the complete command format is /delenv KEY",
    "clearenv": "Clear all user configuration",
    "system": "View some system information",
    "redo": "Redo the last conversation, /redo with modified content or directly /redo",
    "echo": "Echo the message",
}

NEW_CHAT_START = "A new conversation has started"


def command_help(command: str) -> str:
    return COMMAND_HELP.get(command.lstrip("/"), "")
