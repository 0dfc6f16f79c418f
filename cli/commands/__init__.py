"""CLI command handlers."""

from .auth import login_user, logout_user
from .chat import new_session, regenerate_answer, send_message, view_history
from .voice import listen_file, play_message, speak_message, stop_playback, toggle_voice

__all__ = [
    # Auth commands
    "login_user",
    "logout_user",
    # Chat commands
    "new_session",
    "regenerate_answer",
    "send_message",
    "view_history",
    # Voice commands
    "listen_file",
    "play_message",
    "speak_message",
    "stop_playback",
    "toggle_voice",
]
