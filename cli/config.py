"""Configuration and storage utilities for CLI client."""

from pathlib import Path

# Local storage
TOKEN_FILE = Path.home() / ".streamchat" / "token"
SESSION_FILE = Path.home() / ".streamchat" / "session"


def save_token(token: str):
    """Save bearer token to local file."""
    TOKEN_FILE.parent.mkdir(parents=True, exist_ok=True)
    TOKEN_FILE.write_text(token)


def load_token() -> str | None:
    """Load bearer token from local file."""
    if TOKEN_FILE.exists():
        return TOKEN_FILE.read_text().strip()
    return None


def delete_token():
    """Delete bearer token file."""
    if TOKEN_FILE.exists():
        TOKEN_FILE.unlink()


def save_session(conversation_id: str):
    """Save current conversation ID to local file."""
    SESSION_FILE.parent.mkdir(parents=True, exist_ok=True)
    SESSION_FILE.write_text(conversation_id)


def load_session() -> str | None:
    """Load current conversation ID from local file."""
    if SESSION_FILE.exists():
        return SESSION_FILE.read_text().strip()
    return None


def delete_session():
    """Delete conversation ID file."""
    if SESSION_FILE.exists():
        SESSION_FILE.unlink()
