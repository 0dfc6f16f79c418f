"""Main CLI client with REPL loop."""

import asyncio
import os

from dotenv import load_dotenv

from audio import PipeSink, StreamPlayer, VoiceArchive
from chat import ChatSession, LocalTranscriptMirror
from chat.observability import initialize_observability
from connectors.chat_api import ChatApiConnector

from .commands import (
    listen_file,
    login_user,
    logout_user,
    new_session,
    play_message,
    regenerate_answer,
    send_message,
    speak_message,
    stop_playback,
    toggle_voice,
    view_history,
)
from .config import load_session, load_token
from .display import TerminalRenderer, ThoughtPanel
from .state import ChatContext


def print_help():
    print("\nAuth Commands:")
    print("  /login - Login to an existing account")
    print("  /logout - Logout and keep chats locally")
    print("\nConversation Commands:")
    print("  /new - Start a new conversation")
    print("  /history - View the conversation so far")
    print("  /regenerate [n] - Ask again for answer n (default: the latest)")
    print("\nVoice Commands:")
    print("  /voice on|off - Speak answers as they stream")
    print("  /play [n] - Replay the audio of answer n")
    print("  /stop - Stop playback")
    print("  /speak [n] - Read answer n aloud")
    print("  /listen <file> - Send a voice recording as a message")
    print("\nUtility Commands:")
    print("  /clear - Clear the terminal screen")
    print("\nType 'exit' or 'quit' to end the conversation.\n")


def build_context() -> ChatContext:
    """Wire the session, connector and player from saved state."""
    token = load_token()
    api = ChatApiConnector(token=token, conversation_id=load_session() if token else None)

    mirror = None if token else LocalTranscriptMirror()
    messages = mirror.load() if mirror else []

    session = ChatSession(
        api.request,
        messages,
        handler=ThoughtPanel(),
        mirror=mirror,
        listeners=[TerminalRenderer()],
    )
    archive = VoiceArchive()
    player = StreamPlayer(PipeSink, archive)
    return ChatContext(api=api, session=session, archive=archive, player=player)


async def dispatch(ctx: ChatContext, user_input: str) -> bool:
    """Run one REPL line. Returns False when the user wants to leave."""
    command, _, arg = user_input.partition(" ")
    command = command.lower()
    arg = arg.strip()

    if command in ("exit", "quit"):
        return False

    if command == "/login":
        await login_user(ctx)
    elif command == "/logout":
        await logout_user(ctx)
    elif command == "/new":
        await new_session(ctx)
    elif command == "/history":
        view_history(ctx)
    elif command == "/regenerate":
        await regenerate_answer(ctx, arg)
    elif command == "/voice":
        await toggle_voice(ctx, arg.lower())
    elif command == "/play":
        await play_message(ctx, arg)
    elif command == "/stop":
        stop_playback(ctx)
    elif command == "/speak":
        await speak_message(ctx, arg)
    elif command == "/listen":
        await listen_file(ctx, arg)
    elif command == "/help":
        print_help()
    elif command == "/clear":
        # Clear terminal screen (cross-platform)
        os.system("cls" if os.name == "nt" else "clear")
    elif command.startswith("/"):
        print(f"Unknown command {command}. Type /help for the list.\n")
    else:
        await send_message(ctx, user_input)
    return True


async def run():
    ctx = build_context()
    print("Welcome to StreamChat CLI!")
    print_help()

    if ctx.logged_in:
        print("✓ You are already logged in.\n")
    else:
        print("⚠ You are not logged in. Chats are kept locally; /login to use your account.\n")
        if ctx.messages:
            print(f"Restored {len(ctx.messages)} local messages. Use /history to view them.\n")

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, "You: ")).strip()
            except EOFError:
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue
            if not await dispatch(ctx, user_input):
                print("\nGoodbye!")
                break
    finally:
        await ctx.close()


def main():
    """CLI client for the StreamChat bot API."""
    load_dotenv()
    initialize_observability()
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("\n\nGoodbye!")


if __name__ == "__main__":
    main()
