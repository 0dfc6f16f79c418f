"""Chat and conversation command handlers."""

import httpx

from chat import ChatApiError, SignalingError, StreamChatError, StreamReadFailure

from ..config import delete_session, delete_token, save_session
from ..display import print_history


async def new_session(ctx):
    """Start a new conversation."""
    ctx.player.stop()
    ctx.messages.clear()

    if not ctx.logged_in:
        if ctx.session.mirror is not None:
            ctx.session.mirror.clear()
        print("\n✓ Started a new local conversation.\n")
        return

    try:
        conversation_id = await ctx.api.generate_conversation_id()
        save_session(conversation_id)
        print("\n✓ Conversation created successfully!")
        print(f"  Conversation ID: {conversation_id}\n")
    except httpx.ConnectError:
        print("Error: Could not connect to API server.")
        print("Please check STREAMCHAT_API_URL.\n")
    except httpx.HTTPStatusError as e:
        if e.response.status_code == 401:
            print("Error: Authentication failed. Please /login again.\n")
            delete_token()
        else:
            print(f"Error: Failed to create conversation: {e}\n")
    except ChatApiError as e:
        print(f"Error: Failed to create conversation: {e.message}\n")
    except httpx.HTTPError as e:
        print(f"Error: API request failed: {e}\n")
    else:
        await _reconnect_voice(ctx)


def view_history(ctx):
    """View the conversation so far."""
    print_history(ctx.messages)


async def send_message(ctx, text: str):
    """Submit a message and stream the answer."""
    if ctx.logged_in and not ctx.api.conversation_id:
        await new_session(ctx)
        if not ctx.api.conversation_id:
            return
    await _stream_turn(ctx, ctx.session.submit(text))


async def regenerate_answer(ctx, arg: str = ""):
    """Ask again for an earlier answer."""
    picked = ctx.pick_assistant(arg)
    if picked is None:
        return
    index, _ = picked
    await _stream_turn(ctx, ctx.session.regenerate(index))


async def _stream_turn(ctx, turn):
    try:
        await turn
    except StreamReadFailure as e:
        print()
        cause = e.__cause__
        if isinstance(cause, httpx.ConnectError):
            print("Error: Could not connect to API server.")
            print("Please check STREAMCHAT_API_URL.\n")
        elif isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 401:
            print("Error: Authentication failed. Please /login again.\n")
            delete_token()
            ctx.api.token = None
        elif isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 404:
            print("Error: Conversation not found. Use /new to start one.\n")
            delete_session()
            ctx.api.conversation_id = None
        else:
            print(f"Error: The answer was cut off: {e}\n")
    except ValueError as e:
        print(f"Error: {e}\n")
    except StreamChatError as e:
        print(f"\nError: {e}\n")


async def _reconnect_voice(ctx):
    # The audio socket is bound to one conversation.
    if ctx.signaling is None:
        return
    voice_on = ctx.relay is not None and ctx.relay.enabled
    await ctx.close_voice()
    if not voice_on:
        return
    try:
        relay = await ctx.open_voice()
    except SignalingError as e:
        print(f"Error: Voice output is off, the audio channel failed: {e}\n")
        return
    relay.enabled = True
    print("✓ Voice output reconnected.\n")
