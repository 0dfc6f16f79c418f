"""Voice output and voice input command handlers."""

import httpx

from chat import AudioPermissionDenied, ChatApiError, SignalingError

from .chat import new_session, send_message


async def toggle_voice(ctx, arg: str = ""):
    """Turn spoken answers on or off."""
    if arg not in ("on", "off"):
        state = "on" if ctx.relay is not None and ctx.relay.enabled else "off"
        print(f"Voice output is {state}. Use /voice on or /voice off.\n")
        return

    if arg == "off":
        if ctx.relay is not None:
            ctx.relay.enabled = False
        print("\n✓ Voice output disabled.\n")
        return

    if not await _ensure_signaling(ctx):
        return
    ctx.relay.enabled = True
    print("\n✓ Voice output enabled.\n")


async def play_message(ctx, arg: str = ""):
    """Replay the audio of an answer."""
    picked = ctx.pick_assistant(arg)
    if picked is None:
        return
    _, message = picked
    if not message.session_ref or message.session_ref not in ctx.archive:
        print("Error: No audio for this answer yet. Try /speak.\n")
        return
    if not await ctx.player.play(message.session_ref):
        print("Error: Playback failed. Check AUDIO_PLAYER_COMMAND.\n")


def stop_playback(ctx):
    """Stop whatever is playing."""
    ctx.player.stop()
    print("\n✓ Playback stopped.\n")


async def speak_message(ctx, arg: str = ""):
    """Read an answer aloud, synthesizing it if needed."""
    picked = ctx.pick_assistant(arg)
    if picked is None:
        return
    _, message = picked
    if not await _ensure_signaling(ctx):
        return
    if not await ctx.relay.speak(message):
        print("Requested speech for this answer; it will play as it arrives.\n")


async def listen_file(ctx, path: str = ""):
    """Transcribe a recording and send the text as a message."""
    if not path:
        print("Error: Usage: /listen <audio file>\n")
        return
    if not ctx.logged_in:
        print("Error: You must be logged in to use voice input. Use /login.\n")
        return

    ctx.recording = True
    try:
        text = await ctx.api.voice_input_file(path)
    except AudioPermissionDenied as e:
        print(f"Error: {e}\n")
        return
    except ChatApiError as e:
        print(f"Error: Voice input failed: {e.message}\n")
        return
    except httpx.HTTPError as e:
        print(f"Error: Voice input failed: {e}\n")
        return
    finally:
        ctx.recording = False

    text = text.strip()
    if not text:
        print("Nothing was recognized.\n")
        return
    print(f"You (voice): {text}")
    await send_message(ctx, text)


async def _ensure_signaling(ctx) -> bool:
    if not ctx.logged_in:
        print("Error: You must be logged in to use voice. Use /login.\n")
        return False
    if (
        ctx.signaling is not None
        and ctx.signaling.is_open
        and ctx.signaling.session_id == ctx.api.conversation_id
    ):
        return True

    if not ctx.api.conversation_id:
        await new_session(ctx)
        if not ctx.api.conversation_id:
            return False

    try:
        await ctx.open_voice()
    except SignalingError as e:
        print(f"Error: Could not open the audio channel: {e}\n")
        return False
    return True
