"""Authentication command handlers."""

import asyncio
import getpass

import httpx

from chat import ChatApiError, LocalTranscriptMirror

from ..config import delete_session, delete_token, save_token


async def login_user(ctx):
    """Handle user login."""
    print("\n=== User Login ===")
    account = (await asyncio.to_thread(input, "Account: ")).strip()
    password = await asyncio.to_thread(getpass.getpass, "Password: ")

    if not account or not password:
        print("Error: Account and password are required.\n")
        return

    try:
        data = await ctx.api.login(account, password)

        # Save token
        save_token(data["token"])

        # Authenticated conversations live on the server
        ctx.session.mirror = None

        print("\n✓ Login successful!")
        print(f"  Welcome back, {data.get('nickname') or account}!\n")
    except httpx.ConnectError:
        print("Error: Could not connect to API server.")
        print("Please check STREAMCHAT_API_URL.\n")
    except httpx.HTTPStatusError as e:
        if e.response.status_code == 401:
            print("Error: Invalid credentials.\n")
        elif e.response.status_code == 403:
            print("Error: Your account has been disabled.\n")
        else:
            print(f"Error: Login failed: {e}\n")
    except ChatApiError as e:
        print(f"Error: Login failed: {e.message}\n")
    except httpx.HTTPError as e:
        print(f"Error: API request failed: {e}\n")


async def logout_user(ctx):
    """Handle user logout."""
    delete_token()
    delete_session()
    await ctx.close_voice()
    ctx.api.token = None
    ctx.api.conversation_id = None
    ctx.session.mirror = LocalTranscriptMirror()
    print("\n✓ Logged out successfully. Chats are now kept locally.\n")
