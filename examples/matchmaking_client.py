"""Matchmaking WebSocket client example.

Demonstrates:
- WebSocket connection to the Vocaline server
- Joining matchmaking with a display name
- Receiving status, stats and match events
- Sending a (fake) offer to the partner and printing relayed envelopes
- Optionally asking for a new partner after a match

Usage:
    python examples/matchmaking_client.py --username Alice
    python examples/matchmaking_client.py --url ws://localhost:8080 --username Bob
    python examples/matchmaking_client.py --username Mike --change-partner-after 10
"""

import argparse
import asyncio
import json
import sys
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection


async def send_envelope(ws: ClientConnection, message_type: str, payload: dict[str, Any]) -> None:
    """Send one ``{type, payload}`` envelope."""
    await ws.send(json.dumps({"type": message_type, "payload": payload}))
    print(f"→ Sent {message_type}")


async def change_partner_later(ws: ClientConnection, delay: float) -> None:
    """Ask for a new partner after ``delay`` seconds."""
    await asyncio.sleep(delay)
    await send_envelope(ws, "change_partner", {})


async def run_client(
    url: str = "ws://localhost:8080",
    username: str = "Guest",
    change_partner_after: float | None = None,
) -> None:
    """Join matchmaking and print every event until the connection closes.

    Args:
        url: WebSocket URL of the server
        username: Display name shown to partners
        change_partner_after: Seconds after each match to request a new partner
    """
    print(f"Connecting to {url}...")

    async with websockets.connect(url) as ws:
        print(f"✓ Connected to {url}\n")

        pending: asyncio.Task[None] | None = None

        async for raw in ws:
            message: dict[str, Any] = json.loads(raw)
            message_type = message.get("type")
            payload = message.get("payload", {})

            if message_type == "welcome":
                print(f"← {payload.get('message')}")
                await send_envelope(ws, "join", {"username": username})

            elif message_type == "status_update":
                print(f"← Status: {payload.get('status')}")

            elif message_type == "stats_update":
                print(
                    f"← Stats: {payload.get('connectedUsers')} connected, "
                    f"{payload.get('waitingUsers')} waiting, "
                    f"{payload.get('activeConversations')} conversations"
                )

            elif message_type == "match_found":
                initiate = payload.get("initiateCall")
                print(f"← Matched with {payload.get('partnerUsername')} (initiate={initiate})")
                if initiate:
                    await send_envelope(ws, "offer", {"sdp": "v=0 (example)", "kind": "offer"})
                if change_partner_after is not None:
                    pending = asyncio.create_task(change_partner_later(ws, change_partner_after))

            elif message_type in ("offer", "answer", "candidate"):
                print(f"← Relayed {message_type} from {payload.get('from')}")
                if message_type == "offer":
                    await send_envelope(ws, "answer", {"sdp": "v=0 (example)", "kind": "answer"})

            elif message_type == "partner_disconnected":
                print(f"← {payload.get('message')}")
                if pending is not None:
                    pending.cancel()
                    pending = None

            elif message_type == "partner_mute_status":
                state = "muted" if payload.get("isMuted") else "unmuted"
                print(f"← {payload.get('username')} {state}")

            elif message_type in ("error", "info"):
                print(f"✗ {message_type}: {payload.get('message')}")

            else:
                print(f"⚠  Unexpected message type: {message_type}")


def main() -> None:
    """Parse arguments and run client."""
    parser = argparse.ArgumentParser(description="Vocaline matchmaking client")
    parser.add_argument(
        "--url",
        default="ws://localhost:8080",
        help="WebSocket URL of the server (default: ws://localhost:8080)",
    )
    parser.add_argument("--username", default="Guest", help="Display name (default: Guest)")
    parser.add_argument(
        "--change-partner-after",
        type=float,
        default=None,
        help="Seconds after each match to request a new partner",
    )
    args = parser.parse_args()

    try:
        asyncio.run(
            run_client(
                url=args.url,
                username=args.username,
                change_partner_after=args.change_partner_after,
            )
        )
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(0)
    except ConnectionRefusedError:
        print("\n✗ Connection refused. Make sure the server is running:\n  vocaline-server")
        sys.exit(1)
    except Exception as e:
        print(f"\n✗ Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
