# chat_client.py
"""
Test client for the SpurMart support chat API.

Usage (from project root):
    python chat_client.py --message "Do you ship to Canada?"
    python chat_client.py --message "And returns?" --session-id <uuid>
    python chat_client.py --history <uuid>

This script:
  - Checks that the API is up via /health.
  - Sends a message to /chat/message (optionally continuing a session).
  - Prints the reply, the session id to reuse, and whether it is an error reply.
  - Or fetches /chat/history/<session> and prints the transcript.
"""

import argparse
import json
from typing import Optional

import requests

# Must match the server address & port (python -m spurchat.main serve)
DEFAULT_API_BASE = "http://127.0.0.1:3001"


def health_check(api_base: str) -> None:
    url = f"{api_base.rstrip('/')}/health"
    resp = requests.get(url, timeout=5)
    if resp.status_code != 200:
        raise RuntimeError(
            f"/health returned status {resp.status_code}: {resp.text!r}"
        )
    print(f"[health] OK. Response: {resp.json()}")


def _error_message(resp: requests.Response, fallback: str) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}: {resp.reason}"
    if resp.status_code == 400 and data.get("details"):
        parts = [f"{d.get('field')}: {d.get('message')}" for d in data["details"]]
        return f"{data.get('error', fallback)} ({'; '.join(parts)})"
    return data.get("error") or data.get("message") or fallback


def send_message(api_base: str, message: str, session_id: Optional[str]) -> dict:
    url = f"{api_base.rstrip('/')}/chat/message"
    payload = {"message": message}
    if session_id:
        payload["sessionId"] = session_id

    resp = requests.post(url, json=payload, timeout=60)
    print(f"[http] Status: {resp.status_code}")

    if resp.status_code != 200:
        raise RuntimeError(_error_message(resp, "Failed to send message"))

    try:
        return resp.json()
    except ValueError as e:
        raise RuntimeError("Invalid response from server") from e


def get_history(api_base: str, session_id: str) -> dict:
    url = f"{api_base.rstrip('/')}/chat/history/{session_id}"
    resp = requests.get(url, timeout=30)
    if resp.status_code != 200:
        raise RuntimeError(_error_message(resp, "Failed to load history"))
    return resp.json()


def print_reply(data: dict) -> None:
    print("\n[reply]")
    print(f"  Session: {data.get('sessionId')}")
    print(f"  Error:   {bool(data.get('error'))}")
    print(f"  Reply:   {data.get('reply', '')}")


def print_history(data: dict) -> None:
    messages = data.get("messages") or []
    print(f"\n[history] session={data.get('sessionId')} messages={len(messages)}")
    for m in messages:
        print(f"  {m.get('timestamp')}  {m.get('sender'):>4}: {m.get('text')}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Test client for the SpurMart support chat API."
    )
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--message", "-m", help="Message to send.")
    group.add_argument("--history", metavar="SESSION_ID", help="Print the transcript of a session.")
    parser.add_argument("--session-id", default=None, help="Continue an existing session.")
    parser.add_argument(
        "--api-base",
        default=DEFAULT_API_BASE,
        help=f"Base URL for the API (default: {DEFAULT_API_BASE})",
    )
    parser.add_argument("--json", action="store_true", help="Print the raw JSON response.")

    args = parser.parse_args(argv)

    try:
        health_check(args.api_base)

        if args.history:
            data = get_history(args.api_base, args.history)
            if args.json:
                print(json.dumps(data, indent=2, ensure_ascii=False))
            else:
                print_history(data)
        else:
            data = send_message(args.api_base, args.message, args.session_id)
            if args.json:
                print(json.dumps(data, indent=2, ensure_ascii=False))
            else:
                print_reply(data)

    except (requests.RequestException, RuntimeError) as e:
        print(f"[fatal] {e}")
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
