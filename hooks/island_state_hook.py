#!/usr/bin/env python3
"""Claude Code hook reporting session state to the claude-island daemon.

Register this script for every hook event in the Claude Code settings. It runs
under the CLI's interpreter, so only the standard library is used.

Fire-and-forget events are written to the socket and the connection closed.
PermissionRequest events keep the connection open and wait for the daemon's
decision, which is printed as the hook's JSON output.
"""

import json
import os
import socket
import sys


DEFAULT_SOCKET_PATH = "/tmp/claude-island.sock"
PERMISSION_TIMEOUT = 300  # seconds, matches the daemon's window

# hook_event_name -> status reported to the daemon
EVENT_STATUS = {
    "UserPromptSubmit": "processing",
    "PreToolUse": "running_tool",
    "PostToolUse": "processing",
    "PermissionRequest": "waiting_for_approval",
    "Stop": "waiting_for_input",
    "SubagentStop": "waiting_for_input",
    "SessionStart": "waiting_for_input",
    "SessionEnd": "ended",
    "PreCompact": "compacting",
}


def get_socket_path():
    return os.environ.get("CLAUDE_ISLAND_SOCKET_PATH", DEFAULT_SOCKET_PATH)


def get_tty():
    """Controlling terminal of this hook, which is the CLI's terminal."""
    for stream in (sys.stdin, sys.stdout):
        try:
            return os.ttyname(stream.fileno())
        except (OSError, AttributeError, ValueError):
            continue
    return None


def build_event(hook_input):
    """Translate Claude's hook payload into a daemon event.

    Returns:
        The event dict, or None when the hook should not be reported
    """
    hook_event_name = hook_input.get("hook_event_name", "")
    event = {
        "session_id": hook_input.get("session_id", "unknown"),
        "cwd": hook_input.get("cwd", ""),
        "event": hook_event_name,
        "pid": os.getppid(),
        "tty": get_tty(),
    }

    if hook_event_name == "Notification":
        notification_type = hook_input.get("notification_type")
        # PermissionRequest carries the same prompt with the tool details
        if notification_type == "permission_prompt":
            return None
        if notification_type == "idle_prompt":
            event["status"] = "waiting_for_input"
        else:
            event["status"] = "notification"
        event["notification_type"] = notification_type
        event["message"] = hook_input.get("message")
        return event

    event["status"] = EVENT_STATUS.get(hook_event_name, "unknown")

    if hook_event_name in ("PreToolUse", "PostToolUse", "PermissionRequest"):
        event["tool"] = hook_input.get("tool_name")
        event["tool_input"] = hook_input.get("tool_input") or {}
        if hook_input.get("tool_use_id"):
            event["tool_use_id"] = hook_input["tool_use_id"]

    return event


def send_event(event, wait_for_response):
    """Write one event to the daemon; optionally block for its decision."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.settimeout(PERMISSION_TIMEOUT if wait_for_response else 2)
        sock.connect(get_socket_path())
        sock.sendall(json.dumps(event).encode("utf-8"))
        # EOF tells the daemon the event is complete
        sock.shutdown(socket.SHUT_WR)

        if not wait_for_response:
            return None

        chunks = []
        while True:
            chunk = sock.recv(65536)
            if not chunk:
                break
            chunks.append(chunk)
        if not chunks:
            return None
        return json.loads(b"".join(chunks).decode("utf-8"))
    finally:
        sock.close()


def permission_output(response):
    """Hook output for a daemon decision; None lets Claude ask in the terminal."""
    decision = response.get("decision") if response else None
    if decision == "allow":
        return {
            "hookSpecificOutput": {
                "hookEventName": "PermissionRequest",
                "decision": {"behavior": "allow"},
            }
        }
    if decision == "deny":
        return {
            "hookSpecificOutput": {
                "hookEventName": "PermissionRequest",
                "decision": {
                    "behavior": "deny",
                    "message": response.get("reason") or "Denied by user via Claude Island",
                },
            }
        }
    return None


def main():
    try:
        hook_input = json.loads(sys.stdin.read())
    except ValueError:
        # Never block Claude on bad input
        sys.exit(0)

    event = build_event(hook_input)
    if event is None:
        sys.exit(0)

    is_permission = event["event"] == "PermissionRequest"
    try:
        response = send_event(event, wait_for_response=is_permission)
    except (OSError, ValueError) as e:
        # Daemon not running or the connection dropped
        print(f"claude-island: {e}", file=sys.stderr)
        sys.exit(0)

    if is_permission:
        output = permission_output(response)
        if output is not None:
            print(json.dumps(output))
            sys.stdout.flush()

    sys.exit(0)


if __name__ == "__main__":
    main()
