#!/usr/bin/env python3

import httpx
import json
import argparse
import time


class PlaybackMonitorClient:
    def __init__(self, base_url="http://localhost:8086", api_token=None):
        headers = {"X-API-Token": api_token} if api_token else {}
        self.client = httpx.Client(base_url=base_url, headers=headers, timeout=10.0)

    def close(self):
        self.client.close()

    def _request(self, method, path, **kwargs):
        response = self.client.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()

    def create_session(self, url, path="adaptive"):
        """Create a new monitored session"""
        return self._request("POST", "/sessions", json={"url": url, "path": path})

    def list_sessions(self):
        return self._request("GET", "/sessions")

    def send_signals(self, session_id, signals, state=None):
        """Post a batch of signals, optionally preceded by a player state report"""
        body = {"signals": signals}
        if state is not None:
            body["state"] = state
        return self._request("POST", f"/sessions/{session_id}/signals", json=body)

    def send_playlist(self, session_id, content, level=None, uri=None):
        body = {"content": content, "level": level, "uri": uri}
        return self._request("POST", f"/sessions/{session_id}/playlist", json=body)

    def get_metrics(self, session_id):
        return self._request("GET", f"/sessions/{session_id}/metrics")

    def get_live_status(self, session_id):
        return self._request("GET", f"/sessions/{session_id}/live-status")

    def get_events(self, session_id, limit=50):
        return self._request("GET", f"/sessions/{session_id}/events", params={"limit": limit})

    def reset_metrics(self, session_id):
        return self._request("POST", f"/sessions/{session_id}/reset-metrics")

    def reset_live_status(self, session_id):
        return self._request("POST", f"/sessions/{session_id}/reset-live-status")

    def delete_session(self, session_id):
        return self._request("DELETE", f"/sessions/{session_id}")

    def get_health(self):
        return self._request("GET", "/health")

    def replay(self, session_id, trace_path, delay=0.0):
        """Replay a JSON-lines trace.

        Each line is either a single signal ({"kind": ...}) or a batch
        ({"state": {...}, "signals": [...]}).
        """
        sent = 0
        with open(trace_path) as trace:
            for line_number, line in enumerate(trace, 1):
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                entry = json.loads(line)
                if "kind" in entry:
                    result = self.send_signals(session_id, [entry])
                else:
                    result = self.send_signals(session_id, entry.get("signals", []), entry.get("state"))
                sent += 1

                for command in result["commands"]:
                    print(f"[{line_number}] command: {json.dumps(command)}")
                if result.get("terminal_error"):
                    print(f"[{line_number}] terminal error: {json.dumps(result['terminal_error'])}")
                    break
                if delay:
                    time.sleep(delay)
        return sent

    def print_metrics(self, session_id):
        """Print formatted metrics"""
        result = self.get_metrics(session_id)
        metrics = result["metrics"]
        quality = metrics["current_quality"]
        segments = metrics["segments"]
        errors = metrics["errors"]

        print("=" * 60)
        print(f"PLAYBACK METRICS - {session_id}")
        print("=" * 60)
        print(f"Active: {result['active']}")
        print(f"Live Status: {metrics['live_status']}")
        startup = metrics["startup_time_ms"]
        print(f"Startup Time: {f'{startup:.0f} ms' if startup is not None else 'n/a'}")
        print(f"Stalls: {metrics['stall_count']} ({metrics['total_stall_seconds']:.2f}s)"
              f"{' - stalling now' if metrics['stalling'] else ''}")
        if quality:
            print(f"Quality: {quality['width']}x{quality['height']} @ {quality['bitrate']} bps")
        print(f"Level Switches: {metrics['level_switches']}")
        if metrics["average_bitrate"] is not None:
            print(f"Average Bitrate: {metrics['average_bitrate']:.0f} bps")
        if metrics["live_latency"] is not None:
            print(f"Live Latency: {metrics['live_latency']:.2f}s")
        print(f"Segments: {segments['count']} (avg {segments['avg_duration']:.2f}s, "
              f"avg load {segments['avg_load_ms']:.0f} ms)")
        data = metrics["data"]
        print(f"Data Loaded: {data['total_bytes'] / 1024 / 1024:.2f} MB over {data['fragments']} fragments")
        if data["last_bandwidth_bps"] is not None:
            print(f"Bandwidth: {data['last_bandwidth_bps'] / 1000:.0f} kbps "
                  f"(avg {data['avg_bandwidth_bps'] / 1000:.0f} kbps)")
        frames = metrics["frames"]
        print(f"Frames: {frames['decoded_frames']} decoded, {frames['dropped_frames']} dropped "
              f"({frames['dropped_ratio']:.2f}%)")
        print(f"Errors: {errors['total']} ({errors['fatal']} fatal) {errors['by_category']}")
        print()


def main():
    parser = argparse.ArgumentParser(description="playback-monitor Client")
    parser.add_argument("--base-url", default="http://localhost:8086",
                        help="Base URL of the monitor server")
    parser.add_argument("--api-token", help="API token, when the server requires one")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    create_parser = subparsers.add_parser("create", help="Create a monitored session")
    create_parser.add_argument("url", help="Playback source URL")
    create_parser.add_argument("--native", action="store_true",
                               help="Native element playback (no adaptive client)")

    subparsers.add_parser("list", help="List all sessions")

    replay_parser = subparsers.add_parser("replay", help="Replay a JSON-lines signal trace")
    replay_parser.add_argument("session_id", help="Session ID")
    replay_parser.add_argument("trace", help="Path to the trace file")
    replay_parser.add_argument("--delay", type=float, default=0.0,
                               help="Seconds to wait between lines")

    playlist_parser = subparsers.add_parser("playlist", help="Send a playlist file for parsing")
    playlist_parser.add_argument("session_id", help="Session ID")
    playlist_parser.add_argument("file", help="Path to the .m3u8 file")
    playlist_parser.add_argument("--level", type=int, help="Level index for a media playlist")

    for name, help_text in (
        ("metrics", "Show session metrics"),
        ("status", "Show live status"),
        ("events", "Show recent session events"),
        ("reset", "Reset metrics and live status"),
        ("delete", "Delete a session"),
        ("monitor", "Monitor metrics in real-time"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("session_id", help="Session ID")

    subparsers.add_parser("health", help="Check health")

    args = parser.parse_args()

    client = PlaybackMonitorClient(args.base_url, args.api_token)

    try:
        if args.command == "create":
            result = client.create_session(args.url, "native" if args.native else "adaptive")
            print(json.dumps(result, indent=2))

        elif args.command == "list":
            result = client.list_sessions()
            if result["sessions"]:
                for session in result["sessions"]:
                    state = "active" if session["active"] else "ended"
                    print(f"{session['session_id']}: {session['url']} "
                          f"({session['path']}, {session['live_status']}, {state})")
            else:
                print("No sessions")

        elif args.command == "replay":
            sent = client.replay(args.session_id, args.trace, args.delay)
            print(f"Replayed {sent} entries")
            client.print_metrics(args.session_id)

        elif args.command == "playlist":
            with open(args.file) as f:
                result = client.send_playlist(args.session_id, f.read(), level=args.level, uri=args.file)
            print(json.dumps(result, indent=2))

        elif args.command == "metrics":
            client.print_metrics(args.session_id)

        elif args.command == "status":
            result = client.get_live_status(args.session_id)
            print(result["live_status"])

        elif args.command == "events":
            result = client.get_events(args.session_id)
            for event in result["events"]:
                print(f"{event['timestamp']} {event['event_type']}: {json.dumps(event['data'])}")

        elif args.command == "reset":
            print(client.reset_metrics(args.session_id)["message"])
            print(client.reset_live_status(args.session_id)["message"])

        elif args.command == "delete":
            result = client.delete_session(args.session_id)
            print(result["message"])

        elif args.command == "health":
            result = client.get_health()
            print(json.dumps(result, indent=2))

        elif args.command == "monitor":
            print("Monitoring session (Press Ctrl+C to stop)...")
            try:
                while True:
                    client.print_metrics(args.session_id)
                    time.sleep(5)
            except KeyboardInterrupt:
                print("\nMonitoring stopped.")

        else:
            parser.print_help()

    except httpx.HTTPStatusError as e:
        print(f"Error: {e.response.status_code} {e.response.text}")
    except httpx.HTTPError as e:
        print(f"Error: {e}")
    except Exception as e:
        print(f"Unexpected error: {e}")
    finally:
        client.close()


if __name__ == "__main__":
    main()
