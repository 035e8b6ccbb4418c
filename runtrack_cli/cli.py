"""
Runtrack CLI - Main entry point.

Command-line interface for sending control commands and test pings to the
tracking service over MQTT.
"""

import argparse
import json
import sys
import time
from pathlib import Path
from typing import Any, Dict, List

import yaml

from runtrack_mqtt.schemas import PingMessage

from .mqtt_client import MQTTCommandClient

# Commands that address one participant on one course
PARTICIPANT_COMMANDS = {
    'start': 'start',
    'pause': 'pause',
    'resume': 'resume',
    'stop': 'stop',
    'dns': 'mark_dns',
    'dnf': 'mark_dnf',
    'progress': 'progress',
    'splits': 'splits',
}

COURSE_COMMANDS = {
    'reset-course': 'reset_course',
    'repopulate': 'repopulate',
}

SIMPLE_COMMANDS = {
    'status': 'status',
    'list-courses': 'list_courses',
    'help': 'help',
}


def load_yaml_config(config_path: str) -> Dict[str, Any]:
    """
    Load a YAML command file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If YAML is invalid or not a mapping
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")

    if not isinstance(config, dict):
        raise ValueError(f"{config_path} must contain a mapping")
    return config


def load_pings(path: str) -> List[PingMessage]:
    """
    Read a JSON-lines ping file (one PingMessage dict per line).

    Raises:
        ValueError: On the first invalid line (with its line number)
    """
    pings = []
    with open(path) as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            try:
                pings.append(PingMessage.from_dict(json.loads(line)))
            except (json.JSONDecodeError, ValueError) as e:
                raise ValueError(f"{path}:{lineno}: {e}")
    return pings


def build_command(args: argparse.Namespace) -> Dict[str, Any]:
    """Command payload for a parsed command-line."""
    if args.command in PARTICIPANT_COMMANDS:
        command = {
            'command': PARTICIPANT_COMMANDS[args.command],
            'participant_id': args.participant_id,
            'course_id': args.course_id,
        }
        if args.command == 'start' and args.timestamp is not None:
            command['timestamp'] = args.timestamp
        return command

    if args.command in COURSE_COMMANDS:
        return {'command': COURSE_COMMANDS[args.command], 'course_id': args.course_id}

    if args.command == 'standings':
        return {
            'command': 'standings',
            'course_id': args.course_id,
            'offset': args.offset,
            'limit': args.limit,
        }

    if args.command == 'view':
        return {'command': 'view', 'course_id': args.course_id, 'zoom': args.zoom}

    if args.command in SIMPLE_COMMANDS:
        return {'command': SIMPLE_COMMANDS[args.command]}

    if args.command == 'send':
        return load_yaml_config(args.config)

    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Runtrack CLI - Send MQTT commands and pings to the tracking service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Participant lifecycle
  runtrack-cli start p-042 city-10k
  runtrack-cli pause p-042 city-10k
  runtrack-cli dnf p-042 city-10k

  # Queries (wait for the reply)
  runtrack-cli standings city-10k --limit 10
  runtrack-cli view city-10k 14
  runtrack-cli splits p-042 city-10k

  # Test pings
  runtrack-cli ping p-042 city-10k 37.5665 126.9780
  runtrack-cli send-pings data/pings.jsonl --interval 0.5

  # Arbitrary command from YAML
  runtrack-cli send config/commands/reset.yaml
"""
    )

    parser.add_argument("--service-id", default="tracking_01", help="Target service ID (default: tracking_01)")
    parser.add_argument("--broker", default="localhost", help="MQTT broker host (default: localhost)")
    parser.add_argument("--port", type=int, default=1883, help="MQTT broker port (default: 1883)")
    parser.add_argument("--timeout", type=float, default=5.0, help="Reply timeout in seconds (default: 5)")
    parser.add_argument("--no-wait", action="store_true", help="Do not wait for the command reply")

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    for name, command in PARTICIPANT_COMMANDS.items():
        sub = subparsers.add_parser(name, help=f"{command.replace('_', ' ')} for a participant")
        sub.add_argument('participant_id')
        sub.add_argument('course_id')
        if name == 'start':
            sub.add_argument('--timestamp', type=float, default=None, help='Start time (epoch seconds)')

    for name in COURSE_COMMANDS:
        sub = subparsers.add_parser(name, help=f"{name.replace('-', ' ')} for a course")
        sub.add_argument('course_id')

    standings = subparsers.add_parser('standings', help='Course standings')
    standings.add_argument('course_id')
    standings.add_argument('--offset', type=int, default=0)
    standings.add_argument('--limit', type=int, default=50)

    view = subparsers.add_parser('view', help='Realtime view at a zoom level')
    view.add_argument('course_id')
    view.add_argument('zoom', type=int)

    for name in SIMPLE_COMMANDS:
        subparsers.add_parser(name, help=f"{name.replace('-', ' ')}")

    send = subparsers.add_parser('send', help='Send a command from a YAML file')
    send.add_argument('config', help='Path to command YAML')

    ping = subparsers.add_parser('ping', help='Publish one test ping')
    ping.add_argument('participant_id')
    ping.add_argument('course_id')
    ping.add_argument('latitude', type=float)
    ping.add_argument('longitude', type=float)
    ping.add_argument('--timestamp', type=float, default=None, help='Epoch seconds (default: now)')
    ping.add_argument('--altitude', type=float, default=None)
    ping.add_argument('--heading', type=float, default=None)
    ping.add_argument('--speed', type=float, default=None)

    send_pings = subparsers.add_parser('send-pings', help='Publish pings from a JSON-lines file')
    send_pings.add_argument('file')
    send_pings.add_argument('--interval', type=float, default=0.0, help='Delay between pings (seconds)')

    return parser


def main():
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    command_topic = f"runtrack/control/{args.service_id}/commands"
    status_topic = f"runtrack/control/{args.service_id}/status"
    ping_topic = f"runtrack/data/pings/{args.service_id}"

    client = MQTTCommandClient(broker=args.broker, port=args.port)

    try:
        if args.command == 'ping':
            msg = PingMessage(
                participant_id=args.participant_id,
                course_id=args.course_id,
                latitude=args.latitude,
                longitude=args.longitude,
                timestamp=args.timestamp if args.timestamp is not None else time.time(),
                altitude=args.altitude,
                heading=args.heading,
                speed=args.speed,
            )
            client.send_ping(ping_topic, msg.to_dict())
            print(f"📍 Ping sent for {args.participant_id}@{args.course_id}")

        elif args.command == 'send-pings':
            pings = load_pings(args.file)
            for msg in pings:
                client.send_ping(ping_topic, msg.to_dict())
                if args.interval > 0:
                    time.sleep(args.interval)
            print(f"📍 {len(pings)} pings sent")

        else:
            command = build_command(args)
            if args.no_wait:
                client.send_command(command_topic, command, qos=1)
            else:
                reply = client.request(command_topic, status_topic, command, timeout=args.timeout)
                print(json.dumps(reply, indent=2))
                if reply.get('status') == 'error':
                    sys.exit(2)

    except (ConnectionError, TimeoutError, ValueError, FileNotFoundError, RuntimeError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
