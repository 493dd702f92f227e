# pwAccessory Module - Command Line
# -*- coding: utf-8 -*-
"""
 Python module to present Tesla Energy Gateways and Powerwalls as accessories

 Command Line:
    python -m pwaccessory run  [-config FILE]
    python -m pwaccessory get  [-config FILE] [-format text|json]
    python -m pwaccessory version

 Gateways come from -config, PW_CONFIG or PW_GATEWAYS (see pwaccessory.config).
 A .env file in the current directory is loaded first.
"""

import argparse
import asyncio
import json
import sys

import dotenv

# Modules
from pwaccessory import version, set_debug
from pwaccessory.accessories import LoggingAccessoryRegistry
from pwaccessory.config import PlatformConfig, Settings
from pwaccessory.exceptions import InvalidConfigurationParameter
from pwaccessory.platform import PowerwallPlatform

# Setup parser and groups
p = argparse.ArgumentParser(prog="pwaccessory", description=f"pwAccessory Module v{version}")
subparsers = p.add_subparsers(dest="command", title='commands (run <command> -h to see usage information)',
                              required=True)

run_args = subparsers.add_parser("run", help='Poll gateways and log accessory state until interrupted')
run_args.add_argument("-config", type=str, default=None, help="Path to JSON configuration file")

get_args = subparsers.add_parser("get", help='Run one cycle per gateway and print device snapshots')
get_args.add_argument("-config", type=str, default=None, help="Path to JSON configuration file")
get_args.add_argument("-format", type=str, default="text", help="Output format: text, json")

version_args = subparsers.add_parser("version", help='Print version information')

# Add a global debug flag
p.add_argument("-debug", action="store_true", default=False, help="Enable debug output")


def load(config_file, settings: Settings) -> PlatformConfig:
    try:
        if config_file:
            return PlatformConfig.load(config_file)
        return settings.platform_config()
    except InvalidConfigurationParameter as exc:
        print(f"ERROR: {exc}")
        sys.exit(1)


async def run_platform(platform: PowerwallPlatform):
    await platform.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await platform.shutdown()


async def get_snapshots(platform: PowerwallPlatform):
    try:
        return await platform.run_once()
    finally:
        await platform.shutdown()


def main(argv=None):
    if argv is None and len(sys.argv) == 1:
        p.print_help(sys.stderr)
        sys.exit(1)

    dotenv.load_dotenv()
    args = p.parse_args(argv)
    command = args.command
    settings = Settings()

    # Set Debug Mode
    if args.debug or settings.debug:
        set_debug(True)

    if command == 'run':
        config = load(args.config, settings)
        print("pwAccessory [%s] - %d gateway(s) configured\n" % (version, len(config.gateways)))
        platform = PowerwallPlatform(config, LoggingAccessoryRegistry(), settings)
        try:
            asyncio.run(run_platform(platform))
        except KeyboardInterrupt:
            print("Stopped.")

    elif command == 'get':
        config = load(args.config, settings)
        if not config.gateways:
            print("ERROR: No gateways configured. Set -config, PW_CONFIG or PW_GATEWAYS.")
            sys.exit(1)
        platform = PowerwallPlatform(config, LoggingAccessoryRegistry(), settings)
        snapshots = asyncio.run(get_snapshots(platform))
        if args.format == 'json':
            print(json.dumps([s.model_dump(mode='json') for s in snapshots], indent=2))
        else:
            print(f"pwAccessory [{version}] - {len(snapshots)} device(s)\n")
            for s in snapshots:
                print("  {:<20}{:<22}{:<10}{}".format(s.serial_number, s.model, s.software_version,
                                                      "online" if s.online else "offline"))
            print("")

    # Print Version
    elif command == 'version':
        print("pwAccessory [%s]" % version)
    # Print Usage
    else:
        p.print_help()


if __name__ == '__main__':
    main()
