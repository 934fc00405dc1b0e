#!/usr/bin/env python3

# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from __future__ import annotations

import sys
import argparse
import json
import asyncio
import logging
from signal import SIGINT, SIGTERM

from motion_gateway.internal_types import *

from motion_gateway import (
    __version__ as pkg_version,
    MotionGateway,
    Operation,
    derive_access_token,
    battery_info,
    DEVICE_TYPE_BLIND,
    MULTICAST_ADDRESS,
    UDP_PORT_SEND,
    UDP_PORT_RECEIVE,
  )

class CmdExitError(RuntimeError):
    exit_code: int

    def __init__(self, exit_code: int, msg: Optional[str]=None):
        if msg is None:
            msg = f"Command exited with return code {exit_code}"
        super().__init__(msg)
        self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
    pass

class NoExitArgumentParser(argparse.ArgumentParser):
    def exit(self, status=0, message=None):
        if message:
            self._print_message(message, sys.stderr)
        raise ArgparseExitError(status, message)

def print_json(value: Jsonable) -> None:
    print(json.dumps(value, indent=2, sort_keys=True))
    sys.stdout.flush()

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    def _create_gateway(self) -> MotionGateway:
        return MotionGateway(
            key=self._args.key,
            token=self._args.token,
            gateway_address=self._args.gateway_address,
            bind_address=self._args.bind_address,
            multicast_address=self._args.multicast_address,
            send_port=self._args.send_port,
            receive_port=self._args.receive_port,
            listen_for_broadcasts=self._args.listen_for_broadcasts,
          )

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    async def cmd_list(self) -> int:
        async with self._create_gateway() as gateway:
            ack = await gateway.get_device_list()
            print_json(ack.fields)
        return 0

    async def cmd_read(self) -> int:
        mac: str = self._args.mac
        device_type: str = self._args.device_type
        async with self._create_gateway() as gateway:
            ack = await gateway.read_device(mac, device_type)
            print_json(ack.fields)
        return 0

    async def cmd_read_all(self) -> int:
        async with self._create_gateway() as gateway:
            acks = await gateway.read_all_devices()
            results: List[Jsonable] = []
            for ack in acks:
                summary = ack.fields
                data = ack.data
                if isinstance(data, dict) and isinstance(data.get('batteryLevel'), int):
                    voltage, fraction = battery_info(data['batteryLevel'])
                    summary['batteryVoltage'] = voltage
                    summary['batteryPercent'] = round(fraction * 100.0, 1)
                results.append(summary)
            print_json(results)
        return 0

    async def cmd_write(self) -> int:
        data: Dict[str, Any] = {}
        if self._args.operation is not None:
            data['operation'] = int(Operation[self._args.operation])
        for arg_name, field_name in (
                ('position', 'targetPosition'),
                ('angle', 'targetAngle'),
                ('position_top', 'targetPosition_T'),
                ('position_bottom', 'targetPosition_B'),
              ):
            value = getattr(self._args, arg_name)
            if value is not None:
                data[field_name] = value
        if len(data) == 0:
            raise CmdExitError(1, "At least one of --operation, --position, --angle, --position-top, --position-bottom is required")
        async with self._create_gateway() as gateway:
            access_token: Optional[str] = self._args.access_token
            if access_token is None and gateway.session_token is None:
                # The session token comes with the device list
                await gateway.get_device_list()
            ack = await gateway.write_device(self._args.mac, self._args.device_type, data, access_token=access_token)
            print_json(ack.fields)
        return 0

    async def cmd_listen(self) -> int:
        max_events: int = self._args.count
        gateway = self._create_gateway()
        if not gateway.listen_for_broadcasts:
            raise CmdExitError(1, "The listen command requires the broadcast listener")
        loop = asyncio.get_running_loop()
        if not self._provide_traceback:
            for signal in (SIGINT, SIGTERM):
                loop.add_signal_handler(signal, gateway.set_final_result)
        try:
            async with gateway:
                async with gateway.subscribe_events() as subscriber:
                    n = 0
                    async for info in subscriber:
                        summary: JsonableDict = {
                            "src_addr": f"{info.src_addr[0]}:{info.src_addr[1]}",
                            "message": info.message.fields,
                            "monotonic_time": info.monotonic_time,
                            "utc_time": info.utc_time.isoformat(),
                        }
                        print_json(summary)
                        n += 1
                        if max_events > 0 and n >= max_events:
                            break
        finally:
            if not self._provide_traceback:
                for signal in (SIGINT, SIGTERM):
                    loop.remove_signal_handler(signal)
        return 0

    async def cmd_access_token(self) -> int:
        print(derive_access_token(self._args.secret_key, self._args.session_token))
        return 0

    async def cmd_battery(self) -> int:
        voltage, fraction = battery_info(self._args.level)
        print_json({ "voltage": voltage, "percent": round(fraction * 100.0, 1) })
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    async def arun(self) -> int:
        """Run the motion-gateway command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = NoExitArgumentParser(description="Control motorized blinds through a gateway.")


        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.add_argument('-k', '--key', default=None,
                            help='''The gateway's secret key, required to derive AccessTokens for write.''')
        parser.add_argument('--token', default=None,
                            help='''A session token previously received from the gateway.''')
        parser.add_argument('-g', '--gateway', dest='gateway_address', default=None,
                            help='''The gateway's unicast IP address. Default: multicast until the gateway replies.''')
        parser.add_argument('-b', '--bind', dest='bind_address', default=None,
                            help='''The local IPv4 address to bind to. Default: all interfaces.''')
        parser.add_argument('--multicast-address', default=MULTICAST_ADDRESS,
                            help=f'''The multicast group. Default: {MULTICAST_ADDRESS}''')
        parser.add_argument('--send-port', type=int, default=UDP_PORT_SEND,
                            help=f'''The gateway's request port. Default: {UDP_PORT_SEND}''')
        parser.add_argument('--receive-port', type=int, default=UDP_PORT_RECEIVE,
                            help=f'''The port heartbeats and reports are multicast to. Default: {UDP_PORT_RECEIVE}''')
        parser.add_argument('--no-broadcast-listener', dest='listen_for_broadcasts', action='store_false', default=True,
                            help='''Do not listen for multicast heartbeats and reports.''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')


        # ======================= list

        parser_list = subparsers.add_parser('list', description="List the devices paired with the gateway")
        parser_list.set_defaults(func=self.cmd_list)

        # ======================= read

        parser_read = subparsers.add_parser('read', description="Read the status of one device")
        parser_read.add_argument('mac', help='The device MAC')
        parser_read.add_argument('-t', '--device-type', default=DEVICE_TYPE_BLIND,
                            help=f'''The deviceType code. Default: {DEVICE_TYPE_BLIND}''')
        parser_read.set_defaults(func=self.cmd_read)

        # ======================= read-all

        parser_read_all = subparsers.add_parser('read-all', description="Read the status of every device")
        parser_read_all.set_defaults(func=self.cmd_read_all)

        # ======================= write

        parser_write = subparsers.add_parser('write', description="Send a command to one device")
        parser_write.add_argument('mac', help='The device MAC')
        parser_write.add_argument('-t', '--device-type', default=DEVICE_TYPE_BLIND,
                            help=f'''The deviceType code. Default: {DEVICE_TYPE_BLIND}''')
        parser_write.add_argument('--operation', choices=[ op.name for op in Operation ], default=None,
                            help='The operation to perform')
        parser_write.add_argument('--position', type=int, default=None,
                            help='The target position, 0-100')
        parser_write.add_argument('--angle', type=int, default=None,
                            help='The target angle, 0-180')
        parser_write.add_argument('--position-top', type=int, default=None,
                            help='The target position of the top rail of a top-down-bottom-up blind, 0-100')
        parser_write.add_argument('--position-bottom', type=int, default=None,
                            help='The target position of the bottom rail of a top-down-bottom-up blind, 0-100')
        parser_write.add_argument('--access-token', default=None,
                            help='An AccessToken to send instead of deriving one from --key')
        parser_write.set_defaults(func=self.cmd_write)

        # ======================= listen

        parser_listen = subparsers.add_parser('listen', description="Print heartbeats and reports as they arrive")
        parser_listen.add_argument('-n', '--count', type=int, default=0,
                            help='Exit after this many messages. Default: 0 (no limit)')
        parser_listen.set_defaults(func=self.cmd_listen)

        # ======================= access-token

        parser_access_token = subparsers.add_parser('access-token',
                                description="Derive an AccessToken from a secret key and a session token")
        parser_access_token.add_argument('secret_key', help='The gateway secret key')
        parser_access_token.add_argument('session_token', help='The session token from GetDeviceListAck')
        parser_access_token.set_defaults(func=self.cmd_access_token)

        # ======================= battery

        parser_battery = subparsers.add_parser('battery',
                                description="Interpret a batteryLevel value")
        parser_battery.add_argument('level', type=int, help='The batteryLevel value, in hundredths of a volt')
        parser_battery.set_defaults(func=self.cmd_battery)

        # ======================= version

        parser_version = subparsers.add_parser('version',
                                description='''Display version information.''')
        parser_version.set_defaults(func=self.cmd_version)

        # =========================================================

        try:
            args = parser.parse_args(self._argv)
        except ArgparseExitError as ex:
            return ex.exit_code
        traceback: bool = args.traceback
        self._provide_traceback = traceback

        try:
            logging.basicConfig(
                level=logging.getLevelName(args.log_level.upper()),
            )
            self._args = args
            func: Callable[[], Awaitable[int]] = args.func
            logging.debug(f"Running command {func.__name__}, tb = {traceback}")
            rc = await func()
            logging.debug(f"Command {func.__name__} returned {rc}")
        except Exception as ex:
            if isinstance(ex, CmdExitError):
                rc = ex.exit_code
            else:
                rc = 1
            if rc != 0:
                if traceback:
                    raise
            print(f"motion-gateway: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"motion-gateway: Unhandled exception: {ex}", file=sys.stderr)
            raise

        return rc

    def run(self) -> int:
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            rc = loop.run_until_complete(self.arun())
        finally:
            loop.close()
        return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = CommandHandler(argv).run()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

async def arun(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = await CommandHandler(argv).arun()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
    sys.exit(run())
