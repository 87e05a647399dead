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
import time
from signal import SIGINT, SIGTERM

from simple_ssdp.internal_types import *

from simple_ssdp import (
    __version__ as pkg_version,
    SsdpServer,
    SsdpServerConfig,
    SsdpSocket,
    SsdpSocketListener,
    SsdpMessage,
    decode,
    encode_msearch,
    SSDP_ALL,
    SSDP_MULTICAST_ADDRESS,
    SSDP_PORT,
  )

DEFAULT_SEARCH_WAIT_TIME = 4.0
"""The default amount of time (in seconds) to wait for search responses to come in."""

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

def print_message(event: str, message: SsdpMessage) -> None:
    summary: JsonableDict = { "event": event }
    summary.update(message.to_dict())
    print(json.dumps(summary, indent=2, sort_keys=True))
    sys.stdout.flush()

class _SearchListener(SsdpSocketListener):
    """Queues every datagram received on a search socket, decoded."""

    queue: asyncio.Queue[SsdpMessage]

    def __init__(self):
        self.queue = asyncio.Queue()

    def datagram_received(self, ssdp_socket: SsdpSocket, addr: HostAndPort, data: bytes) -> None:
        self.queue.put_nowait(decode(data, addr[0], addr[1]))

    def error_received(self, ssdp_socket: SsdpSocket, exc: Exception) -> None:
        logging.warning(f"Error received on {ssdp_socket}: {exc}")

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    def get_server_config(self) -> SsdpServerConfig:
        """Builds the server configuration from --config, overridden by any explicit options."""
        json_data: JsonableDict = {}
        if self._args.config is not None:
            json_data.update(SsdpServerConfig.read_json_file(self._args.config))
        for name in ('device_name', 'port', 'location', 'product', 'product_version', 'multicast_address', 'multicast_port'):
            value = getattr(self._args, name)
            if value is not None:
                json_data[name] = value
        return SsdpServerConfig.from_dict(json_data)

    async def cmd_server(self) -> int:
        config = self.get_server_config()
        server = SsdpServer(
            config,
            host=self._args.host,
            filter_search_targets=self._args.filter_search_targets,
            advertise_interval=self._args.advertise_interval,
          )
        for service_urn in self._args.services:
            server.register_service(service_urn)
        server.events.on_notify(lambda message: print_message("notify", message))
        server.events.on_discover(lambda message: print_message("discover", message))
        server.events.on_error(lambda error: print(f"ssdp: {error}", file=sys.stderr))

        done = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signal in (SIGINT, SIGTERM):
            loop.add_signal_handler(signal, done.set)
        try:
            await self.serve_until(server, done, self._args.search_target)
        finally:
            for signal in (SIGINT, SIGTERM):
                loop.remove_signal_handler(signal)
        return 0

    async def serve_until(self, server: SsdpServer, done: asyncio.Event, search_target: Optional[str]=None) -> None:
        """Runs server until done is set, then withdraws every registered service before the
           device itself is withdrawn on exit from the server context."""
        async with server:
            if search_target is not None:
                server.discover(search_target)
            await done.wait()
            logging.debug("serve_until: Stopping server")
            for usn in server.get_all_registered_services():
                server.withdraw(usn)

    async def cmd_search(self) -> int:
        response_wait_time: float = self._args.wait_time
        max_responses: int = self._args.max_responses
        listener = _SearchListener()
        search_socket = SsdpSocket(listener, "search")
        search_socket.bind(self._args.bind_port, reuse_addr=False)
        try:
            await search_socket.open()
            msearch = encode_msearch(self._args.target, self._args.host, self._args.port)
            search_socket.sendto(msearch.encode('utf-8'), (self._args.host, self._args.port))
            end_time = time.monotonic() + response_wait_time
            n = 0
            while max_responses <= 0 or n < max_responses:
                remaining_time = end_time - time.monotonic()
                if remaining_time <= 0.0:
                    break
                try:
                    message = await asyncio.wait_for(listener.queue.get(), remaining_time)
                except asyncio.TimeoutError:
                    break
                n += 1
                print_message("discover", message)
        finally:
            search_socket.close()
            await search_socket.wait_closed()
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    def build_parser(self) -> argparse.ArgumentParser:
        parser = NoExitArgumentParser(description="Discover and advertise UPnP devices with SSDP.")

        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')

        # ======================= server

        parser_server = subparsers.add_parser('server', description="Run an SSDP server that announces a device and answers searches")
        parser_server.add_argument('-c', '--config', default=None,
                            help='''A JSON file with the server configuration. Options given on the command line override it.''')
        parser_server.add_argument('--device-name', dest='device_name', default=None,
                            help='''The UPnP device name, e.g., "MediaServer"''')
        parser_server.add_argument('-p', '--port', type=int, default=None,
                            help='''The local port for unicast responses and the LOCATION URL''')
        parser_server.add_argument('--location', default=None,
                            help='''The path of the device description document, e.g., "/description.xml"''')
        parser_server.add_argument('--product', default=None,
                            help='''The product name for the SERVER header''')
        parser_server.add_argument('--product-version', dest='product_version', default=None,
                            help='''The product version for the SERVER header''')
        parser_server.add_argument('--multicast-address', dest='multicast_address', default=None,
                            help=f'''The multicast address. Default: {SSDP_MULTICAST_ADDRESS}''')
        parser_server.add_argument('--multicast-port', dest='multicast_port', type=int, default=None,
                            help=f'''The multicast port. Default: {SSDP_PORT}''')
        parser_server.add_argument('--host', default=None,
                            help='''The local IP address to advertise. Default: the preferred local address''')
        parser_server.add_argument('-s', '--service', dest="services", action='append', default=[],
                            help='''A service URN to register, e.g., "urn:schemas-upnp-org:service:ContentDirectory:1". May be repeated.''')
        parser_server.add_argument('--filter-search-targets', dest='filter_search_targets', action='store_true', default=False,
                            help='''Only answer an M-SEARCH with the USNs that match its ST. Default: answer with every registered service''')
        parser_server.add_argument('--advertise-interval', dest='advertise_interval', type=float, default=0.0,
                            help='''The interval at which to repeat announcements, in seconds. Default: 0 (announce once)''')
        parser_server.add_argument('--search', dest='search_target', default=None,
                            help='''Send an M-SEARCH for this target after starting''')
        parser_server.set_defaults(func=self.cmd_server)

        # ======================= search

        parser_search = subparsers.add_parser('search', description="Search for SSDP devices and services")
        parser_search.add_argument('-t', '--target', default=SSDP_ALL,
                            help=f'''The search target (ST). Default: "{SSDP_ALL}"''')
        parser_search.add_argument('--wait-time', dest='wait_time', type=float, default=DEFAULT_SEARCH_WAIT_TIME,
                            help=f'''The amount of time to wait for responses, in seconds. Default: {DEFAULT_SEARCH_WAIT_TIME}''')
        parser_search.add_argument('--host', default=SSDP_MULTICAST_ADDRESS,
                            help=f'''The address to send the search to. Default: {SSDP_MULTICAST_ADDRESS}''')
        parser_search.add_argument('--port', type=int, default=SSDP_PORT,
                            help=f'''The port to send the search to. Default: {SSDP_PORT}''')
        parser_search.add_argument('--bind-port', dest='bind_port', type=int, default=0,
                            help='''The local port to send from and receive responses on. Default: any''')
        parser_search.add_argument('--max-responses', dest='max_responses', type=int, default=0,
                            help='The maximum number of responses to return. Default: 0 (no limit)')
        parser_search.set_defaults(func=self.cmd_search)

        # ======================= version

        parser_version = subparsers.add_parser('version',
                                description='''Display version information.''')
        parser_version.set_defaults(func=self.cmd_version)

        return parser

    async def arun(self) -> int:
        """Run the ssdp command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = self.build_parser()
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
            print(f"ssdp: error: {ex}", file=sys.stderr)

        return rc

    def run(self) -> int:
        return asyncio.run(self.arun())

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
