#!/usr/bin/env python3
"""
Companion entrypoint: listens for the wearable on TCP, keeps the latest
sample and serves the observation API, all on one event loop.

  python -m companion.main --port 65090 --api-port 65000
  python -m companion.main --no-api
"""
from __future__ import annotations

import argparse
import asyncio

from common import config, utils
from common.health_proto import HealthSample
from common.outbox import Outbox
from common.tcp_channel import TcpServerChannel
from companion.api_server import build_server
from companion.receiver import HealthReceiver

logger = utils.get_logger("companion.main")


def _log_sample(sample: HealthSample) -> None:
    bp = f"{sample.systolic}/{sample.diastolic}" if sample.systolic is not None and sample.diastolic is not None else "n/a"
    logger.info(
        "Sample @ %s: hr=%d bpm steps=%d spo2=%s bp=%s",
        utils.epoch_to_iso(sample.timestamp),
        sample.heart_rate,
        sample.steps,
        sample.spo2 if sample.spo2 is not None else "n/a",
        bp,
    )


async def _serve(args: argparse.Namespace) -> None:
    outbox = Outbox(persist_file=args.outbox) if args.outbox else Outbox()
    channel = TcpServerChannel(host=args.host, port=args.port, outbox=outbox)
    receiver = HealthReceiver(channel)
    receiver.register_hook(_log_sample)
    if not receiver.activate_session():
        return
    await channel.wait_listening(timeout=5.0)

    try:
        if args.no_api:
            await asyncio.Event().wait()
        else:
            server = build_server(receiver, host=args.api_host, port=args.api_port)
            await server.serve()
    finally:
        await channel.close()


def main():
    parser = argparse.ArgumentParser(description="Companion receiver for wearable vital signs")
    parser.add_argument("--host", default="0.0.0.0", help="Address to listen on for the wearable")
    parser.add_argument("--port", type=int, default=config.RELAY_PORT, help="Relay port")
    parser.add_argument("--api-host", default=config.API_HOST, help="Observation API host")
    parser.add_argument("--api-port", type=int, default=config.API_PORT, help="Observation API port")
    parser.add_argument("--no-api", action="store_true", default=not config.API_ENABLE, help="Do not start the observation API")
    parser.add_argument("--outbox", default=None, help="File backing the companion's own deferred queue (memory if omitted)")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args()

    config.configure_logging(level=args.log_level)

    try:
        asyncio.run(_serve(args))
    except KeyboardInterrupt:
        logger.info("Companion exiting")


if __name__ == "__main__":
    main()
