#!/usr/bin/env python3
"""
Wearable simulator entrypoint.

Dials the companion over TCP and streams a synthetic vital-sign sample every
--interval seconds. Samples generated while the companion is unreachable are
queued in the durable outbox and flushed on reconnect.

  python -m wearable.main --host 127.0.0.1 --port 65090 --interval 5
  python -m wearable.main --once
"""
from __future__ import annotations

import argparse
import asyncio

from common import config, utils
from common.outbox import Outbox
from common.tcp_channel import TcpClientChannel
from wearable.sender import HealthSender

logger = utils.get_logger("wearable.main")


async def _run_once(sender: HealthSender, channel: TcpClientChannel, connect_timeout: float) -> None:
    sender.activate_session()
    try:
        if not await channel.wait_reachable(timeout=connect_timeout):
            logger.warning("Companion not reachable after %.1f s; sample will be deferred", connect_timeout)
        sample = sender.generate_and_dispatch()
        logger.info("Sent one sample (hr=%d bpm); counters %s", sample.heart_rate, channel.metrics.snapshot()["counters"])
        # let the buffered frame reach the socket
        await asyncio.sleep(0.1)
    finally:
        await channel.close()


async def _run_persistent(sender: HealthSender, channel: TcpClientChannel) -> None:
    """Run until cancelled (Ctrl-C); always stops the sender and closes the channel."""
    sender.activate_session()
    await sender.start()
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await sender.stop()
        await channel.close()


def main():
    parser = argparse.ArgumentParser(description="Wearable vital-sign simulator")
    parser.add_argument("--host", default=config.RELAY_HOST, help="Companion relay host")
    parser.add_argument("--port", type=int, default=config.RELAY_PORT, help="Companion relay port")
    parser.add_argument("--interval", type=float, default=config.SAMPLE_INTERVAL_S, help="Seconds between samples")
    parser.add_argument("--outbox", default=config.OUTBOX_FILE, help="File backing the deferred-delivery queue")
    parser.add_argument("--once", action="store_true", help="Send a single sample and exit")
    parser.add_argument("--connect-timeout", type=float, default=3.0, help="Seconds to wait for the companion in --once mode")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args()

    config.configure_logging(level=args.log_level)

    channel = TcpClientChannel(host=args.host, port=args.port, outbox=Outbox(persist_file=args.outbox))
    sender = HealthSender(channel, interval_s=args.interval)

    try:
        if args.once:
            asyncio.run(_run_once(sender, channel, args.connect_timeout))
        else:
            asyncio.run(_run_persistent(sender, channel))
    except KeyboardInterrupt:
        logger.info("Wearable simulator exiting")


if __name__ == "__main__":
    main()
