#!/usr/bin/env python3
"""
Single-process demo of the relay over an in-memory loopback link.

Runs the wearable sender for a few ticks, drops the link for a while (samples
go to the deferred queue), restores it and flushes the queue.

Usage:
  PYTHONPATH=src python src/scripts/run_demo.py --interval 0.5 --ticks 6
"""
import argparse
import asyncio

from common import config, utils
from common.channel import LoopbackChannel
from companion.receiver import HealthReceiver
from wearable.sender import HealthSender

logger = utils.get_logger("scripts.run_demo")


async def main(interval: float, ticks: int) -> None:
    watch_end, phone_end = LoopbackChannel.pair(reachable=True)
    receiver = HealthReceiver(phone_end)
    receiver.register_hook(lambda s: logger.info("companion got %s", utils.pretty_json(s.to_dict())))
    sender = HealthSender(watch_end, interval_s=interval)

    receiver.activate_session()
    sender.activate_session()

    await sender.start()
    await asyncio.sleep(interval * (ticks // 2))

    logger.info("link down: samples are deferred")
    watch_end.set_reachable(False)
    await asyncio.sleep(interval * (ticks - ticks // 2))

    await sender.stop()
    logger.info("link up: %d deferred payload(s) waiting", len(watch_end.outbox))
    watch_end.set_reachable(True)
    watch_end.flush_deferred()
    await asyncio.sleep(0)

    logger.info("channel metrics: %s", watch_end.metrics.snapshot())
    logger.info("receiver metrics: %s", phone_end.metrics.snapshot())


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Loopback relay demo")
    parser.add_argument("--interval", type=float, default=1.0)
    parser.add_argument("--ticks", type=int, default=6)
    args = parser.parse_args()
    config.configure_logging()
    asyncio.run(main(args.interval, args.ticks))
