"""Sensor Fan-in Example

Merges three simulated sensors with merge_sequences, batches the readings in
groups of four and hands them to a bounded channel for a slow writer.

Usage:
  fan_in.py [--verbose] [--batch=<n>]
  fan_in.py (-h | --help)

Options:
  -h --help     Show this screen.
  --verbose     Print channel, semaphore and event traffic.
  --batch=<n>   Readings per batch [default: 4].
"""

import random

from docopt import docopt

from cosync import Channel, EventLoop, batches, configure_logging, merge_sequences, sleep, spawn
from cosync.core.event_loop.instrumentation import PrintInstrument

DONE = object()


async def sensor(name: str, readings: int):
    for i in range(readings):
        await sleep(random.uniform(0.01, 0.05))
        yield f"{name}#{i}"


async def writer(channel: Channel[object]):
    while True:
        batch = await channel.consume()
        if batch is DONE:
            return
        await sleep(0.05)
        print(f"wrote {batch}")


async def main(batch_size: int):
    channel = Channel[object](capacity=2)
    writer_task = await spawn(writer(channel))

    merged = merge_sequences([sensor("temp", 5), sensor("humidity", 4), sensor("wind", 3)])
    async for batch in batches(batch_size, merged):
        await channel.push(batch)

    channel.drain = True
    await channel.push(DONE)
    await writer_task.join()


if __name__ == "__main__":
    args = docopt(__doc__)
    configure_logging()

    root = main(int(args["--batch"]))
    if args["--verbose"]:
        with PrintInstrument():
            EventLoop().run_until_complete(root, join=True)
    else:
        EventLoop().run_until_complete(root, join=True)
