"""Event Stream Example

Turns a callback-style download client into an async iterator. The fake
client emits "chunk" events and finishes with either "end" or "error".

Usage:
  event_stream.py [--chunks=<n>]
  event_stream.py (-h | --help)

Options:
  -h --help       Show this screen.
  --chunks=<n>    Chunks per download [default: 4].
"""

import sys

from docopt import docopt

from cosync import EventEmitter, EventLoop, Lock, configure_logging, events_to_sequence, sleep, spawn


class FakeDownload(EventEmitter):
    def __init__(self, chunks: int, fail: bool = False):
        super().__init__()
        self.chunks = chunks
        self.fail = fail

    async def run(self):
        for i in range(self.chunks):
            await sleep(0.02)
            self.emit("chunk", i, b"x" * (i + 1))
        if self.fail:
            self.emit("error", ConnectionResetError("peer went away"))
        else:
            self.emit("end")


async def fetch(name: str, download: FakeDownload, print_lock: Lock):
    await spawn(download.run())
    total = 0
    try:
        async for _, (index, payload) in events_to_sequence(download, ["chunk"], ["end"], ["error"]):
            total += len(payload)
            async with print_lock:
                print(f"{name}: chunk {index} ({len(payload)} bytes)")
    except ConnectionResetError as e:
        print(f"{name}: failed on {e.event_name!r} after {total} bytes: {e}")
        return None
    print(f"{name}: done, {total} bytes")
    return total


async def main(chunks: int):
    print_lock = Lock()
    ok = await spawn(fetch("ok", FakeDownload(chunks), print_lock))
    broken = await spawn(fetch("broken", FakeDownload(chunks - 1, fail=True), print_lock))
    return await ok.join(), await broken.join()


if __name__ == "__main__":
    args = docopt(__doc__)
    configure_logging()
    print(EventLoop().run_until_complete(main(int(args["--chunks"])), join=True), file=sys.stderr)
