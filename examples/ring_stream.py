"""
ring_stream.py — Stream text through a ring buffer.

Create the ring once:
    python examples/ring_stream.py create

Run the producer in one terminal:
    python examples/ring_stream.py producer

Run one or more consumers in other terminals:
    python examples/ring_stream.py consumer

With a port manager and a RingMaster running on this host, a consumer
can register itself first, exactly as ``ringtostdout`` does:
    python examples/ring_stream.py registered
"""

import os
import sys
import time

RING = os.path.join("/dev/shm" if sys.platform == "linux" else "/tmp", "example_stream")


def run_create():
    from ringmaster_client.core import create_ring, close_ring

    close_ring(create_ring(RING, data_size=1024 * 1024, max_consumers=8, replace=True))
    print("Created ring:", RING)


def run_producer():
    from ringmaster_client import RingProducer

    print("Producing into ring:", RING)
    with RingProducer(RING) as prod:
        seq = 0
        while True:
            line = f"{time.time():.3f} line {seq}\n".encode()
            prod.put(line)
            seq += 1
            time.sleep(0.1)  # 10 Hz


def run_consumer():
    from ringmaster_client import RingConsumer, forward

    with RingConsumer(RING) as cons:
        print(f"Consuming ring {RING} on slot {cons.slot}", file=sys.stderr)
        forward(cons, sys.stdout.buffer)


def run_registered():
    from ringmaster_client import attach_consumer

    with attach_consumer(RING) as client:
        print(f"Registered as {client.role}", file=sys.stderr)
        client.stream_to(sys.stdout.buffer)


if __name__ == "__main__":
    modes = {
        "create": run_create,
        "producer": run_producer,
        "consumer": run_consumer,
        "registered": run_registered,
    }
    if len(sys.argv) < 2 or sys.argv[1] not in modes:
        print(__doc__)
        sys.exit(1)
    modes[sys.argv[1]]()
