#!/usr/bin/env python3
"""Minimal native client: counts how often each lamp turns on.

Run a bridge (or `python bridge.py mock-host` plus `python bridge.py start`),
then run this script. Ctrl+C prints the totals.
"""
import asyncio
import os
import sys
from collections import Counter

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mamebridge.bus import BusClient, MessageKind


async def main(host="127.0.0.1", port=8001):
    client = BusClient(host, port)
    await client.connect()
    await client.register()
    names = {}
    turned_on = Counter()
    try:
        while True:
            message = await client.receive()
            if message.kind is MessageKind.START:
                names.clear()
            elif message.kind is MessageKind.UPDATE_STATE and message.lparam:
                output_id = message.wparam
                if output_id not in names:
                    names[output_id] = await client.query_name(output_id)
                turned_on[names[output_id]] += 1
    finally:
        await client.disconnect()
        for name, count in turned_on.most_common():
            print(f"{name}: {count}")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
