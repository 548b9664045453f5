# -- coding: utf-8 --

"""Single-run Modbus command writer: toggles the override or reset coil."""

import argparse
import sys

from pymodbus.client import ModbusTcpClient

COMMAND_COILS = {"override": 0, "reset": 1}


def main():
    p = argparse.ArgumentParser(description="Toggle a LineMonitor command coil once and exit")
    p.add_argument("command", choices=sorted(COMMAND_COILS), help="Command to send")
    p.add_argument("--host", default="127.0.0.1", help="Modbus TCP host")
    p.add_argument("--port", type=int, default=5020, help="Modbus TCP port")
    p.add_argument("--device-id", type=int, default=1, help="Device ID")
    p.add_argument(
        "--coil-offset", type=int, default=800, help="Command coil base offset (PDU 0-based)"
    )
    args = p.parse_args()
    address = args.coil_offset + COMMAND_COILS[args.command]

    print(f"Connecting TCP {args.host}:{args.port}")
    with ModbusTcpClient(host=args.host, port=args.port) as client:
        if not client.connect():
            print(f"Failed to connect to {args.host}:{args.port}")
            sys.exit(1)

        read_res = client.read_coils(address=address, count=1, device_id=args.device_id)
        if read_res.isError():
            print(f"Read coil error: {read_res}")
            sys.exit(1)
        value = 0 if (read_res.bits and read_res.bits[0]) else 1

        res = client.write_coil(address=address, value=bool(value), device_id=args.device_id)
        if res.isError():
            print(f"Write coil error: {res}")
            sys.exit(1)

        print(f"{args.command}: wrote coil @{address} value={value}")


if __name__ == "__main__":
    main()
