# -- coding: utf-8 --

"""Single-run reader for the LineMonitor Modbus map (PDU 0-based)."""

import argparse
import sys

from pymodbus.client import ModbusTcpClient

STATE_NAMES = {0: "-", 1: "running", 2: "paused", 3: "faulted"}
DI_NAMES = ["heartbeat", "override_ack", "event", "running", "paused", "faulted"]


def main():
	p = argparse.ArgumentParser(description="Read LineMonitor counters and state once and exit")
	p.add_argument("--host", default="127.0.0.1", help="Modbus TCP host")
	p.add_argument("--port", type=int, default=5020, help="Modbus TCP port")
	p.add_argument("--device-id", type=int, default=1, help="Device ID")
	p.add_argument("--coil-offset", type=int, default=800, help="Command coil offset (PDU 0-based)")
	p.add_argument("--di-offset", type=int, default=800, help="Discrete input offset (PDU 0-based)")
	p.add_argument("--ir-offset", type=int, default=50, help="Input register offset (PDU 0-based)")
	args = p.parse_args()

	print(f"Connecting TCP {args.host}:{args.port}")
	with ModbusTcpClient(host=args.host, port=args.port) as client:
		if not client.connect():
			print(f"Failed to connect to {args.host}:{args.port}")
			sys.exit(1)

		coil_res = client.read_coils(address=args.coil_offset, count=2, device_id=args.device_id)
		di_res = client.read_discrete_inputs(address=args.di_offset, count=len(DI_NAMES), device_id=args.device_id)
		ir_res = client.read_input_registers(address=args.ir_offset, count=7, device_id=args.device_id)

		if coil_res.isError():
			print(f"Coils    @{args.coil_offset} error: {coil_res}")
		else:
			bits = [1 if v else 0 for v in list(coil_res.bits)[:2]]
			print(f"Coils    @{args.coil_offset}: override={bits[0]} reset_counters={bits[1]}")

		if di_res.isError():
			print(f"DInputs  @{args.di_offset} error: {di_res}")
		else:
			bits = [1 if v else 0 for v in list(di_res.bits)[: len(DI_NAMES)]]
			print(f"DInputs  @{args.di_offset}: " + " ".join(f"{n}={b}" for n, b in zip(DI_NAMES, bits)))

		if ir_res.isError():
			print(f"IRegister @{args.ir_offset} error: {ir_res}")
			sys.exit(1)
		regs = list(ir_res.registers)
		print(f"Outlet A  count={regs[0]} good={regs[1]}")
		print(f"Outlet B  count={regs[2]} good={regs[3]}")
		print(f"Last seq  {regs[4]}")
		print(f"State     {STATE_NAMES.get(regs[5], regs[5])} faults={regs[6]}")


if __name__ == "__main__":
	main()
