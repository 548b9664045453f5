# -- coding: utf-8 --

import argparse
import datetime
import socket


def _format_ts() -> str:
	ts = datetime.datetime.now()
	return f"{ts:%Y-%m-%d %H:%M:%S}.{ts.microsecond // 1000:03d}"


def main():
	p = argparse.ArgumentParser(description="Send one operator override press over TCP")
	p.add_argument('--host', default='127.0.0.1', help='Override listener host')
	p.add_argument('--port', type=int, default=9000, help='Override listener port')
	p.add_argument('--word', default='CLICK', help='Override word')
	args = p.parse_args()

	payload = args.word.encode('utf-8')
	with socket.create_connection((args.host, args.port), timeout=2.0) as conn:
		conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
		print(f"{_format_ts()} CONNECT {args.host}:{args.port}")
		conn.sendall(payload)
		print(f"{_format_ts()} SEND {payload!r}")
		try:
			reply = conn.recv(16)
		except socket.timeout:
			reply = b""
	# OK = press accepted, BUSY = dropped by debounce, empty = word not recognised.
	print(f"{_format_ts()} REPLY {reply.strip().decode('utf-8', errors='replace') or '-'}")


if __name__ == "__main__":
	main()
