import argparse
from .run import run_with_settings
from .config import Settings


def main():
    p = argparse.ArgumentParser(description="Alephium pool reward accounting")
    p.add_argument("--node-host", default=None)
    p.add_argument("--node-port", type=int, default=None)
    p.add_argument("--node-api-key", default=None)
    p.add_argument("--store-path", default=None)
    p.add_argument(
        "--lock-duration",
        type=float,
        default=None,
        help="Seconds to wait after a block is found before settling it",
    )
    p.add_argument(
        "--scan-block-interval",
        type=float,
        default=None,
        help="Seconds between pending block scans",
    )
    p.add_argument("--rpc-timeout", type=float, default=None)
    p.add_argument("-v", "--verbose", "--debug", action="store_true", dest="verbose")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    p.add_argument("--enable-dashboard", action="store_true", default=None)
    p.add_argument("--dashboard-port", type=int, default=None)
    args = p.parse_args()

    s = Settings()
    for k, v in vars(args).items():
        if v is None:
            continue
        if k == "verbose":
            if v and not args.log_level:
                s.log_level = "DEBUG"
            continue
        setattr(s, k, v)

    if s.lock_duration < 0 or s.scan_block_interval <= 0:
        raise SystemExit(
            "--lock-duration must be >= 0 and --scan-block-interval must be > 0."
        )
    run_with_settings(s)


if __name__ == "__main__":
    main()
