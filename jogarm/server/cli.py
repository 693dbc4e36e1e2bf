"""Command-line interface for the jog server."""

import argparse
import logging
import os
import signal

import jogarm.config as cfg
from jogarm.config import TRACE, JogParameters, load_parameters
from jogarm.errors import JogArmError
from jogarm.server.jog_server import JogServer, ServerConfig

logger = logging.getLogger("jogarm.server.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="jogarm velocity jog server")
    parser.add_argument("--host", default=cfg.SERVER_IP, help="UDP bind address")
    parser.add_argument("--port", type=int, default=cfg.SERVER_PORT, help="UDP bind port")
    parser.add_argument(
        "--output-host", default=cfg.OUTPUT_IP, help="Destination address for trajectories"
    )
    parser.add_argument(
        "--output-port", type=int, default=cfg.OUTPUT_PORT, help="Destination port"
    )
    parser.add_argument("--params", help="YAML file with jog parameters")
    parser.add_argument(
        "--node", help="Read parameters nested under this key of the YAML file"
    )
    parser.add_argument(
        "--robot",
        default="Panda",
        help="roboticstoolbox model name (e.g. Panda, UR5)",
    )
    parser.add_argument(
        "--joint-names",
        help="Comma-separated joint names (default joint_1..joint_N)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity; -v=INFO, -vv=DEBUG, -vvv=TRACE",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Enable quiet logging (WARNING level)",
    )
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set specific log level",
    )
    return parser


def resolve_log_level(args: argparse.Namespace) -> int:
    """
    Precedence: explicit --log-level, then -v/-q, then JOGARM_TRACE, then INFO.
    """
    if args.log_level:
        if args.log_level == "TRACE":
            cfg.TRACE_ENABLED = True
            return TRACE
        return getattr(logging, args.log_level)
    if args.verbose >= 3:
        cfg.TRACE_ENABLED = True
        return TRACE
    if args.verbose >= 2:
        return logging.DEBUG
    if args.verbose == 1:
        return logging.INFO
    if args.quiet:
        return logging.WARNING
    if cfg.TRACE_ENABLED:
        return TRACE
    return logging.INFO


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the jog server."""
    args = build_parser().parse_args(argv)
    log_level = resolve_log_level(args)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    third_party_log_level = log_level if log_level >= logging.INFO else logging.INFO
    logging.getLogger("numba").setLevel(third_party_log_level)
    logging.getLogger("roboticstoolbox").setLevel(third_party_log_level)

    try:
        if args.params:
            params = load_parameters(args.params, node=args.node)
        else:
            params = JogParameters.from_env().validate()
    except JogArmError as e:
        logger.error("%s", e)
        return 2

    # Pre-compile numba kernels to avoid mid-loop compilation stalls
    from jogarm.utils.warmup import warmup_jit

    # Imported lazily: loading the toolbox takes a while
    from jogarm.model.rtb_model import RoboticsToolboxModel

    joint_names = args.joint_names.split(",") if args.joint_names else None
    try:
        model = RoboticsToolboxModel.from_model_name(
            args.robot, joint_names=joint_names, planning_frame=params.planning_frame
        )
    except ValueError as e:
        logger.error("%s", e)
        return 2
    warmup_jit(len(model.get_joint_limits()))

    env_host = os.getenv("JOGARM_SERVER_IP")
    env_port = os.getenv("JOGARM_SERVER_PORT")
    udp_host = env_host.strip() if env_host else args.host
    try:
        udp_port = int(env_port) if env_port else args.port
    except (TypeError, ValueError):
        udp_port = args.port

    config = ServerConfig(
        udp_host=udp_host,
        udp_port=udp_port,
        output_host=args.output_host,
        output_port=args.output_port,
    )

    server = None

    def handle_sigterm(signum, frame):
        logger.info("Received SIGTERM, shutting down...")
        if server:
            server.stop()
        raise SystemExit(0)

    signal.signal(signal.SIGTERM, handle_sigterm)

    try:
        server = JogServer(params, model, config)
    except JogArmError as e:
        logger.error("Failed to create jog server: %s", e)
        return 1

    try:
        server.start()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except RuntimeError as e:
        logger.error("Jog server failed: %s", e)
        return 1
    finally:
        server.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
