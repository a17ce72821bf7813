import logging
import signal
from argparse import ArgumentParser
from datetime import timedelta
from enum import Enum
from time import time

from .cluster import Cluster
from .cluster_error import ClusterError, ConfigurationError
from .config import DEFAULT_CONFIG_FILE, load_config
from .fencing import FencingCoordinator
from .logs import configure_logging, add_run_log_file
from .node_base import Role
from .rebuild import RebuildOrchestrator, Scenario
from .steps import Cancellation
from .switchover import SwitchoverOrchestrator

logger = logging.getLogger("pgrole")


class Trigger(Enum):
    MONITOR = "monitor"
    COMMAND = "command"


class Action(Enum):
    SWITCH = "switch"
    DETACH = "detach"


class Mode(Enum):
    DRY_RUN = "dry-run"
    EXECUTE = "execute"


def install_signal_handlers(cancellation):
    for signum in (signal.SIGTERM, signal.SIGINT, signal.SIGHUP):
        signal.signal(signum, cancellation.request)


def fence(args, cluster, cancellation) -> int:
    node = cluster.node(args.server_id)
    trigger, action = Trigger(args.trigger), Action(args.action)
    logger.info(f"fencing {node.name} ({node.address}, bmc "
                f"{node.bmc_address}), trigger {trigger.value}, action "
                f"{action.value}")
    node.bmc_validate()
    outcome = FencingCoordinator(cluster.config, cancellation).fence(node)
    if outcome.fenced:
        logger.info(f"{node.name} fenced by {outcome.method.value} fencing, "
                    f"marker {outcome.marker}")
        return 0
    logger.error(f"fencing of {node.name} is NOT guaranteed: {outcome.reason}")
    return 1


def switchover(args, cluster, cancellation) -> int:
    if args.primary:
        primary = cluster.node(args.primary)
    else:
        primary = cluster.designated(Role.PRIMARY)
    standby = cluster.node(args.standby) if args.standby else cluster.peer(primary)
    if primary is standby:
        raise ConfigurationError("primary and standby are the same host")
    result = SwitchoverOrchestrator(cluster.config, cancellation).switchover(
        primary, standby, dry_run=args.mode == Mode.DRY_RUN)
    for step in result.steps:
        logger.info(f"{step.name}: {step.outcome.value} {step.detail}")
    if not result.success:
        logger.error(f"aborted at {result.aborted_step}: {result.reason}")
        return 1
    return 0


def rebuild(args, cluster, cancellation) -> int:
    node = cluster.node(args.node) if args.node else cluster.local_node()
    result = RebuildOrchestrator(cluster.config, cluster, cancellation).rebuild(
        node, Scenario(args.scenario), failover=not args.disable_failover)
    for a in result.attempts:
        logger.info(repr(a))
    if not result.success:
        logger.error(f"failed at {result.aborted_step}: {result.reason}")
        return 1
    return 0


def run(kind, handler, args) -> int:
    start = time()
    configure_logging()
    cancellation = Cancellation()
    install_signal_handlers(cancellation)
    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1
    try:
        log_file = add_run_log_file(config.log_dir, kind)
        logger.info(f"logging to {log_file}")
    except OSError as e:
        logger.warning(f"no log file in {config.log_dir}: {e}")
    logger.info(f"START {kind} {vars(args)}")
    try:
        code = handler(args, Cluster(config), cancellation)
    except ClusterError as e:
        logger.error(f"{type(e).__name__}: {e}")
        code = 1
    logger.info(f"EXIT {code} (took {timedelta(seconds=time() - start)})")
    logging.shutdown()
    return code


def _parser(description):
    parser = ArgumentParser(description=description)
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_FILE,
                        help="Cluster definition file (JSON)")
    return parser


def parse_fence_args(argv=None):
    parser = _parser("Fence a node: soft stop, escalating to power off")
    parser.add_argument("trigger", choices=[t.value for t in Trigger])
    parser.add_argument("action", choices=[a.value for a in Action])
    parser.add_argument("server_id", help="host name from the cluster file")
    return parser.parse_args(argv)


def parse_switchover_args(argv=None):
    parser = _parser("Swap the primary and standby roles")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--dry-run", dest="mode", action="store_const",
                      const=Mode.DRY_RUN, help="only validate")
    mode.add_argument("--execute", dest="mode", action="store_const",
                      const=Mode.EXECUTE)
    parser.add_argument("--primary", help="current primary (default: the "
                                          "host with role primary)")
    parser.add_argument("--standby", help="standby to promote (default: the "
                                          "other host)")
    return parser.parse_args(argv)


def parse_rebuild_args(argv=None):
    parser = _parser("Rebuild a node as a standby of the active primary")
    parser.add_argument("scenario", choices=[s.value for s in Scenario])
    parser.add_argument("--node", help="host to rebuild (default: this host)")
    parser.add_argument("--disable-failover", action="store_true",
                        help="start the control plane with failover disabled")
    return parser.parse_args(argv)


def fence_main(argv=None):
    return run("fencing", fence, parse_fence_args(argv))


def switchover_main(argv=None):
    return run("switchover", switchover, parse_switchover_args(argv))


def rebuild_main(argv=None):
    return run("rebuild", rebuild, parse_rebuild_args(argv))
