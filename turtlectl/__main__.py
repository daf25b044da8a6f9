import argparse
import logging
import os

from turtlectl import config
from turtlectl.controller import TurtleController
from turtlectl.transport import TransportHandle


def main(config_path : str = None, level : int = logging.INFO) -> int:
    """
    Removes `turtle1`, spawns `turtle2` at (2.0, 1.0, 0.0) and steers it until the process is terminated.

    Example usage: :code:`python -m turtlectl --config network.json --level DEBUG`
    """
    if config_path is not None:
        network_config = config.load_network_config(config_path)
    else:
        network_config = config.controller_network_config()

    handle = TransportHandle(config.CONTROLLER_NAME, network_config, level)
    controller = TurtleController(handle)
    controller.run()

    # setup failures are only reported through the log
    return 0


class readable_file(argparse.Action):
    """Defines a custom argparse Action to identify a readable file."""
    def __call__(self, parser, namespace, values, option_string=None):
        prospective_file = values
        if not os.path.isfile(prospective_file):
            raise argparse.ArgumentTypeError(
                '{0} is not a valid file'.format(prospective_file)
            )
        if os.access(prospective_file, os.R_OK):
            setattr(namespace, self.dest, prospective_file)
        else:
            raise argparse.ArgumentTypeError(
                '{0} is not a readable file'.format(prospective_file)
            )


def cli() -> int:
    parser = argparse.ArgumentParser(
        description='Run the turtle corridor controller'
    )
    parser.add_argument(
        '--config',
        action=readable_file,
        default=None,
        help="JSON network configuration file. Defaults to the local turtle environment addresses."
    )
    parser.add_argument(
        '--level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help="Logging level."
    )
    args = parser.parse_args()
    return main(args.config, getattr(logging, args.level))


if __name__ == "__main__":
    raise SystemExit(cli())
