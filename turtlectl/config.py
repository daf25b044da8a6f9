"""
Default addresses and setup parameters for the turtle controller.

The environment binds every endpoint; the controller connects to them.
"""
import json
import os

import zmq

from turtlectl.network import NetworkConfig

NETWORK_NAME = 'turtlesim'
CONTROLLER_NAME = 'my_controller'

# ---- addresses ----
DEFAULT_HOST = 'localhost'
SERVICE_PORT = 5555             # kill/spawn requests
ENVIRONMENT_PUB_PORT = 5556     # pose samples published by the environment
CONTROLLER_PUB_PORT = 5557      # velocity commands published by the controller

# ---- services ----
KILL_SERVICE = 'kill'
SPAWN_SERVICE = 'spawn'
SERVICE_WAIT_PERIOD = 1.0       # [s] between service availability checks

# ---- setup sequence ----
REMOVED_TURTLE = 'turtle1'
CONTROLLED_TURTLE = 'turtle2'
SPAWN_X = 2.0
SPAWN_Y = 1.0
SPAWN_THETA = 0.0

# ---- queue depths ----
POSE_QUEUE_DEPTH = 10
COMMAND_QUEUE_DEPTH = 1


def pose_topic(name : str) -> str:
    return f'/{name}/pose'

def cmd_vel_topic(name : str) -> str:
    return f'/{name}/cmd_vel'


def controller_network_config(host : str = DEFAULT_HOST,
                              service_port : int = SERVICE_PORT,
                              environment_pub_port : int = ENVIRONMENT_PUB_PORT,
                              controller_pub_port : int = CONTROLLER_PUB_PORT) -> NetworkConfig:
    """
    Network configuration of a controller connecting to an environment at `host`
    """
    return NetworkConfig(NETWORK_NAME, {zmq.REQ : [f'tcp://{host}:{service_port}'],
                                        zmq.SUB : [f'tcp://{host}:{environment_pub_port}'],
                                        zmq.PUB : [f'tcp://{host}:{controller_pub_port}']})

def environment_network_config(service_port : int = SERVICE_PORT,
                               environment_pub_port : int = ENVIRONMENT_PUB_PORT,
                               controller_pub_port : int = CONTROLLER_PUB_PORT) -> NetworkConfig:
    """
    Network configuration of an environment binding the endpoints a controller connects to
    """
    return NetworkConfig(NETWORK_NAME, {zmq.REP : [f'tcp://*:{service_port}'],
                                        zmq.PUB : [f'tcp://*:{environment_pub_port}'],
                                        zmq.SUB : [f'tcp://*:{controller_pub_port}']})

def load_network_config(path : str) -> NetworkConfig:
    """
    Reads a network configuration from a JSON file written with `NetworkConfig.to_json()`
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f'network configuration file `{path}` not found.')

    with open(path, 'r') as f:
        return NetworkConfig(**json.load(f))
