import asyncio
import logging
from enum import Enum

from turtlectl import config
from turtlectl.messages import *
from turtlectl.network import ServiceClient
from turtlectl.steering import velocity_command
from turtlectl.transport import FutureReturnCode, TransportHandle


class ControllerStatus(Enum):
    INITIALIZING = 'INITIALIZING'
    RUNNING = 'RUNNING'
    TERMINAL = 'TERMINAL'


class TurtleController(object):
    """
    ## Turtle Controller

    Removes a turtle from the environment, spawns the turtle to be controlled and then steers it
    within an x-axis corridor for as long as the process lives.

    Procedure follows the sequence:
    1. `activate()` waits for the kill and spawn services to become reachable
    2. `remove()` and then `spawn()`, each awaited to completion before moving on
    3. `handle.spin()` dispatches every pose sample to the steering law until shutdown

    ### Attributes:
        - name (`str`): name of this controller node
        - status (:obj:`ControllerStatus`): stage of the controller's life
        - kill_request, kill_response: last removal call and its outcome (`None` if it failed)
        - spawn_request, spawn_response: last creation call and its outcome (`None` if it failed)
    """
    def __init__(self,
                 handle : TransportHandle,
                 turtle_name : str = config.CONTROLLED_TURTLE,
                 service_wait_period : float = config.SERVICE_WAIT_PERIOD) -> None:
        """
        Initiates a new controller

        ### Args:
            - handle (:obj:`TransportHandle`): transport context shared by every endpoint of this node
            - turtle_name (`str`): name of the turtle to be controlled. Sets its pose and command topics
            - service_wait_period (`float`): seconds between service availability checks
        """
        super().__init__()
        self._handle = handle
        self.name = handle.name
        self.turtle_name = turtle_name
        self.service_wait_period = service_wait_period

        self.status = ControllerStatus.INITIALIZING

        self._kill_client = None
        self._spawn_client = None
        self._publisher = None
        self._subscription = None

        self.kill_request = None
        self.kill_response = None
        self.spawn_request = None
        self.spawn_response = None

    def _log(self, msg : str, level=logging.DEBUG) -> None:
        self._handle.get_logger().log(level, f'{self.name}: {msg}')

    """
    CONTROLLER OPERATION METHODS
    """
    def run(self) -> int:
        """
        Main function. Executes this controller until shutdown.

        Returns `1` if the control loop was reached and exited cleanly or `0` otherwise
        """
        return asyncio.run(self.main())

    async def main(self) -> int:
        try:
            self._handle.install_signal_handlers()

            self._log('activating...', level=logging.INFO)
            if not await self.activate():
                return 0

            await self.remove(config.REMOVED_TURTLE)
            if not self._handle.ok():
                return 0

            await self.spawn(self.turtle_name, config.SPAWN_X, config.SPAWN_Y, config.SPAWN_THETA)
            if not self._handle.ok():
                return 0

            self.status = ControllerStatus.RUNNING
            self._log(f'steering `{self.turtle_name}`...', level=logging.INFO)
            await self._handle.spin()
            return 1

        finally:
            self.status = ControllerStatus.TERMINAL
            self._log('terminated.', level=logging.INFO)
            self._handle.close()

    async def activate(self) -> bool:
        """
        Creates this node's endpoints and waits for both services to become reachable.

        Returns False if shutdown was requested while waiting
        """
        self._publisher = self._handle.create_publisher(config.cmd_vel_topic(self.turtle_name),
                                                        config.COMMAND_QUEUE_DEPTH)
        self._subscription = self._handle.create_subscription(config.pose_topic(self.turtle_name),
                                                              Pose,
                                                              self.pose_callback,
                                                              config.POSE_QUEUE_DEPTH)

        self._kill_client = self._handle.create_client(config.KILL_SERVICE, KillResponse)
        if not await self.__wait_for_service(self._kill_client):
            return False

        self._spawn_client = self._handle.create_client(config.SPAWN_SERVICE, SpawnResponse)
        if not await self.__wait_for_service(self._spawn_client):
            return False

        return True

    async def __wait_for_service(self, client : ServiceClient) -> bool:
        while not await client.wait_for_service(timeout_sec=self.service_wait_period):
            if not self._handle.ok():
                self._log('client interrupted while waiting for service to appear.', level=logging.ERROR)
                return False
            self._log(f'waiting for service `{client.name}` to appear...', level=logging.INFO)
        return True

    """
    SETUP CALLS
    """
    async def remove(self, name : str) -> KillResponse:
        """
        Removes the turtle `name` from the environment.

        Returns the service response, or `None` if the call did not complete. Failures are logged and not retried.
        """
        self.kill_request = KillRequest(self.name, config.KILL_SERVICE, name)
        self.kill_response = await self.__call(self._kill_client, self.kill_request)
        if self.kill_response is not None:
            self._log(f'removed `{name}`.', level=logging.INFO)
        return self.kill_response

    async def spawn(self, name : str, x : float, y : float, theta : float) -> SpawnResponse:
        """
        Creates the turtle `name` at pose (`x`, `y`, `theta`).

        Returns the service response, or `None` if the call did not complete. Failures are logged and not retried.
        """
        self.spawn_request = SpawnRequest(self.name, config.SPAWN_SERVICE, x, y, theta, name)
        self.spawn_response = await self.__call(self._spawn_client, self.spawn_request)
        if self.spawn_response is not None:
            self._log(f'spawned `{self.spawn_response.name}` at x: {x} y: {y} theta: {theta}.', level=logging.INFO)
        return self.spawn_response

    async def __call(self, client : ServiceClient, request : TransportMessage):
        future = client.call_async(request)
        code = await self._handle.spin_until_future_complete(future)

        if code is not FutureReturnCode.SUCCESS:
            self._log(f'service call failed ({code.value}).', level=logging.ERROR)
            return None

        return future.result()

    """
    CONTROL LOOP
    """
    async def pose_callback(self, pose : Pose) -> None:
        """
        Publishes one velocity command for every pose sample of the controlled turtle
        """
        self._log(f'turtle pose is x: {pose.x:.6f} y: {pose.y:.6f} theta: {pose.theta:.6f}', level=logging.INFO)
        cmd = velocity_command(pose, self.name, self._publisher.topic)
        await self._publisher.publish(cmd)
