import asyncio
import logging
import random
import time
import unittest

from turtlectl import config
from turtlectl.controller import ControllerStatus, TurtleController
from turtlectl.messages import *
from turtlectl.transport import FutureReturnCode, TransportHandle


class TestTurtleController(unittest.TestCase):
    """ Orchestration tests against an in-memory transport that records every interaction """

    class DummyPublisher:
        def __init__(self, handle, topic : str) -> None:
            self.handle = handle
            self.topic = topic

        async def publish(self, msg : TransportMessage) -> None:
            self.handle.trace.append(('publish', self.topic, msg))

    class DummyClient:
        def __init__(self, handle, name : str, response_class : type) -> None:
            self.handle = handle
            self.name = name
            self.response_class = response_class

        async def wait_for_service(self, timeout_sec : float = None) -> bool:
            self.handle.trace.append(('wait', self.name))
            availability = self.handle.availability.get(self.name, [True])
            return availability.pop(0) if len(availability) > 1 else availability[0]

        def call_async(self, request : TransportMessage) -> asyncio.Task:
            self.handle.trace.append(('call', self.name, request))

            async def respond():
                if self.name in self.handle.interrupted_services:
                    self.handle.request_shutdown()
                    await asyncio.Event().wait()

                # responses take several loop turns so overlapping calls interleave
                for _ in range(3):
                    await asyncio.sleep(0)
                self.handle.trace.append(('done', self.name))

                if self.name in self.handle.failing_services:
                    raise RuntimeError(f'service `{self.name}` failed')
                if self.response_class is SpawnResponse:
                    return SpawnResponse('turtlesim', request.src, request.name)
                return KillResponse('turtlesim', request.src)

            return asyncio.create_task(respond())

    class DummyHandle:
        def __init__(self,
                     poses : list = None,
                     availability : dict = None,
                     failing_services : list = None,
                     interrupted_services : list = None) -> None:
            self.name = 'my_controller'
            self.poses = list(poses) if poses is not None else []
            self.availability = {name : list(values) for name, values in (availability or dict()).items()}
            self.failing_services = list(failing_services) if failing_services is not None else []
            self.interrupted_services = list(interrupted_services) if interrupted_services is not None else []
            self.trace = []
            self.subscriptions = dict()
            self.closed = False
            self._ok = True
            self._logger = logging.getLogger('turtlectl.test_controller')

        def get_logger(self) -> logging.Logger:
            return self._logger

        def ok(self) -> bool:
            return self._ok

        def request_shutdown(self) -> None:
            self._ok = False

        def install_signal_handlers(self) -> None:
            return

        def close(self) -> None:
            self.closed = True

        def create_publisher(self, topic : str, qos_depth : int = 10):
            return TestTurtleController.DummyPublisher(self, topic)

        def create_subscription(self, topic : str, msg_class : type, callback, qos_depth : int = 10):
            self.subscriptions[topic] = callback

        def create_client(self, service : str, response_class : type):
            return TestTurtleController.DummyClient(self, service, response_class)

        async def spin_until_future_complete(self, future, timeout_sec : float = None) -> FutureReturnCode:
            while not future.done():
                if not self._ok:
                    future.cancel()
                    await asyncio.gather(future, return_exceptions=True)
                    return FutureReturnCode.INTERRUPTED
                await asyncio.sleep(0)
            return FutureReturnCode.FAILED if future.exception() is not None else FutureReturnCode.SUCCESS

        async def spin(self) -> None:
            self.trace.append(('spin',))
            callback = self.subscriptions['/turtle2/pose']
            for pose in self.poses:
                await callback(pose)

    def pose(self, x : float) -> Pose:
        return Pose('turtlesim', '/turtle2/pose', x, 5.0, 0.0)

    def test_setup_order(self):
        handle = TestTurtleController.DummyHandle()
        controller = TurtleController(handle)

        self.assertEqual(controller.status, ControllerStatus.INITIALIZING)
        self.assertEqual(controller.run(), 1)
        self.assertEqual(controller.status, ControllerStatus.TERMINAL)
        self.assertTrue(handle.closed)

        # removal completes before spawn is requested
        steps = [entry[:2] for entry in handle.trace]
        self.assertEqual(steps, [('wait', 'kill'), ('wait', 'spawn'),
                                 ('call', 'kill'), ('done', 'kill'),
                                 ('call', 'spawn'), ('done', 'spawn'),
                                 ('spin',)])

        _, _, kill_request = handle.trace[2]
        self.assertEqual(kill_request.name, 'turtle1')
        _, _, spawn_request = handle.trace[4]
        self.assertEqual((spawn_request.name, spawn_request.x, spawn_request.y, spawn_request.theta),
                         ('turtle2', 2.0, 1.0, 0.0))

        self.assertIsInstance(controller.kill_response, KillResponse)
        self.assertEqual(controller.spawn_response.name, 'turtle2')

    def test_one_command_per_pose(self):
        poses = [self.pose(x) for x in [9.5, 1.0, 5.0, 9.0, 2.0]]
        handle = TestTurtleController.DummyHandle(poses=poses)
        controller = TurtleController(handle)

        with self.assertLogs(handle.get_logger(), level=logging.INFO) as logs:
            controller.run()

        # nothing is published before setup completes
        spin_index = handle.trace.index(('spin',))
        publishes = [entry for entry in handle.trace if entry[0] == 'publish']
        self.assertTrue(all(handle.trace.index(entry) > spin_index for entry in publishes))

        self.assertEqual(len(publishes), len(poses))
        for _, topic, cmd in publishes:
            self.assertEqual(topic, '/turtle2/cmd_vel')
            self.assertEqual(cmd.dst, '/turtle2/cmd_vel')
            self.assertEqual(cmd.linear.x, 1.0)
            self.assertEqual(cmd.linear.y, 0.0)
            self.assertEqual(cmd.angular.x, 0.0)
            self.assertEqual(cmd.angular.y, 0.0)
        self.assertEqual([cmd.angular.z for _, _, cmd in publishes], [4.0, -4.0, 0.0, 0.0, 0.0])

        pose_logs = [line for line in logs.output if 'turtle pose is' in line]
        self.assertEqual(len(pose_logs), len(poses))
        self.assertIn('x: 9.500000 y: 5.000000 theta: 0.000000', pose_logs[0])

    def test_failed_removal_continues(self):
        handle = TestTurtleController.DummyHandle(failing_services=['kill'])
        controller = TurtleController(handle)

        with self.assertLogs(handle.get_logger(), level=logging.ERROR) as logs:
            self.assertEqual(controller.run(), 1)

        self.assertIn('service call failed', logs.output[0])
        self.assertIsNone(controller.kill_response)
        self.assertEqual(controller.spawn_response.name, 'turtle2')
        steps = [entry[:2] for entry in handle.trace]
        self.assertEqual(steps[2:], [('call', 'kill'), ('done', 'kill'), ('call', 'spawn'), ('done', 'spawn'), ('spin',)])

    def test_failed_spawn_continues(self):
        handle = TestTurtleController.DummyHandle(failing_services=['spawn'])
        controller = TurtleController(handle)

        with self.assertLogs(handle.get_logger(), level=logging.ERROR):
            self.assertEqual(controller.run(), 1)

        self.assertIsInstance(controller.kill_response, KillResponse)
        self.assertIsNone(controller.spawn_response)
        self.assertEqual(handle.trace[-1], ('spin',))

    def test_waits_for_services(self):
        handle = TestTurtleController.DummyHandle(availability={'kill' : [False, False, True]})
        controller = TurtleController(handle)

        with self.assertLogs(handle.get_logger(), level=logging.INFO) as logs:
            controller.run()

        waiting = [line for line in logs.output if 'waiting for service `kill` to appear' in line]
        self.assertEqual(len(waiting), 2)
        steps = [entry[:2] for entry in handle.trace]
        self.assertEqual(steps[:4], [('wait', 'kill'), ('wait', 'kill'), ('wait', 'kill'), ('wait', 'spawn')])

    def test_shutdown_while_waiting(self):
        handle = TestTurtleController.DummyHandle(availability={'spawn' : [False]})
        handle.request_shutdown()
        controller = TurtleController(handle)

        with self.assertLogs(handle.get_logger(), level=logging.ERROR) as logs:
            self.assertEqual(controller.run(), 0)

        self.assertIn('interrupted while waiting for service', logs.output[0])
        self.assertEqual(controller.status, ControllerStatus.TERMINAL)
        self.assertTrue(handle.closed)
        self.assertFalse(any(entry[0] in ['call', 'spin', 'publish'] for entry in handle.trace))

    def test_shutdown_during_removal(self):
        handle = TestTurtleController.DummyHandle(poses=[self.pose(9.5)], interrupted_services=['kill'])
        controller = TurtleController(handle)

        with self.assertLogs(handle.get_logger(), level=logging.ERROR) as logs:
            self.assertEqual(controller.run(), 0)

        self.assertIn(f'service call failed ({FutureReturnCode.INTERRUPTED.value})', logs.output[0])
        self.assertIsNone(controller.kill_response)
        self.assertIsNone(controller.spawn_request)
        self.assertEqual(controller.status, ControllerStatus.TERMINAL)
        self.assertTrue(handle.closed)

        steps = [entry[:2] for entry in handle.trace]
        self.assertEqual(steps, [('wait', 'kill'), ('wait', 'spawn'), ('call', 'kill')])


class TestControllerIntegration(unittest.TestCase):
    """ End-to-end run over ZMQ against a fake turtle environment """

    class FakeTurtleEnvironment:
        def __init__(self, service_port : int, environment_pub_port : int, controller_pub_port : int, x : float) -> None:
            network_config = config.environment_network_config(service_port, environment_pub_port, controller_pub_port)
            self.handle = TransportHandle('turtlesim', network_config, level=logging.WARNING)
            self.x = x
            self.calls = []
            self.commands = []
            self.turtles = {'turtle1' : (5.5, 5.5, 0.0)}

        def activate(self) -> None:
            self.handle.create_service(config.KILL_SERVICE, KillRequest, self.kill)
            self.handle.create_service(config.SPAWN_SERVICE, SpawnRequest, self.spawn)
            self.handle.create_subscription('/turtle2/cmd_vel', Twist, self.commands.append)
            self.pose_publisher = self.handle.create_publisher('/turtle2/pose')

        def kill(self, req : KillRequest) -> KillResponse:
            self.calls.append(('kill', req.name))
            self.turtles.pop(req.name)
            return KillResponse(self.handle.name, req.src)

        def spawn(self, req : SpawnRequest) -> SpawnResponse:
            self.calls.append(('spawn', req.name))
            self.turtles[req.name] = (req.x, req.y, req.theta)
            return SpawnResponse(self.handle.name, req.src, req.name)

        async def publish_poses(self) -> None:
            while self.handle.ok():
                if 'turtle2' in self.turtles:
                    _, y, theta = self.turtles['turtle2']
                    await self.pose_publisher.publish(Pose(self.handle.name, '/turtle2/pose', self.x, y, theta))
                await asyncio.sleep(0.05)

    def run_scenario(self, x : float) -> tuple:
        port = random.randint(20000, 40000)

        async def routine():
            env = TestControllerIntegration.FakeTurtleEnvironment(port, port+1, port+2, x)
            env.activate()
            env_spin = asyncio.create_task(env.handle.spin())
            env_poses = asyncio.create_task(env.publish_poses())

            handle = TransportHandle(config.CONTROLLER_NAME,
                                     config.controller_network_config('localhost', port, port+1, port+2),
                                     level=logging.WARNING)
            controller = TurtleController(handle, service_wait_period=0.2)
            main = asyncio.create_task(controller.main())
            try:
                t_0 = time.perf_counter()
                while len(env.commands) < 3 and time.perf_counter() - t_0 < 10.0 and not main.done():
                    await asyncio.sleep(0.05)
            finally:
                handle.request_shutdown()
                out = await main
                env.handle.request_shutdown()
                await env_spin
                await env_poses
                env.handle.close()

            return out, controller, env

        return asyncio.run(routine())

    def test_steers_spawned_turtle(self):
        out, controller, env = self.run_scenario(9.5)

        self.assertEqual(out, 1)
        self.assertEqual(controller.status, ControllerStatus.TERMINAL)
        self.assertEqual(env.calls, [('kill', 'turtle1'), ('spawn', 'turtle2')])
        self.assertNotIn('turtle1', env.turtles)
        self.assertEqual(env.turtles['turtle2'], (2.0, 1.0, 0.0))

        self.assertGreaterEqual(len(env.commands), 3)
        for cmd in env.commands:
            self.assertEqual((cmd.linear.x, cmd.linear.y, cmd.angular.z), (1.0, 0.0, 4.0))

    def test_steers_back_from_lower_bound(self):
        _, _, env = self.run_scenario(1.0)

        self.assertGreaterEqual(len(env.commands), 3)
        for cmd in env.commands:
            self.assertEqual(cmd.angular.z, -4.0)


if __name__ == '__main__':
    unittest.main()
