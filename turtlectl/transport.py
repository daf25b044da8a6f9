import asyncio
import logging
import signal
import sys
from enum import Enum

import zmq
import zmq.asyncio as azmq

from turtlectl.messages import *
from turtlectl.network import *


class FutureReturnCode(Enum):
    """
    Outcome of waiting on a pending remote call.
        - success: the call completed and produced a response
        - failed: the call completed with an error
        - interrupted: shutdown was requested before the call completed
        - timeout: the call did not complete within the given time
    """
    SUCCESS = 'SUCCESS'
    FAILED = 'FAILED'
    INTERRUPTED = 'INTERRUPTED'
    TIMEOUT = 'TIMEOUT'


class TransportHandle(object):
    """
    ## Transport Handle

    Process-wide transport context shared by all the endpoints of a node. Owns the ZMQ context,
    one shared PUB socket for all publishers, one shared SUB socket for all subscriptions,
    one shared REP socket for all served services, and one REQ socket per service client.

    ### Attributes:
        - name (`str`): name of the node using this handle
        - _network_config (:obj:`NetworkConfig`): addresses to be bound or connected to by this handle
        - _network_context (:obj:`azmq.Context`): network context used by every socket of this handle
        - _socket_map (`dict`): map of shared sockets and socket locks, by socket type

    +--------------------+       +--------------------+
    |                    |  PUB  |                    |
    |                    |------>|                    |
    |                    |  SUB  |                    |
    |  TRANSPORT HANDLE  |<------|   REMOTE NODES     |
    |                    |  REQ  |                    |
    |                    |<----->|                    |
    |                    |  REP  |                    |
    |                    |<----->|                    |
    +--------------------+       +--------------------+
    """
    SPIN_PERIOD = 0.1

    def __init__(self,
                 node_name : str,
                 network_config : NetworkConfig,
                 level : int = logging.INFO,
                 logger : logging.Logger = None) -> None:
        """
        Initiates a new transport handle

        ### Args:
            - node_name (`str`): name of the node using this handle
            - network_config (:obj:`NetworkConfig`): description of the addresses used by this handle
            - level (`int`): logging level. Level set to INFO by default
            - logger (`logging.Logger`) : logger for this handle. If none is given, a new one will be generated
        """
        super().__init__()

        # check for attribute types
        if not isinstance(node_name, str):
            raise AttributeError(f'`node_name` must be of type `str`. is of type {type(node_name)}')
        if not isinstance(network_config, NetworkConfig):
            raise AttributeError(f'`network_config` must be of type `NetworkConfig`. is of type {type(network_config)}')
        if not isinstance(level, int):
            raise AttributeError(f'`level` must be of type `int`. is of type {type(level)}')
        if logger is not None and not isinstance(logger, logging.Logger):
            raise AttributeError(f'`logger` must be of type `logging.Logger`. is of type {type(logger)}')

        self.name = node_name
        self._network_config = network_config
        self._logger : logging.Logger = self.__set_up_logger(level) if logger is None else logger

        self._network_context = azmq.Context()
        self._socket_map = dict()
        self._subscriptions = dict()
        self._services = dict()
        self._clients = []

        self._shutdown_requested = False
        self._shutdown_event = None
        self._closed = False

    def get_logger(self) -> logging.Logger:
        """
        Returns this handle's internal logger
        """
        return self._logger

    def get_network_config(self) -> NetworkConfig:
        return self._network_config

    def get_context(self) -> azmq.Context:
        return self._network_context

    def __set_up_logger(self, level=logging.DEBUG) -> logging.Logger:
        """
        Sets up a logger for this node
        """
        logger = logging.getLogger(f'turtlectl.{self.name}')
        logger.propagate = False
        logger.setLevel(level)

        if not any(isinstance(handler, logging.StreamHandler) for handler in logger.handlers):
            c_handler = logging.StreamHandler(stream=sys.stderr)
            c_handler.setLevel(level)
            c_handler.setFormatter(logging.Formatter('[%(asctime)s] [%(levelname)s] %(message)s'))
            logger.addHandler(c_handler)

        return logger

    def _log(self, msg : str, level=logging.DEBUG) -> None:
        """
        Logs a message to the desired level.
        """
        self._logger.log(level, f'{self.name}: {msg}')

    """
    SHUTDOWN
    """
    def ok(self) -> bool:
        """
        Returns False once shutdown has been requested
        """
        return not self._shutdown_requested

    def request_shutdown(self) -> None:
        """
        Flags this handle for shutdown. Aborts any pending `spin` or `spin_until_future_complete`.
        """
        if not self._shutdown_requested:
            self._log('shutdown requested.', level=logging.INFO)
        self._shutdown_requested = True
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def __get_shutdown_event(self) -> asyncio.Event:
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
            if self._shutdown_requested:
                self._shutdown_event.set()
        return self._shutdown_event

    def install_signal_handlers(self) -> None:
        """
        Requests shutdown when the process receives SIGINT or SIGTERM. Must be called from within the running loop.
        """
        loop = asyncio.get_running_loop()
        for sig in [signal.SIGINT, signal.SIGTERM]:
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                # unsupported platform or not the main thread
                self._log(f'could not install handler for signal {sig.name}.', level=logging.WARNING)

    def close(self) -> None:
        """
        Shut down all activated network ports
        """
        if self._closed:
            return

        for client in self._clients:
            client : ServiceClient
            client.close()

        for socket_type, (socket, _) in self._socket_map.items():
            socket : zmq.Socket
            socket.close()
            self._log(f'closed socket of type {socket_type.name}...')

        self._network_context.term()
        self._closed = True

    """
    ENDPOINT FACTORIES
    """
    def __get_shared_socket(self, socket_type : zmq.SocketType, queue_depth : int = None) -> tuple:
        if socket_type not in self._socket_map:
            addresses = self._network_config.get_addresses(socket_type)
            if len(addresses) == 0:
                raise RuntimeError(f'{self.name}: no address configured for socket of type {socket_type.name}.')
            self._socket_map[socket_type] = socket_factory(self._network_context, socket_type, addresses, queue_depth)
            self._log(f'configured socket of type {socket_type.name} at {addresses}')
        return self._socket_map[socket_type]

    def create_publisher(self, topic : str, qos_depth : int = 10) -> Publisher:
        """
        Creates a publisher for `topic`. The queue depth of the first publisher sets the PUB socket's limit.
        """
        socket, lock = self.__get_shared_socket(zmq.PUB, qos_depth)
        return Publisher(self, topic, socket, lock)

    def create_subscription(self, topic : str, msg_class : type, callback, qos_depth : int = 10) -> Subscription:
        """
        Subscribes `callback` to `topic`. Samples are only dispatched while `spin()` runs.
        """
        if topic in self._subscriptions:
            raise RuntimeError(f'{self.name}: topic `{topic}` already has a subscription.')

        socket, _ = self.__get_shared_socket(zmq.SUB, qos_depth)
        socket.setsockopt(zmq.SUBSCRIBE, topic.encode('ascii'))

        subscription = Subscription(topic, msg_class, callback)
        self._subscriptions[topic] = subscription
        return subscription

    def create_client(self, service : str, response_class : type) -> ServiceClient:
        client = ServiceClient(self, service, response_class)
        self._clients.append(client)
        return client

    def create_service(self, service : str, request_class : type, callback) -> ServiceServer:
        """
        Serves `service` on this handle's REP socket. Requests are only served while `spin()` runs.
        """
        if service in self._services:
            raise RuntimeError(f'{self.name}: service `{service}` already registered.')

        self.__get_shared_socket(zmq.REP)
        server = ServiceServer(service, request_class, callback)
        self._services[service] = server
        return server

    """
    EVENT PROCESSING
    """
    async def spin_until_future_complete(self, future : asyncio.Future, timeout_sec : float = None) -> FutureReturnCode:
        """
        Suspends the caller until `future` resolves, shutdown is requested or `timeout_sec` elapses.
        Pending futures are cancelled when the wait is abandoned.
        """
        wait_for_shutdown = asyncio.create_task(self.__get_shutdown_event().wait())
        try:
            await asyncio.wait([future, wait_for_shutdown],
                               timeout=timeout_sec,
                               return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not wait_for_shutdown.done():
                wait_for_shutdown.cancel()
            await asyncio.gather(wait_for_shutdown, return_exceptions=True)

        if future.done():
            if future.cancelled():
                return FutureReturnCode.FAILED
            if future.exception() is not None:
                self._log(f'pending call failed. {future.exception()}', level=logging.ERROR)
                return FutureReturnCode.FAILED
            return FutureReturnCode.SUCCESS

        future.cancel()
        await asyncio.gather(future, return_exceptions=True)
        return FutureReturnCode.INTERRUPTED if not self.ok() else FutureReturnCode.TIMEOUT

    async def spin(self) -> None:
        """
        Dispatches incoming topic samples and service requests until shutdown is requested.
        Each callback runs to completion before the next message is read.
        """
        poller = azmq.Poller()
        for socket_type in [zmq.SUB, zmq.REP]:
            if socket_type in self._socket_map:
                socket, _ = self._socket_map[socket_type]
                poller.register(socket, zmq.POLLIN)

        self._log('spinning...')
        while self.ok():
            events = dict(await poller.poll(timeout=int(self.SPIN_PERIOD * 1e3)))

            for socket_type in [zmq.SUB, zmq.REP]:
                if not self.ok():
                    break
                if socket_type not in self._socket_map:
                    continue
                socket, lock = self._socket_map[socket_type]
                if socket in events:
                    async with lock:
                        if socket_type == zmq.SUB:
                            await self.__dispatch_sample(socket)
                        else:
                            await self.__serve_request(socket)

        self._log('spinning stopped.')

    async def __dispatch_sample(self, socket : zmq.Socket) -> None:
        topic, src, content = await receive_msg(socket)
        subscription : Subscription = self._subscriptions.get(topic, None)
        if subscription is None:
            # subscription filters match on prefixes only
            self._log(f'ignoring sample on unsubscribed topic `{topic}` from {src}.')
            return
        await subscription.dispatch(content)

    async def __serve_request(self, socket : zmq.Socket) -> None:
        service, src, content = await receive_msg(socket)
        server : ServiceServer = self._services.get(service, None)

        if content['msg_type'] == TransportMessageTypes.SERVICE_PROBE.value:
            if server is not None:
                resp = ServiceAvailableMessage(self.name, src)
            else:
                resp = ServiceErrorMessage(self.name, src, f'service `{service}` not available.')

        elif server is None:
            self._log(f'received request for unknown service `{service}` from {src}.', level=logging.WARNING)
            resp = ServiceErrorMessage(self.name, src, f'service `{service}` not available.')

        else:
            try:
                resp = await server.handle_request(content)
            except Exception as e:
                # a REP socket must always answer before it can receive again
                self._log(f'service `{service}` failed to handle request from {src}. {e}', level=logging.ERROR)
                resp = ServiceErrorMessage(self.name, src, str(e))

        await send_msg(socket, src, resp)
